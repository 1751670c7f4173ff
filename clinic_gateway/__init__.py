"""Cached, normalizing client for the clinic appointments API."""
