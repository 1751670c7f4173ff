"""Map transport failures onto `ServiceError` values."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from .models import ServiceError

logger = logging.getLogger(__name__)


def validation_error(message: str, details: str = "") -> ServiceError:
    return ServiceError(status_code=400, message=message, details=details)


def _body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _text(body: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        if body.get(key):
            return str(body[key])
    return None


def classify(
    exc: httpx.HTTPError,
    action: str,
    *,
    not_found: str | None = None,
    not_found_message: str = "Appointment not found",
    conflict: bool = False,
) -> ServiceError:
    """Build the ServiceError for a failed call.

    `action` reads like "view appointments" and feeds the generic messages.
    `not_found` is the details text for a 404; callers that treat 404 as an
    empty result handle it before getting here. `conflict` turns 409 into
    the dedicated appointment-conflict error.
    """
    response = getattr(exc, "response", None) if isinstance(exc, httpx.HTTPStatusError) else None
    if response is None:
        return ServiceError(
            status_code=0,
            message="Network error",
            details=str(exc) or "Could not connect to the server. Please check your internet connection.",
        )

    status = response.status_code
    body = _body(response)

    if status == 403:
        return ServiceError(status_code=403, message="Permission denied",
                            details=f"You do not have permission to {action}.")
    if status == 401:
        return ServiceError(status_code=401, message="Authentication required",
                            details=f"Please log in to {action}.")
    if status == 404 and not_found is not None:
        return ServiceError(status_code=404, message=not_found_message, details=not_found)
    if status == 409 and conflict:
        return ServiceError(
            status_code=409,
            message="Appointment conflict",
            details=_text(body, "message")
            or "The requested appointment time conflicts with an existing appointment.",
        )

    return ServiceError(
        status_code=status,
        message=_text(body, "message") or f"Failed to {action}",
        details=_text(body, "details", "error") or str(exc),
    )
