"""Single-slot, time-boxed cache for appointment list results."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable

from .models import Appointment

DEFAULT_TTL = 5 * 60  # seconds


def canonical_params(params: dict[str, Any] | None) -> str:
    """Stable encoding of a parameter set; key order does not matter."""
    return json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class CacheEntry:
    data: tuple[Appointment, ...] | None = None
    captured_at: float | None = None
    clinic_id: str | None = None
    params: dict[str, Any] | None = None
    key: str | None = None


class AppointmentCache:
    """Holds at most one list result.

    A new result replaces the slot wholesale whatever query produced the old
    one. The entry is swapped in a single assignment so readers never see a
    partly written entry.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self.entry = CacheEntry()

    def is_valid_for(self, clinic_id: str | None, params: dict[str, Any] | None) -> bool:
        entry = self.entry
        return (
            entry.data is not None
            and entry.captured_at is not None
            and self.clock() - entry.captured_at < self.ttl
            and entry.clinic_id == clinic_id
            and entry.key == canonical_params(params)
        )

    def lookup(self, clinic_id: str | None, params: dict[str, Any] | None) -> list[Appointment] | None:
        entry = self.entry
        if not self.is_valid_for(clinic_id, params):
            return None
        return list(entry.data)

    def store(self, data: list[Appointment], clinic_id: str | None, params: dict[str, Any] | None) -> None:
        self.entry = CacheEntry(
            data=tuple(data),
            captured_at=self.clock(),
            clinic_id=clinic_id,
            params=dict(params or {}),
            key=canonical_params(params),
        )

    def invalidate(self) -> None:
        self.entry = CacheEntry()
