"""Key-value identity store and the clinic lookups that read from it."""
from __future__ import annotations

import json
import logging
import pathlib
from typing import Callable, Iterable, Protocol

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "authToken"
REFRESH_TOKEN_KEY = "refreshToken"
TENANT_KEY = "tenantId"
CLINIC_DATA_KEY = "clinicData"
USER_DATA_KEY = "userData"
DEFAULT_CLINIC_KEY = "defaultClinicId"


class IdentityStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store, mostly for tests and short-lived sessions."""

    def __init__(self, values: dict[str, str] | None = None):
        self._values = dict(values or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class FileStore:
    """Store persisted as a flat JSON object on disk.

    A missing or corrupt file reads as an empty store; the next `set`
    rewrites it.
    """

    def __init__(self, path: str | pathlib.Path):
        self.path = pathlib.Path(path)

    def _load(self) -> dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable store %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, str]) -> None:
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


ClinicLookup = Callable[[IdentityStore], "str | None"]


def unwrap_clinic(value) -> str | None:
    """Clinic references arrive as a bare id or as a document with `_id`/`id`."""
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    return str(value) if value else None


def clinic_from_clinic_data(store: IdentityStore) -> str | None:
    raw = store.get(CLINIC_DATA_KEY)
    if not raw:
        return None
    clinic = json.loads(raw)
    return unwrap_clinic(clinic) if isinstance(clinic, dict) else None


def clinic_from_user_data(store: IdentityStore) -> str | None:
    raw = store.get(USER_DATA_KEY)
    if not raw:
        return None
    user = json.loads(raw)
    return unwrap_clinic(user.get("clinicId")) if isinstance(user, dict) else None


def clinic_from_default(store: IdentityStore) -> str | None:
    return store.get(DEFAULT_CLINIC_KEY) or None


DEFAULT_CLINIC_LOOKUPS: tuple[ClinicLookup, ...] = (
    clinic_from_clinic_data,
    clinic_from_user_data,
    clinic_from_default,
)


def first_present(lookups: Iterable[ClinicLookup], store: IdentityStore) -> str | None:
    """Run lookups in order and return the first non-empty result.

    A lookup that raises (malformed JSON, unexpected shapes, a broken store)
    counts as "not found" and the chain moves on.
    """
    for lookup in lookups:
        try:
            value = lookup(store)
        except Exception as e:
            logger.warning("Clinic lookup %s failed: %s", getattr(lookup, "__name__", lookup), e)
            continue
        if value:
            return value
    return None
