"""Turn backend appointment payloads into `Appointment` models.

The backend is inconsistent about how it embeds people: a patient may be a
flat ``patientName``/``patientPhone`` pair, or a ``patientId``/``patient``
key holding either a bare identifier or a populated document. Doctors follow
the same pattern. Everything here is a pure function of the payload.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Union

from pydantic import TypeAdapter, ValidationError

from .models import Appointment

logger = logging.getLogger(__name__)

_INSTANT = TypeAdapter(datetime)
DATE_FIELDS = ("startTime", "endTime", "createdAt", "updatedAt")


@dataclass(frozen=True)
class IdRef:
    """Reference holding only an identifier."""
    id: str


@dataclass(frozen=True)
class EmbeddedRef:
    """Reference holding a populated document."""
    fields: Mapping[str, Any]

    @property
    def id(self) -> str | None:
        value = self.fields.get("_id") or self.fields.get("id")
        return str(value) if value not in (None, "") else None

    def get(self, key: str) -> Any:
        return self.fields.get(key)


Reference = Union[IdRef, EmbeddedRef]


def as_reference(value: Any) -> Reference | None:
    if isinstance(value, Mapping):
        return EmbeddedRef(dict(value))
    if value is None or value == "":
        return None
    return IdRef(str(value))


def reference_id(ref: Reference | None) -> str | None:
    return ref.id if ref is not None else None


def parse_instant(value: Any, field: str = "value") -> datetime | None:
    """Parse an ISO-8601 string (or datetime) into a datetime, None if absent or bad."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return _INSTANT.validate_python(value)
    except ValidationError:
        logger.warning("Unparseable %s: %r", field, value)
        return None


def as_utc(dt: datetime) -> datetime:
    # naive values are taken to already be UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_wire(dt: datetime) -> str:
    """Format as UTC ISO-8601 with milliseconds, e.g. 2025-01-01T10:30:00.000Z."""
    return as_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _text(value: Any) -> str | None:
    """Flat scalar for a resolved field; empty values count as absent."""
    if value is None or value == "":
        return None
    return str(value)


def display_name(ref: EmbeddedRef) -> str | None:
    name = ref.get("name")
    if name:
        return str(name)
    first, last = ref.get("firstName"), ref.get("lastName")
    if first and last:
        return f"{first} {last}"
    return None


def _phone(ref: EmbeddedRef) -> str | None:
    phone = ref.get("phone") or ref.get("phoneNumber")
    return str(phone) if phone else None


def _embedded(record: Mapping[str, Any], keys: Iterable[str]) -> list[EmbeddedRef]:
    refs = []
    for key in keys:
        ref = as_reference(record.get(key))
        if isinstance(ref, EmbeddedRef):
            refs.append(ref)
    return refs


def _resolve_patient(record: Mapping[str, Any]) -> tuple[str | None, str | None]:
    refs = _embedded(record, ("patientId", "patient"))

    name = _text(record.get("patientName"))
    if not name:
        name = next((n for n in map(display_name, refs) if n), None)

    phone = _text(record.get("patientPhone"))
    if not phone:
        phone = next((p for p in map(_phone, refs) if p), None)
    return name, phone


def _resolve_doctor(record: Mapping[str, Any]) -> tuple[str | None, str | None]:
    name = _text(record.get("doctorName"))
    specialization = _text(record.get("specialization"))
    if name:
        return name, specialization

    for ref in _embedded(record, ("doctorId", "doctor")):
        found = display_name(ref)
        if found:
            return found, _text(ref.get("specialization")) or specialization
    return None, specialization


def normalize_appointment(raw: Mapping[str, Any]) -> Appointment:
    record = dict(raw)
    record["patientName"], record["patientPhone"] = _resolve_patient(raw)
    record["doctorName"], record["specialization"] = _resolve_doctor(raw)
    for field in DATE_FIELDS:
        record[field] = parse_instant(raw.get(field), field)
    return Appointment.model_validate(record)


def normalize_appointments(raws: Iterable[Any]) -> list[Appointment]:
    appointments = []
    for raw in raws:
        if not isinstance(raw, Mapping):
            logger.warning("Skipping non-object appointment entry: %r", raw)
            continue
        appointments.append(normalize_appointment(raw))
    return appointments
