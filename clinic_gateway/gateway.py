"""Appointment data gateway.

Every operation resolves to either data or a `ServiceError`; transport and
validation failures are never raised to the caller.
"""
from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Union

import httpx

from .cache import AppointmentCache
from .client import Transport
from .errors import classify, validation_error
from .models import Appointment, AppointmentStats, AvailabilitySlot, ServiceError
from .normalize import (
    EmbeddedRef,
    as_reference,
    as_utc,
    display_name,
    normalize_appointment,
    normalize_appointments,
    parse_instant,
    reference_id,
    to_wire,
)
from .store import DEFAULT_CLINIC_LOOKUPS, ClinicLookup, IdentityStore, first_present, unwrap_clinic

logger = logging.getLogger(__name__)

PLACEHOLDER_IDS = frozenset({"new", "add"})
DEFAULT_DURATION = timedelta(minutes=30)
DEFAULT_REASON = "Medical appointment"
CANCELLED = "cancelled"
_PATH_BREAKERS = "/?#"

AppointmentList = Union[list[Appointment], ServiceError]
AppointmentResult = Union[Appointment, ServiceError]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status(exc: httpx.HTTPError) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _valid_id(value: Any) -> bool:
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        return False
    text = str(value).strip()
    if not text or any(c in text for c in _PATH_BREAKERS):
        return False
    return text.lower() not in PLACEHOLDER_IDS


def _items(payload: Any) -> list[Mapping[str, Any]]:
    """Collection responses are a bare list, or wrapped under a single key."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("appointments", "conflicts", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def _json_or_empty(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {}


def _fill_reason(data: dict[str, Any]) -> None:
    if not data.get("reason"):
        data["reason"] = data.get("notes") or data.get("serviceType") or DEFAULT_REASON


def _flatten_person(data: dict[str, Any], key: str, ref: EmbeddedRef, fields: dict[str, tuple[str, ...]]) -> None:
    """Copy embedded details (e.g. patientName) next to the flattened id."""
    for target, sources in fields.items():
        if data.get(target):
            continue
        values = (display_name(ref) if source == "name" else ref.get(source) for source in sources)
        value = next((v for v in values if v), None)
        if value:
            data[target] = value
    data[key] = ref.id


def _drop_cancelled(result: AppointmentList) -> AppointmentList:
    if isinstance(result, ServiceError):
        return result
    return [a for a in result if str(a.status or "").lower() != CANCELLED]


def _appointment_body(payload: Any) -> Any:
    """Front-desk endpoints wrap the appointment, sometimes under ``data``."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    if isinstance(payload, dict) and isinstance(payload.get("appointment"), dict):
        return payload["appointment"]
    return payload if isinstance(payload, dict) else {}


def _slot(raw: Any) -> AvailabilitySlot:
    """A slot is either a bare start instant or an object with start/end."""
    if not isinstance(raw, Mapping):
        return AvailabilitySlot(startTime=parse_instant(raw, "startTime"))
    record = dict(raw)
    for field, legacy in (("startTime", "start"), ("endTime", "end")):
        record[field] = parse_instant(record.get(field, record.get(legacy)), field)
    return AvailabilitySlot.model_validate(record)


class AppointmentDataGateway:
    """Cached, normalizing access to the appointments API for one session.

    The list cache holds a single result. Concurrent lists with different
    parameters overwrite each other's entry (last write wins) and identical
    concurrent lists are not coalesced; each one reaches the transport.
    """

    def __init__(
        self,
        transport: Transport,
        store: IdentityStore,
        cache: AppointmentCache | None = None,
        clinic_lookups: Iterable[ClinicLookup] = DEFAULT_CLINIC_LOOKUPS,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.transport = transport
        self.store = store
        self.cache = cache if cache is not None else AppointmentCache()
        self.clinic_lookups = tuple(clinic_lookups)
        self.now = now

    def resolve_clinic_id(self) -> str | None:
        return first_present(self.clinic_lookups, self.store)

    def _query(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        query: dict[str, Any] = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            query[key] = to_wire(value) if isinstance(value, datetime) else value

        clinic_id = unwrap_clinic(query.get("clinicId")) or self.resolve_clinic_id()
        if clinic_id:
            query["clinicId"] = clinic_id
        else:
            query.pop("clinicId", None)
            logger.warning("No clinic ID found for appointment query, results may be unscoped")
        return query

    # Reads ---------------------------------------------------------------

    async def list_appointments(self, params: Mapping[str, Any] | None = None) -> AppointmentList:
        query = self._query(params)
        clinic_id = query.get("clinicId")

        cached = self.cache.lookup(clinic_id, query)
        if cached is not None:
            logger.debug("Using cached appointments (%d)", len(cached))
            return cached

        logger.debug("Fetching appointments from API with %s", query)
        try:
            resp = await self.transport.get("/appointments", params=query)
        except httpx.HTTPError as e:
            if _status(e) == 404:
                self.cache.store([], clinic_id, query)
                return []
            logger.error("Error fetching appointments: %s", e)
            return classify(e, "view appointments")

        appointments = normalize_appointments(_items(_json_or_empty(resp)))
        self.cache.store(appointments, clinic_id, query)
        return appointments

    async def get_appointment_by_id(self, appointment_id: str) -> AppointmentResult:
        if not _valid_id(appointment_id):
            logger.warning("Invalid appointment ID: %r", appointment_id)
            return validation_error(
                "Invalid appointment ID",
                f"The provided ID ({appointment_id}) is not valid for fetching an appointment.",
            )

        try:
            resp = await self.transport.get(f"/appointments/{appointment_id}")
        except httpx.HTTPError as e:
            logger.error("Error fetching appointment %s: %s", appointment_id, e)
            return classify(
                e,
                "view this appointment",
                not_found=f"The appointment with ID {appointment_id} could not be found.",
            )
        return normalize_appointment(_json_or_empty(resp))

    async def get_patient_appointments(
        self, patient_id: str, params: Mapping[str, Any] | None = None
    ) -> AppointmentList:
        if not _valid_id(patient_id):
            return validation_error("Missing patient identifier", "A patient ID is required to list their appointments.")

        query = {k: to_wire(v) if isinstance(v, datetime) else v for k, v in (params or {}).items() if v is not None}
        try:
            resp = await self.transport.get(f"/appointments/patient/{patient_id}", params=query)
        except httpx.HTTPError as e:
            if _status(e) == 404:
                return []
            logger.error("Error fetching appointments for patient %s: %s", patient_id, e)
            return classify(e, "view these appointments")
        return normalize_appointments(_items(_json_or_empty(resp)))

    async def _fetch_list(self, path: str, params: Mapping[str, Any] | None, action: str) -> AppointmentList:
        """Uncached collection GET; a 404 means nothing matched."""
        query = self._query(params)
        try:
            resp = await self.transport.get(path, params=query)
        except httpx.HTTPError as e:
            if _status(e) == 404:
                return []
            logger.error("Error fetching %s: %s", path, e)
            return classify(e, action)
        return normalize_appointments(_items(_json_or_empty(resp)))

    async def get_today_appointments(self, params: Mapping[str, Any] | None = None) -> AppointmentList:
        now = self.now()
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = now.replace(hour=23, minute=59, second=59, microsecond=999000)
        return await self._fetch_list(
            "/appointments", {**(params or {}), "startDate": start, "endDate": end}, "view today's appointments"
        )

    async def get_upcoming_appointments(self, params: Mapping[str, Any] | None = None) -> AppointmentList:
        result = await self._fetch_list(
            "/appointments", {**(params or {}), "startDate": self.now()}, "view upcoming appointments"
        )
        return _drop_cancelled(result)

    async def get_past_appointments(self, params: Mapping[str, Any] | None = None) -> AppointmentList:
        result = await self._fetch_list("/appointments", {**(params or {}), "endDate": self.now()}, "view past appointments")
        return _drop_cancelled(result)

    async def get_waiting_patients(self, clinic_id: str | None = None) -> AppointmentList:
        return await self._fetch_list("/appointments/waiting", {"clinicId": clinic_id}, "view the waiting list")

    async def get_recent_checkins(self, clinic_id: str | None = None) -> AppointmentList:
        return await self._fetch_list("/appointments/recent-checkins", {"clinicId": clinic_id}, "view recent check-ins")

    async def get_available_slots(
        self, doctor_id: str, date: datetime | str
    ) -> Union[list[AvailabilitySlot], ServiceError]:
        if not _valid_id(doctor_id):
            return validation_error("Missing doctor identifier", "A doctor ID is required to look up free slots.")
        day = parse_instant(date, "date")
        if day is None:
            return validation_error("Invalid date", f"Could not parse date {date!r}.")

        query = self._query({"doctorId": doctor_id, "date": day})
        try:
            resp = await self.transport.get("/appointments/available-slots", params=query)
        except httpx.HTTPError as e:
            if _status(e) == 404:
                return []
            logger.error("Error fetching available slots for doctor %s: %s", doctor_id, e)
            return classify(e, "view available slots")

        slots = _json_or_empty(resp)
        if isinstance(slots, dict):
            if isinstance(slots.get("data"), dict):
                slots = slots["data"]
            slots = slots.get("availableSlots")
        if not isinstance(slots, list):
            return []
        return [_slot(raw) for raw in slots if isinstance(raw, (str, Mapping))]

    async def get_appointment_stats(
        self,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
        clinic_id: str | None = None,
    ) -> Union[AppointmentStats, ServiceError]:
        query = self._query({"startDate": start_date, "endDate": end_date, "clinicId": clinic_id})
        try:
            resp = await self.transport.get("/appointments/stats", params=query)
        except httpx.HTTPError as e:
            logger.error("Error fetching appointment statistics: %s", e)
            return classify(e, "view appointment statistics")
        return AppointmentStats.model_validate(_json_or_empty(resp))

    async def check_conflicts(
        self,
        doctor_id: str,
        start_time: datetime | str,
        end_time: datetime | str,
        clinic_id: str | None = None,
    ) -> AppointmentList:
        start, end = parse_instant(start_time, "startTime"), parse_instant(end_time, "endTime")
        if start is None or end is None:
            return validation_error("Invalid appointment times", "Start and end times must be valid dates.")

        query = self._query({"doctorId": doctor_id, "startTime": start, "endTime": end, "clinicId": clinic_id})
        try:
            resp = await self.transport.get("/appointments/check-conflicts", params=query)
        except httpx.HTTPError as e:
            logger.error("Error checking appointment conflicts: %s", e)
            return classify(e, "check appointment conflicts")
        return normalize_appointments(_items(_json_or_empty(resp)))

    # Writes --------------------------------------------------------------

    async def create_appointment(self, draft: Mapping[str, Any]) -> AppointmentResult:
        data = copy.deepcopy(dict(draft))

        clinic_id = unwrap_clinic(data.get("clinicId")) or self.resolve_clinic_id()
        if not clinic_id:
            return validation_error("Missing clinic identifier", "A clinic ID is required to create an appointment.")
        data["clinicId"] = clinic_id

        patient = as_reference(data.get("patientId") or data.get("patient"))
        if reference_id(patient) is None:
            return validation_error("Missing patient identifier", "Patient ID is required.")
        if isinstance(patient, EmbeddedRef):
            _flatten_person(
                data, "patientId", patient, {"patientName": ("name",), "patientPhone": ("phone", "phoneNumber")}
            )
        else:
            data["patientId"] = patient.id
        data.pop("patient", None)

        doctor = as_reference(data.get("doctorId") or data.get("doctor"))
        if doctor is not None:
            if reference_id(doctor) is None:
                return validation_error("Invalid doctor reference", "The selected doctor has no identifier.")
            if isinstance(doctor, EmbeddedRef):
                _flatten_person(data, "doctorId", doctor, {"doctorName": ("name",), "specialization": ("specialization",)})
            else:
                data["doctorId"] = doctor.id
            data.pop("doctor", None)

        start = parse_instant(data.get("startTime"), "startTime")
        if start is None:
            return validation_error("Missing or invalid start time", "Appointment start time is required.")
        start = as_utc(start)

        if data.get("endTime") in (None, ""):
            end = start + DEFAULT_DURATION
        else:
            end = parse_instant(data.get("endTime"), "endTime")
            if end is None:
                return validation_error("Invalid end time", f"Could not parse end time {data.get('endTime')!r}.")
            end = as_utc(end)

        if end <= start:
            return validation_error("End time must be after start time", "Invalid appointment times.")
        if start < as_utc(self.now()):
            logger.warning("Creating appointment with a start time in the past: %s", to_wire(start))

        data["startTime"], data["endTime"] = to_wire(start), to_wire(end)
        _fill_reason(data)

        try:
            resp = await self.transport.post("/appointments", json=data)
        except httpx.HTTPError as e:
            logger.error("Error creating appointment: %s", e)
            return classify(
                e,
                "create appointments",
                not_found="The patient, doctor, or clinic could not be found.",
                not_found_message="Resource not found",
                conflict=True,
            )

        self.cache.invalidate()
        return normalize_appointment(_json_or_empty(resp))

    async def update_appointment(self, appointment_id: str, changes: Mapping[str, Any]) -> AppointmentResult:
        if not _valid_id(appointment_id):
            return validation_error(
                "Invalid appointment ID",
                f"The provided ID ({appointment_id}) is not valid for updating an appointment.",
            )

        data = copy.deepcopy(dict(changes))
        for key in ("patientId", "doctorId"):
            ref = as_reference(data.get(key))
            if isinstance(ref, EmbeddedRef):
                data[key] = ref.id
        if isinstance(data.get("clinicId"), dict):
            data["clinicId"] = unwrap_clinic(data["clinicId"])

        times = {}
        for field in ("startTime", "endTime"):
            if data.get(field) in (None, ""):
                continue
            parsed = parse_instant(data[field], field)
            if parsed is None:
                label = "start" if field == "startTime" else "end"
                return validation_error(f"Invalid {label} time", f"Could not parse {label} time {data[field]!r}.")
            times[field] = as_utc(parsed)
            data[field] = to_wire(times[field])
        if len(times) == 2 and times["endTime"] <= times["startTime"]:
            return validation_error("End time must be after start time", "Invalid appointment times.")
        _fill_reason(data)

        try:
            resp = await self.transport.put(f"/appointments/{appointment_id}", json=data)
        except httpx.HTTPError as e:
            logger.error("Error updating appointment %s: %s", appointment_id, e)
            return classify(
                e,
                "update this appointment",
                not_found=f"The appointment with ID {appointment_id} could not be found.",
            )

        self.cache.invalidate()
        return normalize_appointment(_json_or_empty(resp))

    async def delete_appointment(self, appointment_id: str) -> Union[dict[str, Any], ServiceError]:
        if not _valid_id(appointment_id):
            return validation_error(
                "Invalid appointment ID",
                f"The provided ID ({appointment_id}) is not valid for deleting an appointment.",
            )

        try:
            resp = await self.transport.delete(f"/appointments/{appointment_id}")
        except httpx.HTTPError as e:
            logger.error("Error deleting appointment %s: %s", appointment_id, e)
            return classify(
                e,
                "delete this appointment",
                not_found=f"The appointment with ID {appointment_id} could not be found.",
            )

        self.cache.invalidate()
        body = _json_or_empty(resp)
        return body if isinstance(body, dict) else {}

    # Front desk ----------------------------------------------------------

    async def _put_appointment(
        self, appointment_id: str, action: str, path: str, body: dict[str, Any] | None = None, conflict: bool = False
    ) -> AppointmentResult:
        try:
            resp = await self.transport.put(f"/appointments/{appointment_id}/{path}", json=body or {})
        except httpx.HTTPError as e:
            logger.error("Error on %s for appointment %s: %s", path, appointment_id, e)
            return classify(
                e,
                action,
                not_found=f"The appointment with ID {appointment_id} could not be found.",
                conflict=conflict,
            )

        self.cache.invalidate()
        return normalize_appointment(_appointment_body(_json_or_empty(resp)))

    async def check_in(self, appointment_id: str) -> AppointmentResult:
        if not _valid_id(appointment_id):
            return validation_error(
                "Invalid appointment ID",
                f"The provided ID ({appointment_id}) is not valid for checking in a patient.",
            )
        return await self._put_appointment(appointment_id, "check in this patient", "checkin")

    async def check_out(self, appointment_id: str) -> AppointmentResult:
        if not _valid_id(appointment_id):
            return validation_error(
                "Invalid appointment ID",
                f"The provided ID ({appointment_id}) is not valid for checking out a patient.",
            )
        return await self._put_appointment(appointment_id, "check out this patient", "checkout")

    async def reschedule_appointment(
        self,
        appointment_id: str,
        start_time: datetime | str,
        end_time: datetime | str | None = None,
        reason: str | None = None,
    ) -> AppointmentResult:
        """Move an appointment; the end defaults to half an hour after the new start."""
        if not _valid_id(appointment_id):
            return validation_error(
                "Invalid appointment ID",
                f"The provided ID ({appointment_id}) is not valid for rescheduling an appointment.",
            )

        start = parse_instant(start_time, "startTime")
        if start is None:
            return validation_error("Missing or invalid start time", "A new start time is required.")
        start = as_utc(start)

        if end_time in (None, ""):
            end = start + DEFAULT_DURATION
        else:
            end = parse_instant(end_time, "endTime")
            if end is None:
                return validation_error("Invalid end time", f"Could not parse end time {end_time!r}.")
            end = as_utc(end)
        if end <= start:
            return validation_error("End time must be after start time", "Invalid appointment times.")

        body = {"startTime": to_wire(start), "endTime": to_wire(end)}
        if reason:
            body["reason"] = reason
        return await self._put_appointment(
            appointment_id, "reschedule this appointment", "reschedule", body, conflict=True
        )

    async def send_reminder(self, appointment_id: str) -> Union[dict[str, Any], ServiceError]:
        if not _valid_id(appointment_id):
            return validation_error(
                "Invalid appointment ID",
                f"The provided ID ({appointment_id}) is not valid for sending a reminder.",
            )

        try:
            resp = await self.transport.post(f"/appointments/{appointment_id}/reminder", json={})
        except httpx.HTTPError as e:
            logger.error("Error sending reminder for appointment %s: %s", appointment_id, e)
            return classify(
                e,
                "send appointment reminders",
                not_found=f"The appointment with ID {appointment_id} could not be found.",
            )
        body = _json_or_empty(resp)
        return body if isinstance(body, dict) else {}
