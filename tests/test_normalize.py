from datetime import datetime, timezone

from clinic_gateway.normalize import (
    EmbeddedRef,
    IdRef,
    as_reference,
    normalize_appointment,
    parse_instant,
    reference_id,
    to_wire,
)

UTC = timezone.utc


def test_flat_patient_name_wins_over_embedded():
    appt = normalize_appointment({"patientName": "Flat Name", "patientId": {"name": "Embedded Name"}})
    assert appt.patient_name == "Flat Name"


def test_first_and_last_name_are_joined():
    appt = normalize_appointment({"patientId": {"firstName": "Ana", "lastName": "Ruiz"}})
    assert appt.patient_name == "Ana Ruiz"


def test_no_name_stays_absent():
    appt = normalize_appointment({"patientId": {"_id": "p1"}, "patient": {"lastName": "Ruiz"}})
    assert appt.patient_name is None


def test_patient_key_used_when_patient_id_is_bare():
    appt = normalize_appointment({"patientId": "p1", "patient": {"name": "Jon", "phoneNumber": "555"}})
    assert appt.patient_name == "Jon"
    assert appt.patient_phone == "555"


def test_phone_prefers_phone_over_phone_number():
    appt = normalize_appointment({"patientId": {"name": "A", "phone": "111", "phoneNumber": "222"}})
    assert appt.patient_phone == "111"


def test_specialization_follows_named_doctor():
    appt = normalize_appointment({
        "doctorId": {"_id": "d1", "specialization": "Surgery"},
        "doctor": {"firstName": "Luis", "lastName": "Mora", "specialization": "Orthodontics"},
    })
    assert appt.doctor_name == "Luis Mora"
    assert appt.specialization == "Orthodontics"


def test_flat_doctor_fields_kept():
    appt = normalize_appointment({"doctorName": "Dr. Ito", "specialization": "Endo", "doctor": {"name": "Other"}})
    assert appt.doctor_name == "Dr. Ito"
    assert appt.specialization == "Endo"


def test_dates_parsed_individually():
    appt = normalize_appointment({
        "startTime": "2025-01-01T10:00:00Z",
        "endTime": "tomorrow",
        "updatedAt": "2025-01-02T08:00:00+01:00",
    })
    assert appt.start_time == datetime(2025, 1, 1, 10, tzinfo=UTC)
    assert appt.end_time is None
    assert appt.created_at is None
    assert appt.updated_at == datetime(2025, 1, 2, 7, tzinfo=UTC)


def test_unknown_fields_pass_through():
    appt = normalize_appointment({"_id": "a1", "roomNumber": 3, "status": "Scheduled"})
    assert appt.id == "a1"
    assert appt.status == "Scheduled"
    assert appt.model_extra == {"roomNumber": 3}
    dumped = appt.model_dump(by_alias=True)
    assert dumped["_id"] == "a1"
    assert dumped["roomNumber"] == 3


def test_references():
    assert as_reference(None) is None
    assert as_reference("") is None
    assert as_reference("p1") == IdRef("p1")
    ref = as_reference({"id": 42, "name": "Ana"})
    assert isinstance(ref, EmbeddedRef)
    assert reference_id(ref) == "42"
    assert reference_id(as_reference({"_id": "a", "id": "b"})) == "a"
    assert reference_id(as_reference({"name": "x"})) is None


def test_parse_and_wire_format():
    assert parse_instant(None) is None
    assert parse_instant("") is None
    assert parse_instant("nope") is None
    naive = datetime(2025, 1, 1, 10, 0)
    assert to_wire(naive) == "2025-01-01T10:00:00.000Z"
    assert to_wire(parse_instant("2025-01-01T12:00:00+02:00")) == "2025-01-01T10:00:00.000Z"
