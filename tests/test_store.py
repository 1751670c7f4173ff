import json

from clinic_gateway.store import (
    DEFAULT_CLINIC_LOOKUPS,
    FileStore,
    MemoryStore,
    clinic_from_user_data,
    first_present,
)


def resolve(values):
    return first_present(DEFAULT_CLINIC_LOOKUPS, MemoryStore(values))


def test_clinic_data_first():
    assert resolve({
        "clinicData": json.dumps({"_id": "from-clinic"}),
        "userData": json.dumps({"clinicId": "from-user"}),
        "defaultClinicId": "from-default",
    }) == "from-clinic"


def test_user_data_string_and_object():
    assert resolve({"userData": json.dumps({"clinicId": "c-str"})}) == "c-str"
    assert resolve({"userData": json.dumps({"clinicId": {"_id": "c-obj", "id": "other"}})}) == "c-obj"
    assert resolve({"userData": json.dumps({"clinicId": {"id": "c-id"}})}) == "c-id"


def test_malformed_values_fall_through():
    assert resolve({
        "clinicData": "{not json",
        "userData": json.dumps(["not", "a", "dict"]),
        "defaultClinicId": "fallback",
    }) == "fallback"


def test_nothing_found():
    assert resolve({}) is None
    assert resolve({"clinicData": json.dumps({"name": "No id"}), "defaultClinicId": ""}) is None


def test_broken_lookup_is_skipped(caplog):
    def explode(store):
        raise RuntimeError("store unavailable")

    assert first_present([explode, clinic_from_user_data], MemoryStore({"userData": '{"clinicId": "c1"}'})) == "c1"
    assert "store unavailable" in caplog.text


def test_file_store_round_trip(tmp_path):
    path = tmp_path / "store.json"
    store = FileStore(path)
    assert store.get("authToken") is None

    store.set("authToken", "abc")
    store.set("defaultClinicId", "c1")
    store.remove("authToken")

    assert FileStore(path).get("defaultClinicId") == "c1"
    assert FileStore(path).get("authToken") is None


def test_file_store_tolerates_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{{{")
    store = FileStore(path)

    assert store.get("anything") is None
    store.set("k", "v")
    assert json.loads(path.read_text()) == {"k": "v"}
