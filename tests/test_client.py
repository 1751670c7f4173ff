import json
import pytest, respx, httpx
from clinic_gateway.client import ApiClient
from clinic_gateway.gateway import AppointmentDataGateway
from clinic_gateway.models import ServiceError
from clinic_gateway.store import MemoryStore
from helpers import fixture

BASE = "http://testserver"
API_URL = f"{BASE}/api"


def make_client(**values):
    store = MemoryStore({"authToken": "fake", **values})
    return store, ApiClient(store, base_url=API_URL)

@pytest.mark.asyncio
async def test_get_attaches_credentials():
    store, api = make_client(tenantId="tenant-9")
    with respx.mock(base_url=BASE) as m:
        route = m.get("/api/appointments").respond(200, json=[])

        resp = await api.get("/appointments", params={"clinicId": "c1", "status": ["Scheduled", "Completed"]})

        assert resp.status_code == 200
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer fake"
        assert request.headers["X-Tenant-ID"] == "tenant-9"
        assert request.url.params["clinicId"] == "c1"
        assert request.url.params.get_list("status") == ["Scheduled", "Completed"]

@pytest.mark.asyncio
async def test_missing_token_sends_no_authorization():
    store = MemoryStore()
    api = ApiClient(store, base_url=API_URL)
    with respx.mock(base_url=BASE) as m:
        route = m.get("/api/appointments/apt-1").respond(200, json={"_id": "apt-1"})

        await api.get("/appointments/apt-1")
        assert "Authorization" not in route.calls.last.request.headers

@pytest.mark.asyncio
async def test_unauthorized_clears_session():
    redirects = []
    store = MemoryStore({"authToken": "stale", "refreshToken": "r", "clinicData": "{}"})
    api = ApiClient(store, base_url=API_URL, on_unauthorized=lambda: redirects.append("login"))
    with respx.mock(base_url=BASE) as m:
        m.get("/api/appointments").respond(401, json={"message": "jwt expired"})

        with pytest.raises(httpx.HTTPStatusError):
            await api.get("/appointments")

    assert store.get("authToken") is None
    assert store.get("refreshToken") is None
    assert store.get("clinicData") == "{}"
    assert redirects == ["login"]

@pytest.mark.asyncio
async def test_post_and_delete():
    store, api = make_client()
    with respx.mock(base_url=BASE) as m:
        post = m.post("/api/appointments").respond(201, json={"_id": "apt-2"})
        m.delete("/api/appointments/apt-2").respond(204)

        resp = await api.post("/appointments", json={"patientId": "pat-1"})
        assert resp.json() == {"_id": "apt-2"}
        assert json.loads(post.calls.last.request.content) == {"patientId": "pat-1"}

        resp = await api.delete("/appointments/apt-2")
        assert resp.status_code == 204

@pytest.mark.asyncio
async def test_gateway_over_http_list_and_cache():
    store, api = make_client(defaultClinicId="clinic-1")
    gateway = AppointmentDataGateway(api, store)
    with respx.mock(base_url=BASE) as m:
        route = m.get("/api/appointments").respond(200, json=fixture("appointments_list.json"))

        first = await gateway.list_appointments({"status": "Scheduled"})
        second = await gateway.list_appointments({"status": "Scheduled"})

        assert route.call_count == 1
        assert route.calls.last.request.url.params["clinicId"] == "clinic-1"
        assert [a.patient_name for a in first] == ["Ana Ruiz", "Jon Snow", None]
        assert first == second

@pytest.mark.asyncio
async def test_gateway_over_http_conflict():
    store, api = make_client()
    gateway = AppointmentDataGateway(api, store)
    with respx.mock(base_url=BASE) as m:
        m.post("/api/appointments").respond(409, json={"message": "slot taken"})

        result = await gateway.create_appointment(
            {"clinicId": "c1", "patientId": "pat-1", "startTime": "2025-01-01T10:00:00Z"}
        )

    assert result == ServiceError(status_code=409, message="Appointment conflict", details="slot taken")

@pytest.mark.asyncio
async def test_gateway_over_http_network_failure():
    store, api = make_client()
    gateway = AppointmentDataGateway(api, store)
    with respx.mock(base_url=BASE) as m:
        m.get("/api/appointments/apt-1").mock(side_effect=httpx.ConnectError("dns failure"))

        result = await gateway.get_appointment_by_id("apt-1")

    assert result.status_code == 0
    assert result.message == "Network error"
