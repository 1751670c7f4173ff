import os
from functools import lru_cache
from typing import Any, Optional
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from .client import ApiClient
from .gateway import AppointmentDataGateway
from .models import ServiceError
from .store import FileStore

GATEWAY_KEY = os.getenv("GATEWAY_API_KEY", "")
STORE_PATH = os.getenv("CLINIC_STORE_PATH", ".clinic_store.json")
# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="Clinic Appointment Gateway")

def verify_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header"""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != GATEWAY_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")

@lru_cache
def get_gateway() -> AppointmentDataGateway:
    """One gateway (and so one list cache) per process."""
    store = FileStore(STORE_PATH)
    return AppointmentDataGateway(ApiClient(store), store)

def _respond(result: Any):
    """ServiceErrors become error responses; a network failure (status 0) reads as 502."""
    if isinstance(result, ServiceError):
        return JSONResponse(status_code=result.status_code or 502, content=result.model_dump(by_alias=True))
    if isinstance(result, list):
        return [item.model_dump(mode="json", by_alias=True) for item in result]
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json", by_alias=True)
    return result

@app.get("/appointments", dependencies=[Depends(verify_key)])
async def list_appointments(request: Request, gateway: AppointmentDataGateway = Depends(get_gateway)):
    """List appointments; every query-string pair is forwarded as a filter."""
    params: dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        params[key] = values if len(values) > 1 else values[0]
    return _respond(await gateway.list_appointments(params))

@app.get("/appointments/stats", dependencies=[Depends(verify_key)])
async def appointment_stats(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    clinic_id: Optional[str] = Query(None, alias="clinicId"),
    gateway: AppointmentDataGateway = Depends(get_gateway),
):
    return _respond(await gateway.get_appointment_stats(start_date, end_date, clinic_id))

@app.get("/appointments/available-slots", dependencies=[Depends(verify_key)])
async def available_slots(
    doctor_id: str = Query(..., alias="doctorId"),
    date: str = Query(...),
    gateway: AppointmentDataGateway = Depends(get_gateway),
):
    return _respond(await gateway.get_available_slots(doctor_id, date))

@app.get("/appointments/waiting", dependencies=[Depends(verify_key)])
async def waiting_patients(gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.get_waiting_patients())

@app.get("/appointments/recent-checkins", dependencies=[Depends(verify_key)])
async def recent_checkins(gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.get_recent_checkins())

@app.get("/appointments/{appointment_id}", dependencies=[Depends(verify_key)])
async def get_appointment(appointment_id: str, gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.get_appointment_by_id(appointment_id))

@app.post("/appointments", dependencies=[Depends(verify_key)], status_code=201)
async def create_appointment(draft: dict[str, Any] = Body(...), gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.create_appointment(draft))

@app.put("/appointments/{appointment_id}", dependencies=[Depends(verify_key)])
async def update_appointment(
    appointment_id: str,
    changes: dict[str, Any] = Body(...),
    gateway: AppointmentDataGateway = Depends(get_gateway),
):
    return _respond(await gateway.update_appointment(appointment_id, changes))

@app.delete("/appointments/{appointment_id}", dependencies=[Depends(verify_key)])
async def delete_appointment(appointment_id: str, gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.delete_appointment(appointment_id))

# Patient-scoped reads

@app.get("/patients/{patient_id}/appointments", dependencies=[Depends(verify_key)])
async def patient_appointments(patient_id: str, gateway: AppointmentDataGateway = Depends(get_gateway)):
    """Appointments for one patient; an unknown patient yields an empty list."""
    return _respond(await gateway.get_patient_appointments(patient_id))

# Front desk

class RescheduleRequest(BaseModel):
    start_time: str = Field(alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")
    reason: Optional[str] = None

@app.put("/appointments/{appointment_id}/checkin", dependencies=[Depends(verify_key)])
async def check_in(appointment_id: str, gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.check_in(appointment_id))

@app.put("/appointments/{appointment_id}/checkout", dependencies=[Depends(verify_key)])
async def check_out(appointment_id: str, gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.check_out(appointment_id))

@app.put("/appointments/{appointment_id}/reschedule", dependencies=[Depends(verify_key)])
async def reschedule(
    appointment_id: str,
    req: RescheduleRequest,
    gateway: AppointmentDataGateway = Depends(get_gateway),
):
    return _respond(await gateway.reschedule_appointment(appointment_id, req.start_time, req.end_time, req.reason))

@app.post("/appointments/{appointment_id}/reminder", dependencies=[Depends(verify_key)])
async def send_reminder(appointment_id: str, gateway: AppointmentDataGateway = Depends(get_gateway)):
    return _respond(await gateway.send_reminder(appointment_id))
