from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Appointment(BaseModel):
    """Normalized appointment. Unknown backend fields pass through untouched.

    Frozen: cached lists hand out the same instances to every caller.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    id: Any = Field(None, validation_alias=AliasChoices("_id", "id"), serialization_alias="_id")
    patient_name: str | None = Field(None, alias="patientName")
    patient_phone: str | None = Field(None, alias="patientPhone")
    doctor_name: str | None = Field(None, alias="doctorName")
    specialization: str | None = None
    start_time: datetime | None = Field(None, alias="startTime")  # None when absent or unparseable
    end_time: datetime | None = Field(None, alias="endTime")
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")
    # backend-defined shapes, kept as sent
    status: Any = None
    service_type: Any = Field(None, alias="serviceType")
    notes: Any = None


class ServiceError(BaseModel):
    """Failure value returned (never raised) by gateway operations."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    is_error: bool = Field(True, alias="isError")
    status_code: int = Field(alias="statusCode")
    message: str
    details: str = ""


class AppointmentStats(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    total: int | None = None
    status_counts: dict[str, int] | None = Field(None, alias="statusCounts")


def is_service_error(result: Any) -> bool:
    return isinstance(result, ServiceError)


class AvailabilitySlot(BaseModel):
    """A free slot offered for booking."""
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    start_time: datetime | None = Field(None, alias="startTime")
    end_time: datetime | None = Field(None, alias="endTime")
    available: Any = None
