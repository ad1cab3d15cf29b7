from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from salonbook.core.errors import SchedulingError, FinancialSyncError


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that occupy a slot
ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class Salon(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
    # weekday name ("monday"...) -> hours; kept raw so malformed rows don't fail parsing
    opening_hours: Optional[Dict[str, Any]] = None
    is_open: bool = True


class Service(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    salon_id: str
    name: Optional[str] = None
    duration_minutes: Optional[int] = 30
    price: Optional[float] = 0.0
    active: bool = True


class Client(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    phone: str
    name: Optional[str] = None
    email: Optional[str] = None


class Appointment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    salon_id: str
    service_id: str
    client_id: str
    appointment_date: str  # YYYY-MM-DD, local calendar day
    appointment_time: str  # HH:MM
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


# --- Operation results ---

class _Result(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    error: Optional[SchedulingError] = None

    @property
    def message(self) -> Optional[str]:
        return self.error.user_message if self.error else None


class AvailabilityResult(_Result):
    slots: list[str] = Field(default_factory=list)


class BookingResult(_Result):
    appointment: Optional[Appointment] = None
    client: Optional[Client] = None


class PostingOutcome(BaseModel):
    success: bool
    already_posted: bool = False
    transaction: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TransitionResult(_Result):
    appointment: Optional[Appointment] = None
    posting: Optional[PostingOutcome] = None
    financial_error: Optional[FinancialSyncError] = None

    @property
    def partial(self) -> bool:
        """Status saved, financial posting failed."""
        return self.success and self.financial_error is not None
