from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from salonbook.core.config import settings
from salonbook.core.errors import (
    AppointmentNotFoundError,
    ConflictError,
    InvalidTransitionError,
    SchedulingError,
    StorageError,
    SubmissionInProgressError,
    ValidationError,
)
from salonbook.core.logger import logger
from salonbook.models.db_models import Salon, Service
from salonbook.services.appointment_service import AppointmentService
from salonbook.services.booking_service import BookingSubmitter, normalize_booking_date
from salonbook.services.db_service import db_service
from salonbook.services.slot_service import get_available_slots
from salonbook.services.status_service import AppointmentStatusMachine, allowed_transitions

router = APIRouter()


def get_db():
    return db_service


STATUS_CODES = [
    (ValidationError, 400),
    (InvalidTransitionError, 400),
    (AppointmentNotFoundError, 404),
    (ConflictError, 409),
    (SubmissionInProgressError, 409),
    (StorageError, 503),
]


def error_response(error: SchedulingError) -> JSONResponse:
    status_code = next((code for cls, code in STATUS_CODES if isinstance(error, cls)), 500)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": type(error).__name__, "message": error.user_message},
    )


class AvailableSlotsRequest(BaseModel):
    salon_id: str
    day: str

class BookAppointmentRequest(BaseModel):
    service_id: str
    day: str
    time: str
    name: str
    phone: str
    email: Optional[str] = None
    notes: Optional[str] = None
    additional_service_ids: list[str] = []

class UpdateStatusRequest(BaseModel):
    appointment_id: str
    status: str

class AppointmentRequest(BaseModel):
    appointment_id: str


async def _load_one(db, table: str, record_id: str, what: str) -> dict:
    rows = await db.query(table, {"id": record_id})
    if not rows:
        raise AppointmentNotFoundError(f"{what} {record_id} not found", user_message=f"{what} not found.")
    return rows[0]


@router.post("/tools/available_slots")
async def available_slots(req: AvailableSlotsRequest, db=Depends(get_db)):
    try:
        target_date = date.fromisoformat(normalize_booking_date(req.day))
        salon = Salon(**await _load_one(db, settings.SALONS_TABLE, req.salon_id, "Salon"))
    except SchedulingError as e:
        return error_response(e)

    result = await get_available_slots(db, salon, target_date)
    if not result.success:
        return error_response(result.error)
    return {"success": True, "day": target_date.isoformat(), "slots": result.slots}


@router.post("/tools/book_appointment")
async def book_appointment(req: BookAppointmentRequest, db=Depends(get_db)):
    try:
        service = Service(**await _load_one(db, settings.SERVICES_TABLE, req.service_id, "Service"))
        extras = [
            Service(**await _load_one(db, settings.SERVICES_TABLE, extra_id, "Service"))
            for extra_id in req.additional_service_ids
        ]
        result = await BookingSubmitter(db).submit(
            service, req.day, req.time, req.name, req.phone, req.email, req.notes, additional_services=extras
        )
    except SchedulingError as e:
        return error_response(e)

    if not result.success:
        return error_response(result.error)

    logger.info(f"🏁 Booking confirmed: {result.appointment.id}")
    return {
        "success": True,
        "message": "Appointment created.",
        "appointment": result.appointment.model_dump(mode="json"),
    }


@router.post("/tools/update_status")
async def update_status(req: UpdateStatusRequest, db=Depends(get_db)):
    try:
        result = await AppointmentStatusMachine(db).transition(req.appointment_id, req.status)
    except SchedulingError as e:
        return error_response(e)

    if not result.success:
        return error_response(result.error)

    appointment = result.appointment
    return {
        "success": True,
        "appointment": appointment.model_dump(mode="json"),
        "next_statuses": sorted(s.value for s in allowed_transitions(appointment.status)),
        "financial_sync_failed": result.partial,
        "warning": result.financial_error.user_message if result.partial else None,
    }


@router.post("/tools/retry_financial_sync")
async def retry_financial_sync(req: AppointmentRequest, db=Depends(get_db)):
    try:
        result = await AppointmentStatusMachine(db).retry_financial_sync(req.appointment_id)
    except SchedulingError as e:
        return error_response(e)

    if not result.success:
        return error_response(result.error)
    return {
        "success": not result.partial,
        "financial_sync_failed": result.partial,
        "transaction": result.posting.transaction if result.posting else None,
    }


@router.post("/tools/delete_appointment")
async def delete_appointment(req: AppointmentRequest, db=Depends(get_db)):
    try:
        appointment = await AppointmentService(db).soft_delete(req.appointment_id)
    except SchedulingError as e:
        return error_response(e)
    return {"success": True, "appointment": appointment.model_dump(mode="json")}


@router.post("/tools/restore_appointment")
async def restore_appointment(req: AppointmentRequest, db=Depends(get_db)):
    try:
        appointment = await AppointmentService(db).restore(req.appointment_id)
    except SchedulingError as e:
        return error_response(e)
    return {"success": True, "appointment": appointment.model_dump(mode="json")}


class ListAppointmentsRequest(BaseModel):
    salon_id: str
    day: str
    include_deleted: bool = False


@router.post("/tools/list_appointments")
async def list_appointments(req: ListAppointmentsRequest, db=Depends(get_db)):
    try:
        appointments = await AppointmentService(db).list_appointments(req.salon_id, req.day, req.include_deleted)
    except SchedulingError as e:
        return error_response(e)
    return {"success": True, "appointments": [a.model_dump(mode="json") for a in appointments]}
