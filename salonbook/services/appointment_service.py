from datetime import date
from typing import Union

from salonbook.core.config import settings
from salonbook.core.errors import AppointmentNotFoundError, ConflictError, UniqueConstraintError
from salonbook.core.logger import logger
from salonbook.models.db_models import Appointment
from salonbook.services.booking_service import normalize_booking_date
from salonbook.services.status_service import utcnow_iso


class AppointmentService:
    """
    Administrative actions on appointments (soft delete / restore, listing).
    Every write returns the updated record; refreshing list views is up to the caller.
    """

    def __init__(self, db):
        self.db = db

    async def get_appointment(self, appointment_id: str) -> Appointment:
        rows = await self.db.query(settings.APPOINTMENTS_TABLE, {"id": appointment_id})
        if not rows:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return Appointment(**rows[0])

    async def list_appointments(self, salon_id: str, appointment_date: Union[str, date],
                                include_deleted: bool = False) -> list[Appointment]:
        filters = {"salon_id": salon_id, "appointment_date": normalize_booking_date(appointment_date)}
        if not include_deleted:
            filters["deleted_at"] = None
        rows = await self.db.query(settings.APPOINTMENTS_TABLE, filters, order="appointment_time")
        return [Appointment(**row) for row in rows]

    async def soft_delete(self, appointment_id: str) -> Appointment:
        await self.get_appointment(appointment_id)
        now = utcnow_iso()
        row = await self.db.update(
            settings.APPOINTMENTS_TABLE, appointment_id, {"deleted_at": now, "updated_at": now}
        )
        logger.info(f"🗑️ Appointment {appointment_id} moved to trash")
        return Appointment(**row)

    async def restore(self, appointment_id: str) -> Appointment:
        """Raises ConflictError when the slot was booked again while the appointment was deleted."""
        await self.get_appointment(appointment_id)
        try:
            row = await self.db.update(
                settings.APPOINTMENTS_TABLE, appointment_id, {"deleted_at": None, "updated_at": utcnow_iso()}
            )
        except UniqueConstraintError as e:
            logger.warning(f"⛔ Cannot restore appointment {appointment_id}: slot taken")
            raise ConflictError(f"Slot of appointment {appointment_id} is taken") from e
        logger.info(f"♻️ Appointment {appointment_id} restored")
        return Appointment(**row)
