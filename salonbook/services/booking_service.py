from typing import Optional, Sequence, Union
from datetime import date, datetime
import re

from salonbook.core.config import settings
from salonbook.core.errors import (
    ConflictError,
    StorageError,
    SubmissionInProgressError,
    UniqueConstraintError,
    ValidationError,
)
from salonbook.core.logger import logger
from salonbook.models.db_models import (
    Appointment,
    AppointmentStatus,
    BookingResult,
    Service,
)
from salonbook.services.additional_services import format_additional_services
from salonbook.services.client_service import ClientResolver, normalize_phone
from salonbook.services.slot_service import generate_time_slots, get_booked_slots

TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)(?::[0-5]\d)?$")


def normalize_booking_date(value: Union[str, date, datetime]) -> str:
    """
    The exact calendar day the user picked, as YYYY-MM-DD.
    Built from year/month/day components; a datetime is never converted between timezones.
    """
    if isinstance(value, datetime):
        return date(value.year, value.month, value.day).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        try:
            return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date().isoformat()
        except ValueError:
            pass
    raise ValidationError(f"Invalid date: {value!r}", user_message="Please choose a valid date.")


def normalize_booking_time(value: str) -> str:
    """'9:30' / '09:30' / '09:30:00' -> '09:30'."""
    if isinstance(value, str):
        match = TIME_RE.match(value.strip())
        if match:
            return f"{int(match.group(1)):02d}:{match.group(2)}"
    raise ValidationError(f"Invalid time: {value!r}", user_message="Please choose a valid time.")


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class BookingSubmitter:
    """
    Creates an appointment for one selected slot.

    One instance serves one booking form: a second submit while one is in
    flight is refused.
    """

    def __init__(self, db, client_resolver: Optional[ClientResolver] = None):
        self.db = db
        self.client_resolver = client_resolver or ClientResolver(db)
        self._in_flight = False

    @property
    def is_submitting(self) -> bool:
        return self._in_flight

    def validate(self, service: Optional[Service], appointment_date, appointment_time, name, phone,
                 additional_services: Sequence[Service] = ()):
        missing = [
            field for field, value in (
                ("service", service),
                ("date", appointment_date),
                ("time", appointment_time),
                ("name", name),
                ("phone", phone),
            ) if _is_blank(value)
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                user_message="Please fill in all required fields.",
            )
        if not service.active:
            raise ValidationError(
                f"Service {service.id} is not active",
                user_message="This service is not available for booking.",
            )
        for extra in additional_services or ():
            if not extra.active or extra.salon_id != service.salon_id:
                raise ValidationError(
                    f"Additional service {extra.id} cannot be booked with service {service.id}",
                    user_message="One of the additional services is not available.",
                )
        return normalize_booking_date(appointment_date), normalize_booking_time(appointment_time)

    async def check_slot_on_grid(self, salon_id: str, appointment_date: str, appointment_time: str):
        """The time must be one of the salon's slots for that day. Raises ValidationError."""
        rows = await self.db.query(settings.SALONS_TABLE, {"id": salon_id}, columns="id, opening_hours")
        if not rows:
            raise ValidationError(
                f"Salon {salon_id} not found",
                user_message="This salon is not accepting bookings.",
            )
        slots = generate_time_slots(date.fromisoformat(appointment_date), rows[0].get("opening_hours"))
        if appointment_time not in slots:
            logger.info(f"⛔ {appointment_date} {appointment_time} is not a slot of salon {salon_id} ({slots!r})")
            raise ValidationError(
                f"{appointment_date} {appointment_time} is outside the opening hours of salon {salon_id}",
                user_message="The salon is not open at this time. Please choose another time.",
            )

    async def check_slot_conflict(self, salon_id: str, appointment_date: str, appointment_time: str):
        """
        Re-checks the slot right before writing, including time still held by a
        longer booking that started earlier. Raises ConflictError if taken.
        """
        occupied = await get_booked_slots(self.db, salon_id, date.fromisoformat(appointment_date))
        if appointment_time in {slot[:5] for slot in occupied}:
            logger.info(f"⛔ Slot {appointment_date} {appointment_time} already taken at salon {salon_id}")
            raise ConflictError(f"Slot {appointment_date} {appointment_time} is taken")

    async def submit(
        self,
        service: Optional[Service],
        appointment_date: Union[str, date, datetime],
        appointment_time: str,
        name: str,
        phone: str,
        email: Optional[str] = None,
        notes: Optional[str] = None,
        additional_services: Sequence[Service] = (),
    ) -> BookingResult:
        """
        additional_services are recorded in the notes as
        'Serviços Adicionais: Name (30min - R$ 25.00)'.

        Validation problems raise before any I/O; an off-grid time raises
        after the salon's hours are read. Everything after that comes
        back as a BookingResult (ConflictError / TransientStorageError on failure).
        """
        if self._in_flight:
            raise SubmissionInProgressError("A submission is already in progress")

        self._in_flight = True
        try:
            day, time = self.validate(service, appointment_date, appointment_time, name, phone, additional_services)
            logger.info(f"📥 Booking Request - Salon: {service.salon_id}, Day: {day}, Time: {time}")
            notes = format_additional_services(additional_services, notes)
            return await self._submit(service, day, time, name.strip(), phone, email, notes)
        finally:
            self._in_flight = False

    async def _submit(self, service: Service, day: str, time: str, name: str, phone: str,
                      email: Optional[str], notes: Optional[str]) -> BookingResult:
        start = datetime.now()
        try:
            # 0. Opening hours (ValidationError propagates)
            await self.check_slot_on_grid(service.salon_id, day, time)

            # 1. Conflict re-check
            await self.check_slot_conflict(service.salon_id, day, time)

            # 2. Client
            logger.info(f"🔍 Finding/creating client: {normalize_phone(phone)}")
            client = await self.client_resolver.find_or_create(name, phone, email)

            # 3. Insert (the only write that creates the appointment)
            record = {
                "salon_id": service.salon_id,
                "service_id": service.id,
                "client_id": client.id,
                "appointment_date": day,
                "appointment_time": time,
                "status": AppointmentStatus.PENDING.value,
                "notes": notes,
            }
            try:
                row = await self.db.insert(settings.APPOINTMENTS_TABLE, record)
            except UniqueConstraintError as e:
                logger.warning(f"⛔ Slot {day} {time} taken by a concurrent booking")
                raise ConflictError(f"Slot {day} {time} is taken") from e

        except ConflictError as e:
            return BookingResult(success=False, error=e)
        except StorageError as e:
            logger.error(f"❌ Booking failed for {day} {time}: {e}")
            return BookingResult(success=False, error=e)

        appointment = Appointment(**row)
        duration = (datetime.now() - start).total_seconds()
        logger.info(f"✅ Appointment {appointment.id} created ({day} {time}) in {duration:.2f}s")
        return BookingResult(success=True, appointment=appointment, client=client)
