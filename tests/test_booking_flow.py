import asyncio
import pytest
from datetime import date, datetime
from zoneinfo import ZoneInfo

from salonbook.core.errors import (
    ConflictError,
    SubmissionInProgressError,
    TransientStorageError,
    ValidationError,
)
from salonbook.models.db_models import AppointmentStatus, Salon, Service
from salonbook.services.booking_service import (
    BookingSubmitter,
    normalize_booking_date,
    normalize_booking_time,
)
from salonbook.services.slot_service import get_available_slots

MONDAY = date(2024, 1, 1)
BEFORE = datetime(2023, 12, 1, 8, 0)


def test_date_normalization_keeps_the_selected_day():
    late_evening = datetime(2024, 1, 1, 23, 30, tzinfo=ZoneInfo("America/Sao_Paulo"))
    assert normalize_booking_date(late_evening) == "2024-01-01"
    assert normalize_booking_date(MONDAY) == "2024-01-01"
    assert normalize_booking_date("2024-01-01") == "2024-01-01"
    assert normalize_booking_date("2024-01-01T00:00:00.000Z") == "2024-01-01"
    with pytest.raises(ValidationError):
        normalize_booking_date("01/01/2024")


def test_time_normalization():
    assert normalize_booking_time("10:00") == "10:00"
    assert normalize_booking_time("9:30") == "09:30"
    assert normalize_booking_time("10:00:00") == "10:00"
    for bad in ("25:00", "10:60", "ten", "10:00xyz"):
        with pytest.raises(ValidationError):
            normalize_booking_time(bad)


@pytest.mark.asyncio
async def test_booking_creates_pending_appointment(fake_db, service):
    result = await BookingSubmitter(fake_db).submit(
        service, MONDAY, "10:00", "Ana", "+55 11 90000 0001", notes="Primeira vez"
    )

    assert result.success is True
    appointment = result.appointment
    assert appointment.status is AppointmentStatus.PENDING
    assert appointment.appointment_date == "2024-01-01"
    assert appointment.appointment_time == "10:00"
    assert appointment.salon_id == service.salon_id
    assert appointment.client_id == result.client.id
    assert appointment.notes == "Primeira vez"


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["service", "appointment_date", "appointment_time", "name", "phone"])
async def test_missing_fields_fail_before_any_io(fake_db, service, field):
    args = {
        "service": service,
        "appointment_date": "2024-01-01",
        "appointment_time": "10:00",
        "name": "Ana",
        "phone": "+5511900000001",
    }
    args[field] = None if field == "service" else "   "

    submitter = BookingSubmitter(fake_db)
    with pytest.raises(ValidationError):
        await submitter.submit(**args)

    assert fake_db.calls == []
    assert submitter.is_submitting is False


@pytest.mark.asyncio
async def test_inactive_service_is_rejected(fake_db, service):
    service.active = False
    with pytest.raises(ValidationError):
        await BookingSubmitter(fake_db).submit(service, MONDAY, "10:00", "Ana", "+5511900000001")
    assert fake_db.calls == []


@pytest.mark.asyncio
async def test_taken_slot_is_a_conflict(fake_db, service):
    first = await BookingSubmitter(fake_db).submit(service, MONDAY, "10:00", "Ana", "+5511900000001")
    second = await BookingSubmitter(fake_db).submit(service, MONDAY, "10:00", "Bia", "+5511900000002")

    assert first.success is True
    assert second.success is False
    assert isinstance(second.error, ConflictError)
    assert "another time" in second.message
    # the pre-check fires before the client is created
    assert len(fake_db.rows("clients")) == 1


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_booked_again(fake_db, service):
    fake_db.seed(
        "appointments", salon_id=service.salon_id, service_id=service.id, client_id="c0",
        appointment_date="2024-01-01", appointment_time="10:00", status="cancelled",
    )
    result = await BookingSubmitter(fake_db).submit(service, MONDAY, "10:00", "Ana", "+5511900000001")
    assert result.success is True


@pytest.mark.asyncio
async def test_concurrent_bookings_only_one_wins(fake_db, service):
    results = await asyncio.gather(
        BookingSubmitter(fake_db).submit(service, MONDAY, "10:00", "Ana", "+5511900000001"),
        BookingSubmitter(fake_db).submit(service, MONDAY, "10:00", "Bia", "+5511900000002"),
    )

    winners = [r for r in results if r.success]
    losers = [r for r in results if not r.success]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0].error, ConflictError)
    assert len(fake_db.rows("appointments")) == 1


@pytest.mark.asyncio
async def test_second_submit_while_in_flight_is_refused(fake_db, service):
    submitter = BookingSubmitter(fake_db)

    first = asyncio.ensure_future(submitter.submit(service, MONDAY, "10:00", "Ana", "+5511900000001"))
    await asyncio.sleep(0)
    assert submitter.is_submitting is True

    with pytest.raises(SubmissionInProgressError):
        await submitter.submit(service, MONDAY, "10:30", "Ana", "+5511900000001")

    result = await first
    assert result.success is True
    assert submitter.is_submitting is False
    assert len(fake_db.rows("appointments")) == 1


@pytest.mark.asyncio
async def test_storage_failure_leaves_no_appointment_and_allows_retry(fake_db, service):
    submitter = BookingSubmitter(fake_db)
    fake_db.failing.add(("insert", "appointments"))

    result = await submitter.submit(service, MONDAY, "10:00", "Ana", "+5511900000001")
    assert result.success is False
    assert isinstance(result.error, TransientStorageError)
    assert fake_db.rows("appointments") == []
    assert submitter.is_submitting is False

    fake_db.failing.clear()
    retry = await submitter.submit(service, MONDAY, "10:00", "Ana", "+5511900000001")
    assert retry.success is True
    # client from the first attempt is reused
    assert len(fake_db.rows("clients")) == 1


@pytest.mark.asyncio
async def test_monday_end_to_end(fake_db, salon_row, service):
    salon = Salon(**salon_row)

    before = await get_available_slots(fake_db, salon, MONDAY, now=BEFORE)
    assert before.slots == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]

    selected_day = datetime(2024, 1, 1, 22, 0, tzinfo=ZoneInfo("America/Sao_Paulo"))
    booked = await BookingSubmitter(fake_db).submit(service, selected_day, "10:00", "Ana", "+5511900000001")
    assert booked.success is True
    assert booked.appointment.status is AppointmentStatus.PENDING
    assert booked.appointment.appointment_date == "2024-01-01"
    assert booked.appointment.appointment_time == "10:00"

    after = await get_available_slots(fake_db, salon, MONDAY, now=BEFORE)
    assert "10:00" not in after.slots

    other = await BookingSubmitter(fake_db).submit(service, "2024-01-01", "10:00", "Bia", "+5511900000002")
    assert other.success is False
    assert isinstance(other.error, ConflictError)


@pytest.mark.asyncio
@pytest.mark.parametrize("day, time", [
    (MONDAY, "09:17"),           # between two slots
    (MONDAY, "12:00"),           # closing time
    (MONDAY, "08:30"),           # before opening
    (date(2023, 12, 31), "03:00"),  # Sunday, closed
])
async def test_time_outside_the_slot_grid_is_rejected(fake_db, service, day, time):
    submitter = BookingSubmitter(fake_db)
    with pytest.raises(ValidationError) as exc_info:
        await submitter.submit(service, day, time, "Ana", "+5511900000001")

    assert "not open" in exc_info.value.user_message
    assert fake_db.rows("appointments") == []
    assert fake_db.rows("clients") == []
    assert submitter.is_submitting is False


@pytest.mark.asyncio
async def test_unknown_salon_is_rejected(fake_db, service):
    service.salon_id = "gone"
    with pytest.raises(ValidationError):
        await BookingSubmitter(fake_db).submit(service, MONDAY, "10:00", "Ana", "+5511900000001")
    assert fake_db.rows("appointments") == []


@pytest.mark.asyncio
async def test_long_booking_blocks_the_following_slots(fake_db, service):
    escova = fake_db.seed(
        "services", salon_id=service.salon_id, name="Escova", duration_minutes=60, price=25.0, active=True
    )
    first = await BookingSubmitter(fake_db).submit(
        service, MONDAY, "10:00", "Ana", "+5511900000001", additional_services=[Service(**escova)]
    )
    assert first.success is True

    # 30min main service + 60min add-on holds 10:00, 10:30 and 11:00
    for time in ("10:30", "11:00"):
        taken = await BookingSubmitter(fake_db).submit(service, MONDAY, time, "Bia", "+5511900000002")
        assert isinstance(taken.error, ConflictError)

    free = await BookingSubmitter(fake_db).submit(service, MONDAY, "11:30", "Bia", "+5511900000002")
    assert free.success is True


@pytest.mark.asyncio
async def test_additional_services_are_written_to_the_notes(fake_db, service):
    escova = Service(**fake_db.seed(
        "services", salon_id=service.salon_id, name="Escova", duration_minutes=30, price=25.0, active=True
    ))
    result = await BookingSubmitter(fake_db).submit(
        service, MONDAY, "10:00", "Ana", "+5511900000001", notes="Primeira vez", additional_services=[escova]
    )

    assert result.success is True
    assert result.appointment.notes == "Primeira vez\n\nServiços Adicionais: Escova (30min - R$ 25.00)"


@pytest.mark.asyncio
async def test_additional_service_from_another_salon_is_rejected(fake_db, service):
    foreign = Service(id="s9", salon_id="other-salon", name="Escova", duration_minutes=30, price=25.0)
    with pytest.raises(ValidationError):
        await BookingSubmitter(fake_db).submit(
            service, MONDAY, "10:00", "Ana", "+5511900000001", additional_services=[foreign]
        )
    assert fake_db.calls == []
