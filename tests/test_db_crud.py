import pytest
import random
from datetime import date, timedelta

from salonbook.core.config import settings
from salonbook.models.db_models import AppointmentStatus, Salon, Service
from salonbook.services.appointment_service import AppointmentService
from salonbook.services.booking_service import BookingSubmitter
from salonbook.services.client_service import ClientResolver
from salonbook.services.db_service import db_service
from salonbook.services.slot_service import get_available_slots

# Real Integration Test with Supabase (needs SUPABASE_URL/SUPABASE_KEY and a seeded active service)
pytestmark = pytest.mark.skipif(
    not (settings.SUPABASE_URL and settings.SUPABASE_KEY),
    reason="Supabase credentials not configured",
)


@pytest.mark.asyncio
async def test_db_booking_cycle():
    # Force reset DB client to avoid event loop mismatch if other tests ran before
    db_service._client = None

    services = await db_service.query(settings.SERVICES_TABLE, {"active": True})
    if not services:
        pytest.skip("No active service in the database")
    service = Service(**services[0])

    # 1. Client find-or-create twice -> same id
    test_phone = f"+55119{random.randint(10000000, 99999999)}"
    resolver = ClientResolver(db_service)
    first = await resolver.find_or_create("TEST_QA_USER", test_phone)
    second = await resolver.find_or_create("TEST_QA_USER", test_phone)
    assert first.id == second.id

    # 2. Book the last free slot next year to avoid messing with the current schedule
    salons = await db_service.query(settings.SALONS_TABLE, {"id": service.salon_id})
    day = date.today() + timedelta(days=365)
    available = await get_available_slots(db_service, Salon(**salons[0]), day)
    if not available.slots:
        pytest.skip(f"Salon closed or full on {day}")
    slot = available.slots[-1]

    result = await BookingSubmitter(db_service).submit(service, day, slot, "TEST_QA_USER", test_phone)
    assert result.success, result.message
    assert result.appointment.status is AppointmentStatus.PENDING

    # 3. Same slot again -> conflict
    again = await BookingSubmitter(db_service).submit(service, day, slot, "TEST_QA_USER", test_phone)
    assert again.success is False

    # 4. Move to the trash
    deleted = await AppointmentService(db_service).soft_delete(result.appointment.id)
    assert deleted.deleted_at is not None
