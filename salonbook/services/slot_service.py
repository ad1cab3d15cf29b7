"""
Bookable time slots for a salon/day.

generate_time_slots turns a weekday's opening hours into candidate HH:MM
slots; filter_available_slots removes the occupied ones and, for today, the
ones inside the booking lead time. get_available_slots does the read.
"""
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Optional
from zoneinfo import ZoneInfo

from salonbook.core.config import settings
from salonbook.core.errors import StorageError
from salonbook.core.logger import logger
from salonbook.models.db_models import ACTIVE_STATUSES, AvailabilityResult, Salon
from salonbook.services.additional_services import parse_additional_services

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
DEFAULT_SERVICE_DURATION = 30


def weekday_name(target_date: date) -> str:
    return WEEKDAYS[target_date.weekday()]


def parse_hhmm(value) -> Optional[int]:
    """'09:30' -> 570 minutes since midnight. None if malformed."""
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) < 2 or not all(p.isdigit() for p in parts[:2]):
        return None
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= minute < 60 and (hour < 24 or (hour == 24 and minute == 0))):
        return None
    return hour * 60 + minute


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class TimeSlots:
    """
    Lazy, restartable sequence of HH:MM strings in [start, end) with a fixed step.
    Iterating twice yields the same slots.
    """

    def __init__(self, start_minutes: int = 0, end_minutes: int = 0, interval_minutes: int = 30):
        self.start_minutes = start_minutes
        self.end_minutes = end_minutes
        self.interval_minutes = interval_minutes

    def __iter__(self) -> Iterator[str]:
        if self.interval_minutes <= 0:
            return
        current = self.start_minutes
        while current < self.end_minutes:
            yield format_hhmm(current)
            current += self.interval_minutes

    def __len__(self) -> int:
        if self.end_minutes <= self.start_minutes or self.interval_minutes <= 0:
            return 0
        return -(-(self.end_minutes - self.start_minutes) // self.interval_minutes)

    def __repr__(self) -> str:
        return f"TimeSlots({format_hhmm(self.start_minutes)}-{format_hhmm(self.end_minutes)}/{self.interval_minutes}m)"


def generate_time_slots(target_date: date, opening_hours: Optional[dict], interval_minutes: int = None) -> TimeSlots:
    """
    Candidate slots for the weekday of target_date.
    Closed, missing or malformed hours give an empty sequence, never an error.
    """
    interval_minutes = interval_minutes or settings.SLOT_INTERVAL_MINUTES
    empty = TimeSlots(interval_minutes=interval_minutes)

    if interval_minutes <= 0:
        logger.warning(f"⚠️ Invalid slot interval: {interval_minutes} minutes")
        return empty

    if not isinstance(opening_hours, dict):
        return empty

    day = weekday_name(target_date)
    hours = opening_hours.get(day)
    if not isinstance(hours, dict):
        logger.debug(f"📋 No opening hours for {day}")
        return empty

    if hours.get("closed") is True:
        logger.debug(f"🚫 Closed on {day}")
        return empty

    open_minutes = parse_hhmm(hours.get("open"))
    close_minutes = parse_hhmm(hours.get("close"))
    if open_minutes is None or close_minutes is None:
        logger.warning(f"⚠️ Malformed opening hours for {day}: {hours}")
        return empty

    if open_minutes >= close_minutes:
        logger.warning(f"⚠️ Opening time is not before closing time on {day}: {hours}")
        return empty

    return TimeSlots(open_minutes, close_minutes, interval_minutes)


def local_now(now: datetime = None) -> datetime:
    """Naive local wall-clock time in the salon timezone."""
    tz = ZoneInfo(settings.TIMEZONE)
    if now is None:
        return datetime.now(tz).replace(tzinfo=None)
    if now.tzinfo is not None:
        return now.astimezone(tz).replace(tzinfo=None)
    return now


def filter_available_slots(
    candidates: Iterable[str],
    occupied: Iterable[str],
    target_date: date,
    now: datetime,
    lead_time_minutes: int = None,
) -> list[str]:
    """
    Drops occupied slots and, when target_date is today, every slot that is not
    strictly after now + lead time. Keeps the input order.
    """
    if lead_time_minutes is None:
        lead_time_minutes = settings.BOOKING_LEAD_TIME_MINUTES

    # stored times may come back as HH:MM:SS
    taken = {slot[:5] for slot in occupied if slot}
    now = local_now(now)
    is_today = target_date == now.date()
    earliest = now + timedelta(minutes=lead_time_minutes)

    available = []
    for slot in candidates:
        if slot in taken:
            continue
        if is_today:
            minutes = parse_hhmm(slot)
            if minutes is None:
                continue
            slot_dt = datetime.combine(target_date, datetime.min.time()) + timedelta(minutes=minutes)
            if slot_dt <= earliest:
                continue
        available.append(slot)
    return available


def appointment_duration(main_duration: Optional[int], notes: Optional[str]) -> int:
    """Main service plus every add-on recorded in the notes."""
    extra = sum(s["duration"] for s in parse_additional_services(notes))
    return (main_duration or DEFAULT_SERVICE_DURATION) + extra


def covered_slots(start: str, duration_minutes: int, interval_minutes: int = None) -> list[str]:
    """Grid slots an appointment holds: start, then every interval until it ends."""
    interval_minutes = interval_minutes or settings.SLOT_INTERVAL_MINUTES
    start_minutes = parse_hhmm(start)
    if start_minutes is None:
        return [start[:5]] if start else []
    return list(TimeSlots(start_minutes, start_minutes + max(duration_minutes, 1), interval_minutes))


async def get_booked_slots(db, salon_id: str, target_date: date) -> list[str]:
    """
    Slots held by pending/confirmed appointments. A booking blocks every slot
    its total duration covers, so a 90 minute appointment at 10:00 also holds
    10:30 and 11:00. Raises StorageError.
    """
    rows = await db.query(
        settings.APPOINTMENTS_TABLE,
        {
            "salon_id": salon_id,
            "appointment_date": target_date.isoformat(),
            "status": list(ACTIVE_STATUSES),
            "deleted_at": None,
        },
        columns="appointment_time, service_id, notes",
    )
    if not rows:
        return []

    durations = {}
    service_ids = sorted({row["service_id"] for row in rows if row.get("service_id")})
    if service_ids:
        services = await db.query(settings.SERVICES_TABLE, {"id": service_ids}, columns="id, duration_minutes")
        durations = {s["id"]: s.get("duration_minutes") for s in services}

    occupied = []
    for row in rows:
        duration = appointment_duration(durations.get(row.get("service_id")), row.get("notes"))
        occupied.extend(covered_slots(row["appointment_time"], duration))
    return occupied


async def get_available_slots(db, salon: Salon, target_date: date, now: datetime = None) -> AvailabilityResult:
    """
    Bookable slots for salon on target_date.
    An empty slot list is a normal answer; a failed read comes back as success=False.
    """
    candidates = generate_time_slots(target_date, salon.opening_hours)
    if not len(candidates):
        logger.info(f"📅 No slots for salon {salon.id} on {target_date} (closed)")
        return AvailabilityResult(success=True, slots=[])

    try:
        booked = await get_booked_slots(db, salon.id, target_date)
    except StorageError as e:
        logger.error(f"❌ Error fetching booked slots for salon {salon.id}: {e}")
        return AvailabilityResult(success=False, error=e)

    slots = filter_available_slots(candidates, booked, target_date, local_now(now))
    logger.info(f"✅ {len(slots)} available slots for salon {salon.id} on {target_date}")
    return AvailabilityResult(success=True, slots=slots)
