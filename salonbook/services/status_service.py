from datetime import datetime, timezone
from typing import Optional, Union

from salonbook.core.config import settings
from salonbook.core.errors import (
    AppointmentNotFoundError,
    FinancialSyncError,
    InvalidTransitionError,
    StorageError,
)
from salonbook.core.logger import logger
from salonbook.models.db_models import Appointment, AppointmentStatus, TransitionResult
from salonbook.services.financial_service import get_financial_gateway, post_with_retry

S = AppointmentStatus

# The only place that decides which status changes are legal
TRANSITIONS = {
    S.PENDING: frozenset({S.CONFIRMED, S.COMPLETED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def allowed_transitions(current: AppointmentStatus) -> frozenset:
    return TRANSITIONS.get(AppointmentStatus(current), frozenset())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AppointmentStatusMachine:
    """
    Applies status changes. Persisting the status and posting revenue are two
    separate phases: a failed posting never rolls the status back.
    """

    def __init__(self, db, financial_gateway=None):
        self.db = db
        self.financial_gateway = financial_gateway or get_financial_gateway(db)

    async def _load(self, appointment_id: str) -> Appointment:
        rows = await self.db.query(settings.APPOINTMENTS_TABLE, {"id": appointment_id})
        if not rows:
            raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
        return Appointment(**rows[0])

    async def transition(
        self,
        appointment_id: str,
        target: Union[AppointmentStatus, str],
        current: Optional[Union[Appointment, AppointmentStatus, str]] = None,
    ) -> TransitionResult:
        """
        Moves the appointment to target.

        current may be an Appointment snapshot or a status; when omitted it is read.
        Raises InvalidTransitionError before any write. Storage failures are
        returned in the result.
        """
        try:
            target = AppointmentStatus(target)
        except ValueError as e:
            raise InvalidTransitionError(getattr(current, "status", current), target) from e

        if current is None:
            try:
                current = await self._load(appointment_id)
            except (StorageError, AppointmentNotFoundError) as e:
                return TransitionResult(success=False, error=e)

        try:
            current_status = AppointmentStatus(current.status if isinstance(current, Appointment) else current)
        except ValueError as e:
            raise InvalidTransitionError(current, target.value) from e

        if not can_transition(current_status, target):
            logger.warning(f"⛔ Rejected transition {current_status.value} -> {target.value} for {appointment_id}")
            raise InvalidTransitionError(current_status.value, target.value)

        # Phase 1: status
        try:
            row = await self.db.update(
                settings.APPOINTMENTS_TABLE,
                appointment_id,
                {"status": target.value, "updated_at": utcnow_iso()},
            )
        except StorageError as e:
            logger.error(f"❌ Error updating appointment {appointment_id} status: {e}")
            return TransitionResult(success=False, error=e)

        appointment = Appointment(**row)
        logger.info(f"🔄 Appointment {appointment_id}: {current_status.value} -> {target.value}")

        if target is not S.COMPLETED:
            return TransitionResult(success=True, appointment=appointment)

        # Phase 2: revenue, best effort
        return await self._post_revenue(appointment)

    async def _post_revenue(self, appointment: Appointment) -> TransitionResult:
        outcome = await post_with_retry(self.financial_gateway, appointment.id)
        if outcome.success:
            return TransitionResult(success=True, appointment=appointment, posting=outcome)

        logger.error(f"❌ Financial sync failed for appointment {appointment.id}: {outcome.error}")
        return TransitionResult(
            success=True,
            appointment=appointment,
            posting=outcome,
            financial_error=FinancialSyncError(appointment.id, outcome.error),
        )

    async def retry_financial_sync(self, appointment_id: str) -> TransitionResult:
        """Re-posts revenue for an appointment that is already completed. Status is not touched."""
        try:
            appointment = await self._load(appointment_id)
        except (StorageError, AppointmentNotFoundError) as e:
            return TransitionResult(success=False, error=e)

        if appointment.status is not S.COMPLETED:
            raise InvalidTransitionError(appointment.status.value, "financial sync")

        return await self._post_revenue(appointment)
