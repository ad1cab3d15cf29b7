"""
Revenue posting for completed appointments.

Both gateways expose ``post(appointment_id) -> PostingOutcome`` and are
idempotent per appointment id: posting twice never creates a second income
transaction.
"""
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_fixed

from salonbook.core.config import settings
from salonbook.core.errors import StorageError, UniqueConstraintError
from salonbook.core.logger import logger
from salonbook.models.db_models import AppointmentStatus, PostingOutcome
from salonbook.services.additional_services import parse_additional_services


class FinancialPostingGateway:
    """Delegates the posting to the remote completion function."""

    def __init__(self, db, function_name: str = None):
        self.db = db
        self.function_name = function_name or settings.FINANCIAL_POSTING_FUNCTION

    async def post(self, appointment_id: str) -> PostingOutcome:
        logger.info(f"💰 Processing financial completion of appointment {appointment_id}")
        response = await self.db.invoke(self.function_name, {"appointmentId": appointment_id})

        if not response.get("success"):
            return PostingOutcome(success=False, error=str(response.get("error") or "function call failed"))

        data = response.get("data") or {}
        if not isinstance(data, dict):
            return PostingOutcome(success=False, error=f"Unexpected response: {data!r}")

        if data.get("success"):
            transaction = data.get("transaction")
            logger.info(f"✅ Revenue registered for appointment {appointment_id}: {transaction}")
            return PostingOutcome(success=True, transaction=transaction)

        if data.get("existingTransactions"):
            logger.info(f"ℹ️ Revenue for appointment {appointment_id} already registered")
            return PostingOutcome(success=True, already_posted=True)

        error = data.get("error") or data.get("message") or "financial posting rejected"
        return PostingOutcome(success=False, error=str(error))


class DirectFinancialPostingGateway:
    """Same contract, written straight to the transactions table."""

    def __init__(self, db):
        self.db = db

    async def post(self, appointment_id: str) -> PostingOutcome:
        try:
            return await self._post(appointment_id)
        except StorageError as e:
            logger.error(f"❌ Financial posting failed for appointment {appointment_id}: {e}")
            return PostingOutcome(success=False, error=str(e))

    async def _post(self, appointment_id: str) -> PostingOutcome:
        rows = await self.db.query(settings.APPOINTMENTS_TABLE, {"id": appointment_id})
        if not rows:
            return PostingOutcome(success=False, error="Appointment not found")
        appointment = rows[0]

        if appointment.get("status") != AppointmentStatus.COMPLETED.value:
            return PostingOutcome(success=False, error="Appointment is not completed")

        existing = await self.db.query(
            settings.TRANSACTIONS_TABLE, {"appointment_id": appointment_id}, columns="id, amount"
        )
        if existing:
            logger.info(f"ℹ️ Revenue for appointment {appointment_id} already registered ({len(existing)} rows)")
            return PostingOutcome(success=True, already_posted=True)

        services = []
        service_rows = await self.db.query(settings.SERVICES_TABLE, {"id": appointment.get("service_id")})
        if service_rows:
            service = service_rows[0]
            services.append({
                "name": service.get("name"),
                "duration": service.get("duration_minutes") or 0,
                "price": float(service.get("price") or 0),
                "type": "main",
            })
        services.extend(parse_additional_services(appointment.get("notes")))

        total_amount = round(sum(s["price"] for s in services), 2)
        total_duration = sum(s["duration"] for s in services)
        main_name = services[0]["name"] if service_rows else "Service"

        record = {
            "salon_id": appointment.get("salon_id"),
            "appointment_id": appointment_id,
            "transaction_type": "income",
            "amount": total_amount,
            "description": main_name,
            "category": "service",
            "payment_method": "cash",
            "transaction_date": appointment.get("appointment_date"),
            "status": "completed",
            "metadata": {
                "auto_generated": True,
                "services_breakdown": services,
                "total_amount": total_amount,
                "total_duration": total_duration,
                "service_count": len(services),
                "appointment_time": appointment.get("appointment_time"),
            },
        }
        try:
            transaction = await self.db.insert(settings.TRANSACTIONS_TABLE, record)
        except UniqueConstraintError:
            # a concurrent post for the same appointment won the insert
            logger.info(f"ℹ️ Revenue for appointment {appointment_id} already registered (concurrent post)")
            return PostingOutcome(success=True, already_posted=True)

        logger.info(f"✅ Revenue {total_amount:.2f} registered for appointment {appointment_id}")
        return PostingOutcome(success=True, transaction=transaction)


def get_financial_gateway(db):
    if settings.FINANCIAL_POSTING_MODE == "direct":
        return DirectFinancialPostingGateway(db)
    return FinancialPostingGateway(db)


def _log_before_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome.result()
    appointment_id = retry_state.args[0] if retry_state.args else "?"
    logger.warning(
        f"⚠️ Financial posting attempt {retry_state.attempt_number} failed for {appointment_id}: {outcome.error}"
    )


def _last_outcome(retry_state: RetryCallState) -> PostingOutcome:
    return retry_state.outcome.result()


async def post_with_retry(gateway, appointment_id: str, max_attempts: int = None, delay_seconds: float = None) -> PostingOutcome:
    """Runs gateway.post up to max_attempts times (default from settings, 1 = no retry)."""
    max_attempts = max(1, max_attempts or settings.FINANCIAL_SYNC_MAX_ATTEMPTS)
    if delay_seconds is None:
        delay_seconds = settings.FINANCIAL_SYNC_RETRY_DELAY_SECONDS

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(delay_seconds),
        retry=retry_if_result(lambda outcome: not outcome.success),
        before_sleep=_log_before_retry,
        retry_error_callback=_last_outcome,
    )
    return await retrying(gateway.post, appointment_id)
