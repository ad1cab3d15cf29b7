import asyncio
import copy
import uuid
from datetime import datetime, timezone

import pytest

from salonbook.core.errors import TransientStorageError, UniqueConstraintError
from salonbook.models.db_models import Service

ACTIVE = ("pending", "confirmed")


def _value(v):
    return getattr(v, "value", v)


def _matches(row: dict, filters: dict) -> bool:
    for column, value in (filters or {}).items():
        if value is None:
            if row.get(column) is not None:
                return False
        elif isinstance(value, (list, tuple)):
            if row.get(column) not in [_value(v) for v in value]:
                return False
        elif row.get(column) != _value(value):
            return False
    return True


class FakeDB:
    """
    In-memory stand-in for DBService with the same unique indexes as
    migrations/001_scheduling_constraints.sql. Every call yields to the loop
    so concurrent coroutines interleave like real network calls.
    """

    def __init__(self):
        self.tables = {}
        self.invocations = []
        self.function_response = {
            "success": True,
            "data": {"success": True, "transaction": {"id": "tx-1", "amount": 50.0}},
        }
        self.failing = set()  # {("insert", "appointments"), ...}
        self.calls = []

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def seed(self, table, **record):
        row = {"id": str(uuid.uuid4()), **record}
        if table == "appointments":
            row.setdefault("deleted_at", None)
            row.setdefault("notes", None)
        self.rows(table).append(row)
        return copy.deepcopy(row)

    def _check(self, operation, table):
        self.calls.append((operation, table))
        if (operation, table) in self.failing:
            raise TransientStorageError(f"{operation} on {table} failed: connection reset")

    def _check_unique(self, table, candidate, ignore_id=None):
        for row in self.rows(table):
            if row["id"] == ignore_id:
                continue
            if table == "clients" and row.get("phone") == candidate.get("phone"):
                raise UniqueConstraintError("duplicate key value violates unique constraint", "clients_phone_key")
            if table == "financial_transactions" and row.get("appointment_id") == candidate.get("appointment_id"):
                raise UniqueConstraintError(
                    "duplicate key value violates unique constraint", "financial_transactions_appointment_key"
                )
            if table == "appointments":
                both_live = all(
                    r.get("status") in ACTIVE and r.get("deleted_at") is None for r in (row, candidate)
                )
                same_slot = all(
                    row.get(k) == candidate.get(k) for k in ("salon_id", "appointment_date", "appointment_time")
                )
                if both_live and same_slot:
                    raise UniqueConstraintError(
                        "duplicate key value violates unique constraint", "appointments_active_slot_key"
                    )

    async def query(self, table, filters=None, columns="*", order=None):
        await asyncio.sleep(0)
        self._check("query", table)
        found = [copy.deepcopy(r) for r in self.rows(table) if _matches(r, filters)]
        if order:
            found.sort(key=lambda r: r.get(order) or "")
        return found

    async def insert(self, table, record):
        await asyncio.sleep(0)
        self._check("insert", table)
        now = datetime.now(timezone.utc).isoformat()
        row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **record}
        if table == "appointments":
            row.setdefault("deleted_at", None)
        self._check_unique(table, row)
        self.rows(table).append(row)
        return copy.deepcopy(row)

    async def update(self, table, record_id, patch):
        await asyncio.sleep(0)
        self._check("update", table)
        for row in self.rows(table):
            if row["id"] == record_id:
                self._check_unique(table, {**row, **patch}, ignore_id=record_id)
                row.update(patch)
                return copy.deepcopy(row)
        raise TransientStorageError(f"update on {table} matched no row (id={record_id})")

    async def invoke(self, operation, payload):
        await asyncio.sleep(0)
        self.invocations.append((operation, payload))
        return self.function_response


WEEK_HOURS = {
    "monday": {"open": "09:00", "close": "12:00", "closed": False},
    "tuesday": {"open": "09:00", "close": "18:00", "closed": False},
    "wednesday": {"open": "09:00", "close": "18:00", "closed": False},
    "thursday": {"open": "09:00", "close": "18:00", "closed": False},
    "friday": {"open": "09:00", "close": "18:00", "closed": False},
    "saturday": {"open": "08:00", "close": "13:00", "closed": False},
    "sunday": {"closed": True},
}


@pytest.fixture
def fake_db():
    return FakeDB()


@pytest.fixture
def salon_row(fake_db):
    return fake_db.seed("salons", name="Studio Bela", opening_hours=WEEK_HOURS, is_open=True)


@pytest.fixture
def service(fake_db, salon_row):
    row = fake_db.seed(
        "services", salon_id=salon_row["id"], name="Corte", duration_minutes=30, price=50.0, active=True
    )
    return Service(**row)
