from typing import Optional

from salonbook.core.config import settings
from salonbook.core.errors import UniqueConstraintError, TransientStorageError
from salonbook.core.logger import logger
from salonbook.models.db_models import Client


def normalize_phone(phone: str) -> str:
    return "".join(phone.split()) if phone else ""


class ClientResolver:
    """Find-or-create of clients keyed on the unique phone number."""

    def __init__(self, db):
        self.db = db

    async def find_by_phone(self, phone: str) -> Optional[Client]:
        rows = await self.db.query(settings.CLIENTS_TABLE, {"phone": normalize_phone(phone)})
        if rows:
            return Client(**rows[0])
        return None

    async def create(self, name: str, phone: str, email: Optional[str] = None) -> Client:
        record = {
            "name": name.strip() if name else None,
            "phone": normalize_phone(phone),
            "email": email.strip() if email and email.strip() else None,
        }
        row = await self.db.insert(settings.CLIENTS_TABLE, record)
        logger.info(f"🆕 New client created: {record['name']} ({record['phone']})")
        return Client(**row)

    async def find_or_create(self, name: str, phone: str, email: Optional[str] = None) -> Client:
        """
        Returns the client for phone, creating it when absent.
        A concurrent create for the same phone is resolved by reading the winner's row.
        """
        existing = await self.find_by_phone(phone)
        if existing:
            logger.info(f"✅ Found existing client: {existing.id}")
            return existing

        try:
            return await self.create(name, phone, email)
        except UniqueConstraintError:
            logger.info(f"🔁 Client {normalize_phone(phone)} created concurrently, reloading")
            winner = await self.find_by_phone(phone)
            if winner is None:
                raise TransientStorageError(f"Client {normalize_phone(phone)} vanished after unique violation")
            return winner

    async def update_profile(self, client_id: str, **changes) -> Client:
        """Edits name/email. Blank values are ignored; the phone is the identity and is not editable here."""
        patch = {}
        for field in ("name", "email"):
            value = changes.get(field)
            if value is not None and str(value).strip():
                patch[field] = str(value).strip()
        if not patch:
            rows = await self.db.query(settings.CLIENTS_TABLE, {"id": client_id})
            if not rows:
                raise TransientStorageError(f"Client {client_id} not found")
            return Client(**rows[0])

        row = await self.db.update(settings.CLIENTS_TABLE, client_id, patch)
        logger.info(f"✨ Client {client_id} profile updated: {sorted(patch)}")
        return Client(**row)
