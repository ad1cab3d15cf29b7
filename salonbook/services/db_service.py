from supabase import create_async_client, AsyncClient
from postgrest.exceptions import APIError
from salonbook.core.config import settings
from salonbook.core.errors import TransientStorageError, UniqueConstraintError
import logging
from typing import Any, Optional

logger = logging.getLogger("salonbook")

UNIQUE_VIOLATION = "23505"


def _raise_storage_error(operation: str, table: str, e: Exception):
    """Translates a PostgREST/network failure into the core's storage errors."""
    if isinstance(e, APIError) and e.code == UNIQUE_VIOLATION:
        logger.warning(f"⚠️ Unique constraint hit ({operation} {table}): {e.message}")
        raise UniqueConstraintError(e.message, constraint=e.details) from e
    logger.error(f"❌ DB Error ({operation} {table}): {e}")
    raise TransientStorageError(f"{operation} on {table} failed: {e}") from e


class DBService:
    """
    Storage collaborator of the scheduling core.
    Exposes only query / insert / update / invoke over Supabase.
    """
    _instance = None
    _client: AsyncClient = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DBService, cls).__new__(cls)
            # Async client init is tricky in __new__ (sync), will init on first usage
        return cls._instance

    async def get_client(self) -> AsyncClient:
        if not self._client:
            if not (settings.SUPABASE_URL and settings.SUPABASE_KEY):
                logger.warning("⚠️ Supabase credentials missing")
                raise TransientStorageError("Supabase credentials missing")
            try:
                self._client = await create_async_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
                logger.info("✅ Supabase Async client initialized")
            except Exception as e:
                logger.error(f"❌ Failed to initialize Supabase Async: {e}")
                raise TransientStorageError(f"Supabase init failed: {e}") from e
        return self._client

    async def query(self, table: str, filters: Optional[dict] = None, columns: str = "*", order: Optional[str] = None) -> list[dict]:
        """
        Reads rows matching all filters.
        Filter values: scalar -> eq, list/tuple -> in, None -> is null.
        """
        client = await self.get_client()
        try:
            request = client.table(table).select(columns)
            for column, value in (filters or {}).items():
                if value is None:
                    request = request.is_(column, "null")
                elif isinstance(value, (list, tuple)):
                    request = request.in_(column, [getattr(v, "value", v) for v in value])
                else:
                    request = request.eq(column, getattr(value, "value", value))
            if order:
                request = request.order(order)
            response = await request.execute()
            return response.data or []
        except Exception as e:
            _raise_storage_error("query", table, e)

    async def insert(self, table: str, record: dict) -> dict:
        client = await self.get_client()
        try:
            response = await client.table(table).insert(record).execute()
        except Exception as e:
            _raise_storage_error("insert", table, e)

        if not response.data:
            raise TransientStorageError(f"insert on {table} returned no row")
        return response.data[0]

    async def update(self, table: str, record_id: Any, patch: dict) -> dict:
        client = await self.get_client()
        try:
            response = await client.table(table).update(patch).eq("id", record_id).execute()
        except Exception as e:
            _raise_storage_error("update", table, e)

        if not response.data:
            raise TransientStorageError(f"update on {table} matched no row (id={record_id})")
        return response.data[0]

    async def invoke(self, operation: str, payload: dict) -> dict:
        """
        Calls a remote function. Never raises.
        Returns {'success': True, 'data': ...} or {'success': False, 'error': str}.
        """
        try:
            client = await self.get_client()
            data = await client.functions.invoke(
                operation,
                invoke_options={"body": payload, "responseType": "json"},
            )
            return {"success": True, "data": data}
        except Exception as e:
            logger.error(f"❌ Function Error ({operation}): {e}")
            return {"success": False, "error": str(e)}

db_service = DBService()
