"""Supabase client wrapper with async context manager support."""

from typing import Any, Optional
from supabase import create_client, Client
from supabase.client import ClientOptions
from src.utils.config import get_settings
from src.utils.errors import ConflictError, SupabaseError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

PROPERTIES_TABLE = "properties"
USERS_TABLE = "users"
LEDGER_ENTRIES_TABLE = "ledger_entries"
SYNC_STATE_TABLE = "sync_state"
INTERESTS_TABLE = "property_interests"

# Global client instance (singleton pattern)
_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton."""
    global _client

    if _client is None:
        settings = get_settings()
        url = settings.supabase_url
        key = settings.supabase_service_role_key

        if not url or not key:
            raise SupabaseError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        # Serverless: no session persistence between invocations
        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = create_client(url, key, options)
        logger.info("Supabase client initialized", url=url)

    return _client


async def close_supabase_client() -> None:
    """Close Supabase client connections."""
    global _client
    if _client:
        # Supabase-py has no explicit close; dropping the reference releases it
        _client = None
        logger.info("Supabase client closed")


class SupabaseClient:
    """Async context manager for Supabase client."""

    def __init__(self):
        self.client: Optional[Client] = None

    async def __aenter__(self) -> Client:
        self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "Supabase operation error",
                error=str(exc_val),
                error_type=exc_type.__name__,
            )
        return False


def _is_duplicate(error: Exception) -> bool:
    return "duplicate key" in str(error).lower()


def _first(result) -> Optional[dict]:
    return result.data[0] if result.data and len(result.data) > 0 else None


# Properties table operations
async def get_property_row(property_id: str) -> Optional[dict]:
    """Get a property by property_id."""
    async with SupabaseClient() as client:
        try:
            result = client.table(PROPERTIES_TABLE).select("*").eq("property_id", property_id).execute()
            return _first(result)
        except Exception as e:
            raise SupabaseError(f"Failed to get property: {e}")


async def get_property_row_by_token(token_id: int) -> Optional[dict]:
    """Get a property by its ledger token ID."""
    async with SupabaseClient() as client:
        try:
            result = client.table(PROPERTIES_TABLE).select("*").eq("token_id", token_id).execute()
            return _first(result)
        except Exception as e:
            raise SupabaseError(f"Failed to get property by token: {e}")


async def insert_property_row(row: dict) -> dict:
    """Create a new property record."""
    async with SupabaseClient() as client:
        try:
            result = client.table(PROPERTIES_TABLE).insert(row).execute()
        except Exception as e:
            if _is_duplicate(e):
                raise ConflictError("Property already exists")
            raise SupabaseError(f"Failed to create property: {e}")
        created = _first(result)
        if created is None:
            raise SupabaseError("Failed to create property: no data returned")
        return created


async def update_property_row(property_id: str, updates: dict) -> dict:
    """Update a property record. Summary and history go in the same write."""
    async with SupabaseClient() as client:
        try:
            result = client.table(PROPERTIES_TABLE).update(updates).eq("property_id", property_id).execute()
        except Exception as e:
            if _is_duplicate(e):
                raise ConflictError("Token already assigned to another property")
            raise SupabaseError(f"Failed to update property: {e}")
        updated = _first(result)
        if updated is None:
            raise SupabaseError(f"Failed to update property: {property_id}")
        return updated


async def find_property_rows_for_address(address: str) -> list[dict]:
    """Properties owned by, or in escrow with, a wallet address."""
    async with SupabaseClient() as client:
        try:
            result = client.table(PROPERTIES_TABLE).select("*").or_(
                f"owner->>address.eq.{address},"
                f"escrow_info->>current_escrow_buyer.eq.{address},"
                f"escrow_info->>current_escrow_seller.eq.{address}"
            ).execute()
            return result.data if result.data else []
        except Exception as e:
            raise SupabaseError(f"Failed to find properties for address: {e}")


async def list_property_rows(
    filters: dict[str, Any],
    owner: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """List properties newest first with equality filters and pagination."""
    async with SupabaseClient() as client:
        try:
            query = client.table(PROPERTIES_TABLE).select("*", count="exact")
            for column, value in filters.items():
                if value is not None:
                    query = query.eq(column, value)
            if owner:
                query = query.eq("owner->>address", owner)
            result = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
            rows = result.data if result.data else []
            total = result.count if result.count is not None else len(rows)
            return rows, total
        except Exception as e:
            raise SupabaseError(f"Failed to list properties: {e}")


# Users table operations
async def get_user_row(wallet_address: str) -> Optional[dict]:
    """Get a user by wallet address."""
    async with SupabaseClient() as client:
        try:
            result = client.table(USERS_TABLE).select("*").eq("wallet_address", wallet_address).execute()
            return _first(result)
        except Exception as e:
            raise SupabaseError(f"Failed to get user: {e}")


async def insert_user_row(row: dict) -> dict:
    """Create a new user record."""
    async with SupabaseClient() as client:
        try:
            result = client.table(USERS_TABLE).insert(row).execute()
        except Exception as e:
            if _is_duplicate(e):
                raise ConflictError("User already registered with this wallet address")
            raise SupabaseError(f"Failed to create user: {e}")
        created = _first(result)
        if created is None:
            raise SupabaseError("Failed to create user: no data returned")
        return created


async def update_user_row(wallet_address: str, updates: dict) -> dict:
    """Update a user record."""
    async with SupabaseClient() as client:
        try:
            result = client.table(USERS_TABLE).update(updates).eq("wallet_address", wallet_address).execute()
        except Exception as e:
            raise SupabaseError(f"Failed to update user: {e}")
        updated = _first(result)
        if updated is None:
            raise SupabaseError(f"Failed to update user: {wallet_address}")
        return updated


async def list_user_rows(status: Optional[str] = None) -> list[dict]:
    """List users, newest registration first."""
    async with SupabaseClient() as client:
        try:
            query = client.table(USERS_TABLE).select("*")
            if status:
                query = query.eq("status", status)
            result = query.order("registered_at", desc=True).execute()
            return result.data if result.data else []
        except Exception as e:
            raise SupabaseError(f"Failed to list users: {e}")


# Ledger entries table operations
async def get_ledger_entry_row(transaction_hash: str) -> Optional[dict]:
    """Get a ledger entry by transaction hash."""
    async with SupabaseClient() as client:
        try:
            result = client.table(LEDGER_ENTRIES_TABLE).select("*").eq("transaction_hash", transaction_hash).execute()
            return _first(result)
        except Exception as e:
            raise SupabaseError(f"Failed to get ledger entry: {e}")


async def insert_ledger_entry_row(row: dict) -> dict:
    """Insert a ledger entry; the unique index on transaction_hash raises ConflictError."""
    async with SupabaseClient() as client:
        try:
            result = client.table(LEDGER_ENTRIES_TABLE).insert(row).execute()
        except Exception as e:
            if _is_duplicate(e):
                raise ConflictError("Transaction already recorded")
            raise SupabaseError(f"Failed to insert ledger entry: {e}")
        created = _first(result)
        if created is None:
            raise SupabaseError("Failed to insert ledger entry: no data returned")
        return created


async def list_ledger_entry_rows(
    filters: dict[str, Any],
    address: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """List ledger entries newest first with equality filters and pagination."""
    async with SupabaseClient() as client:
        try:
            query = client.table(LEDGER_ENTRIES_TABLE).select("*", count="exact")
            for column, value in filters.items():
                if value is not None:
                    query = query.eq(column, value)
            if address:
                query = query.or_(f"from_address.eq.{address},to_address.eq.{address}")
            result = query.order("timestamp", desc=True).range(offset, offset + limit - 1).execute()
            rows = result.data if result.data else []
            total = result.count if result.count is not None else len(rows)
            return rows, total
        except Exception as e:
            raise SupabaseError(f"Failed to list ledger entries: {e}")


# Property interests table operations
async def get_interest_row(interest_id: str) -> Optional[dict]:
    """Get a property interest by ID."""
    async with SupabaseClient() as client:
        try:
            result = client.table(INTERESTS_TABLE).select("*").eq("id", interest_id).execute()
            return _first(result)
        except Exception as e:
            raise SupabaseError(f"Failed to get interest: {e}")


async def insert_interest_row(row: dict) -> dict:
    """Insert an interest; the unique index on (token_id, buyer_address) raises ConflictError."""
    async with SupabaseClient() as client:
        try:
            result = client.table(INTERESTS_TABLE).insert(row).execute()
        except Exception as e:
            if _is_duplicate(e):
                raise ConflictError("You have already expressed interest in this property")
            raise SupabaseError(f"Failed to create interest: {e}")
        created = _first(result)
        if created is None:
            raise SupabaseError("Failed to create interest: no data returned")
        return created


async def update_interest_row(interest_id: str, updates: dict) -> dict:
    """Update a property interest."""
    async with SupabaseClient() as client:
        try:
            result = client.table(INTERESTS_TABLE).update(updates).eq("id", interest_id).execute()
        except Exception as e:
            raise SupabaseError(f"Failed to update interest: {e}")
        updated = _first(result)
        if updated is None:
            raise SupabaseError(f"Failed to update interest: {interest_id}")
        return updated


async def delete_interest_row(interest_id: str) -> None:
    """Delete a property interest."""
    async with SupabaseClient() as client:
        try:
            client.table(INTERESTS_TABLE).delete().eq("id", interest_id).execute()
        except Exception as e:
            raise SupabaseError(f"Failed to delete interest: {e}")


async def list_interest_rows(filters: dict[str, Any]) -> list[dict]:
    """List property interests newest first with equality filters."""
    async with SupabaseClient() as client:
        try:
            query = client.table(INTERESTS_TABLE).select("*")
            for column, value in filters.items():
                if value is not None:
                    query = query.eq(column, value)
            result = query.order("created_at", desc=True).execute()
            return result.data if result.data else []
        except Exception as e:
            raise SupabaseError(f"Failed to list interests: {e}")


# Sync state (event subscription checkpoint)
async def get_sync_checkpoint(key: str) -> Optional[int]:
    """Last processed block for a subscription key."""
    async with SupabaseClient() as client:
        try:
            result = client.table(SYNC_STATE_TABLE).select("last_block").eq("key", key).execute()
            row = _first(result)
            return int(row["last_block"]) if row else None
        except Exception as e:
            raise SupabaseError(f"Failed to get sync checkpoint: {e}")


async def set_sync_checkpoint(key: str, last_block: int) -> None:
    """Store the last processed block for a subscription key."""
    async with SupabaseClient() as client:
        try:
            client.table(SYNC_STATE_TABLE).upsert({"key": key, "last_block": last_block}).execute()
        except Exception as e:
            raise SupabaseError(f"Failed to set sync checkpoint: {e}")
