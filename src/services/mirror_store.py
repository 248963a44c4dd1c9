"""Persistence for the off-chain mirror: properties, users, interests, ledger entries and sync checkpoints."""

from abc import ABC, abstractmethod
from typing import Optional

from src.models.interest import PropertyInterest
from src.models.ledger_entry import LedgerEntry
from src.models.property import PropertyRecord
from src.models.user import UserRecord, KYCStatus
from src.services import supabase_client as db


class MirrorStore(ABC):
    """Storage operations the services depend on."""

    # Properties
    @abstractmethod
    async def get_property(self, property_id: str) -> Optional[PropertyRecord]: ...

    @abstractmethod
    async def get_property_by_token(self, token_id: int) -> Optional[PropertyRecord]: ...

    @abstractmethod
    async def create_property(self, record: PropertyRecord) -> PropertyRecord: ...

    @abstractmethod
    async def save_property(self, record: PropertyRecord) -> PropertyRecord:
        """Write the whole record (summary and history together)."""

    @abstractmethod
    async def find_properties_for_address(self, address: str) -> list[PropertyRecord]: ...

    @abstractmethod
    async def list_properties(
        self,
        *,
        status: Optional[str] = None,
        owner: Optional[str] = None,
        property_type: Optional[str] = None,
        is_listed: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[PropertyRecord], int]:
        """Newest first; ``owner`` matches the owning wallet address."""

    # Users
    @abstractmethod
    async def get_user(self, wallet_address: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def create_user(self, user: UserRecord) -> UserRecord: ...

    @abstractmethod
    async def save_user(self, user: UserRecord) -> UserRecord: ...

    @abstractmethod
    async def list_users(self, status: Optional[KYCStatus] = None) -> list[UserRecord]: ...

    # Ledger entries
    @abstractmethod
    async def get_ledger_entry(self, transaction_hash: str) -> Optional[LedgerEntry]: ...

    @abstractmethod
    async def insert_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """Insert; raises ConflictError when the transaction hash already exists."""

    @abstractmethod
    async def list_ledger_entries(
        self,
        *,
        type: Optional[str] = None,
        status: Optional[str] = None,
        property_id: Optional[str] = None,
        token_id: Optional[int] = None,
        address: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[LedgerEntry], int]: ...

    # Property interests
    @abstractmethod
    async def get_interest(self, interest_id: str) -> Optional[PropertyInterest]: ...

    @abstractmethod
    async def insert_interest(self, interest: PropertyInterest) -> PropertyInterest:
        """Insert; raises ConflictError when the buyer already has an interest in the token."""

    @abstractmethod
    async def save_interest(self, interest: PropertyInterest) -> PropertyInterest: ...

    @abstractmethod
    async def delete_interest(self, interest_id: str) -> None: ...

    @abstractmethod
    async def list_interests(
        self,
        *,
        token_id: Optional[int] = None,
        buyer: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> list[PropertyInterest]:
        """Newest first."""

    # Event subscription checkpoint
    @abstractmethod
    async def get_checkpoint(self, key: str) -> Optional[int]: ...

    @abstractmethod
    async def set_checkpoint(self, key: str, last_block: int) -> None: ...


class SupabaseMirrorStore(MirrorStore):
    """MirrorStore over the Supabase tables."""

    async def get_property(self, property_id: str) -> Optional[PropertyRecord]:
        row = await db.get_property_row(property_id)
        return PropertyRecord.from_legacy(row) if row else None

    async def get_property_by_token(self, token_id: int) -> Optional[PropertyRecord]:
        row = await db.get_property_row_by_token(token_id)
        return PropertyRecord.from_legacy(row) if row else None

    async def create_property(self, record: PropertyRecord) -> PropertyRecord:
        row = await db.insert_property_row(record.model_dump(mode="json"))
        return PropertyRecord.from_legacy(row)

    async def save_property(self, record: PropertyRecord) -> PropertyRecord:
        updates = record.model_dump(mode="json", exclude={"property_id"})
        row = await db.update_property_row(record.property_id, updates)
        return PropertyRecord.from_legacy(row)

    async def find_properties_for_address(self, address: str) -> list[PropertyRecord]:
        rows = await db.find_property_rows_for_address(address.lower())
        return [PropertyRecord.from_legacy(row) for row in rows]

    async def list_properties(
        self,
        *,
        status: Optional[str] = None,
        owner: Optional[str] = None,
        property_type: Optional[str] = None,
        is_listed: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[PropertyRecord], int]:
        filters = {"status": status, "property_type": property_type, "is_listed": is_listed}
        rows, total = await db.list_property_rows(
            filters,
            owner=owner.lower() if owner else None,
            limit=limit,
            offset=offset,
        )
        return [PropertyRecord.from_legacy(row) for row in rows], total

    async def get_user(self, wallet_address: str) -> Optional[UserRecord]:
        row = await db.get_user_row(wallet_address.lower())
        return UserRecord.model_validate(row) if row else None

    async def create_user(self, user: UserRecord) -> UserRecord:
        row = await db.insert_user_row(user.model_dump(mode="json"))
        return UserRecord.model_validate(row)

    async def save_user(self, user: UserRecord) -> UserRecord:
        updates = user.model_dump(mode="json", exclude={"wallet_address"})
        row = await db.update_user_row(user.wallet_address, updates)
        return UserRecord.model_validate(row)

    async def list_users(self, status: Optional[KYCStatus] = None) -> list[UserRecord]:
        rows = await db.list_user_rows(status.value if status else None)
        return [UserRecord.model_validate(row) for row in rows]

    async def get_ledger_entry(self, transaction_hash: str) -> Optional[LedgerEntry]:
        row = await db.get_ledger_entry_row(transaction_hash.lower())
        return LedgerEntry.model_validate(row) if row else None

    async def insert_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        row = await db.insert_ledger_entry_row(entry.model_dump(mode="json"))
        return LedgerEntry.model_validate(row)

    async def list_ledger_entries(
        self,
        *,
        type: Optional[str] = None,
        status: Optional[str] = None,
        property_id: Optional[str] = None,
        token_id: Optional[int] = None,
        address: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[LedgerEntry], int]:
        filters = {"type": type, "status": status, "property_id": property_id, "token_id": token_id}
        rows, total = await db.list_ledger_entry_rows(
            filters,
            address=address.lower() if address else None,
            limit=limit,
            offset=offset,
        )
        return [LedgerEntry.model_validate(row) for row in rows], total

    async def get_interest(self, interest_id: str) -> Optional[PropertyInterest]:
        row = await db.get_interest_row(interest_id)
        return PropertyInterest.model_validate(row) if row else None

    async def insert_interest(self, interest: PropertyInterest) -> PropertyInterest:
        row = await db.insert_interest_row(interest.model_dump(mode="json"))
        return PropertyInterest.model_validate(row)

    async def save_interest(self, interest: PropertyInterest) -> PropertyInterest:
        updates = interest.model_dump(mode="json", exclude={"id"})
        row = await db.update_interest_row(interest.id, updates)
        return PropertyInterest.model_validate(row)

    async def delete_interest(self, interest_id: str) -> None:
        await db.delete_interest_row(interest_id)

    async def list_interests(
        self,
        *,
        token_id: Optional[int] = None,
        buyer: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> list[PropertyInterest]:
        rows = await db.list_interest_rows({
            "token_id": token_id,
            "buyer_address": buyer.lower() if buyer else None,
            "owner_address": owner.lower() if owner else None,
        })
        return [PropertyInterest.model_validate(row) for row in rows]

    async def get_checkpoint(self, key: str) -> Optional[int]:
        return await db.get_sync_checkpoint(key)

    async def set_checkpoint(self, key: str, last_block: int) -> None:
        await db.set_sync_checkpoint(key, last_block)
