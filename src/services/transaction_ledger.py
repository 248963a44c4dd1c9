"""Append-only transaction ledger with idempotent inserts keyed by transaction hash."""

from datetime import datetime, timezone
from typing import Optional

from src.models.common import new_id
from src.models.ledger_entry import LedgerEntry, LedgerEntryStatus, LedgerEntryType
from src.models.requests import TransactionRecordRequest
from src.services.mirror_store import MirrorStore
from src.utils.errors import ConflictError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

MAX_PAGE_SIZE = 100


class TransactionLedger:
    """Records mint, transfer, sale and escrow events for auditing and notifications."""

    def __init__(self, store: MirrorStore):
        self.store = store

    async def record(
        self,
        type: LedgerEntryType,
        transaction_hash: str,
        *,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
        property_id: Optional[str] = None,
        token_id: Optional[int] = None,
        value: int = 0,
        status: LedgerEntryStatus = LedgerEntryStatus.CONFIRMED,
        block_number: Optional[int] = None,
        recorded_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> tuple[LedgerEntry, bool]:
        """Store an entry once per transaction hash.

        Returns (entry, created). A repeated hash returns the stored entry
        unchanged, including when a concurrent insert wins the race.
        """
        transaction_hash = transaction_hash.lower()
        existing = await self.store.get_ledger_entry(transaction_hash)
        if existing is not None:
            logger.debug("Duplicate ledger entry ignored", transaction_hash=transaction_hash, entry_id=existing.id)
            return existing, False

        entry = LedgerEntry(
            id=new_id(),
            type=type,
            from_address=from_address,
            to_address=to_address,
            property_id=property_id,
            token_id=token_id,
            value=value,
            status=status,
            transaction_hash=transaction_hash,
            block_number=block_number,
            recorded_by=recorded_by,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        try:
            stored = await self.store.insert_ledger_entry(entry)
        except ConflictError:
            existing = await self.store.get_ledger_entry(transaction_hash)
            if existing is None:
                raise
            logger.debug("Ledger entry inserted concurrently", transaction_hash=transaction_hash)
            return existing, False

        logger.info(
            "Ledger entry recorded",
            entry_id=stored.id,
            entry_type=stored.type.value,
            transaction_hash=transaction_hash,
            token_id=token_id,
        )
        return stored, True

    async def record_request(self, request: TransactionRecordRequest, recorded_by: Optional[str] = None) -> tuple[LedgerEntry, bool]:
        return await self.record(
            request.type,
            request.transaction_hash,
            from_address=request.from_address,
            to_address=request.to_address,
            property_id=request.property_id,
            token_id=request.token_id,
            value=request.value,
            status=request.status,
            block_number=request.block_number,
            recorded_by=recorded_by,
        )

    async def list_entries(
        self,
        *,
        type: Optional[str] = None,
        status: Optional[str] = None,
        property_id: Optional[str] = None,
        token_id: Optional[int] = None,
        address: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Filtered, paginated listing (newest first)."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        entries, total = await self.store.list_ledger_entries(
            type=type,
            status=status,
            property_id=property_id,
            token_id=token_id,
            address=address,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return {
            "entries": entries,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def entries_for_token(self, token_id: int) -> list[LedgerEntry]:
        entries, _ = await self.store.list_ledger_entries(token_id=token_id, limit=MAX_PAGE_SIZE)
        return entries
