"""Ledger interface for the escrow contract, plus an in-process backend.

``EscrowLedger`` is the surface the engine consumes. ``Web3EscrowLedger``
(src/services/web3_ledger.py) talks to the deployed contracts;
``LocalEscrowLedger`` keeps contract state in memory for local development and
tests and enforces the contract's guards when a transaction is mined.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from web3 import Web3

from src.models.escrow import (
    EscrowDeal,
    EscrowStatus,
    LedgerEvent,
    PendingTransaction,
    TransactionReceipt,
)
from src.models.common import normalize_address
from src.services import escrow_state_machine as sm
from src.utils.errors import LedgerUnavailable
from src.utils.logging import get_structured_logger, mask_address

logger = get_structured_logger(__name__)


class EscrowLedger(ABC):
    """Operations of the escrow, KYC and property NFT contracts."""

    contract_address: str

    @abstractmethod
    async def get_deal(self, token_id: int) -> Optional[EscrowDeal]:
        """Current deal for a token, or None if no deal was ever created."""

    @abstractmethod
    async def fee_basis_points(self) -> int: ...

    @abstractmethod
    async def fee_recipient(self) -> str: ...

    @abstractmethod
    async def owner_of(self, token_id: int) -> Optional[str]: ...

    @abstractmethod
    async def is_kyc_verified(self, address: str) -> bool: ...

    @abstractmethod
    async def submit_create_escrow(self, caller: str, token_id: int, buyer: str, price: int) -> PendingTransaction: ...

    @abstractmethod
    async def submit_deposit_funds(self, caller: str, token_id: int, value: int) -> PendingTransaction: ...

    @abstractmethod
    async def submit_complete_deal(self, caller: str, token_id: int) -> PendingTransaction: ...

    @abstractmethod
    async def submit_cancel_escrow(self, caller: str, token_id: int) -> PendingTransaction: ...

    @abstractmethod
    async def submit_refund_buyer(self, caller: str, token_id: int) -> PendingTransaction: ...

    @abstractmethod
    async def wait_for_receipt(self, pending: PendingTransaction, timeout: float) -> Optional[TransactionReceipt]:
        """Await confirmation; None when the timeout elapses first."""

    @abstractmethod
    async def latest_block(self) -> int: ...

    @abstractmethod
    async def get_events(self, from_block: int, to_block: Optional[int] = None) -> list[LedgerEvent]: ...


@dataclass
class _QueuedCall:
    pending: PendingTransaction
    caller: str
    apply: Callable[[], Optional[str]]


class LocalEscrowLedger(EscrowLedger):
    """In-memory escrow contract.

    Submissions are queued and committed when awaited (``auto_mine``) or when
    ``mine_pending`` runs. Guards are evaluated at commit against the state at
    that moment; a failing guard produces a reverted receipt.
    """

    def __init__(
        self,
        fee_basis_points: int = 250,
        fee_recipient: str = "0x000000000000000000000000000000000000fee5",
        contract_address: str = "0x32f99155646d147b8A4846470b64a96dD9cBa414",
    ):
        self.contract_address = contract_address
        self._fee_bps = fee_basis_points
        self._fee_recipient = normalize_address(fee_recipient)
        self._deals: dict[int, EscrowDeal] = {}
        self._owners: dict[int, str] = {}
        self._verified: set[str] = set()
        self.balances: dict[str, int] = defaultdict(int)
        self.escrow_balance = 0
        self._block = 0
        self._nonce = 0
        self._queued: dict[str, _QueuedCall] = {}
        self._receipts: dict[str, TransactionReceipt] = {}
        self._events: list[LedgerEvent] = []
        self._current_logs: list[tuple] = []
        self._lock = asyncio.Lock()
        self.auto_mine = True
        self.available = True

    # Administrative setup (what deployment scripts and the KYC/NFT contracts do)

    def set_kyc(self, address: str, verified: bool = True) -> None:
        address = normalize_address(address)
        if verified:
            self._verified.add(address)
        else:
            self._verified.discard(address)

    def mint(self, token_id: int, owner: str) -> None:
        self._owners[token_id] = normalize_address(owner)

    def fund(self, address: str, amount: int) -> None:
        self.balances[normalize_address(address)] += amount

    def update_fee_percent(self, fee_basis_points: int) -> None:
        """Change the rate for future deals; existing deals keep their fee."""
        if not 0 <= fee_basis_points <= sm.BASIS_POINTS_DENOMINATOR:
            raise ValueError("fee_basis_points must be within 0..10000")
        self._fee_bps = fee_basis_points

    def update_fee_recipient(self, address: str) -> None:
        self._fee_recipient = normalize_address(address)

    # Reads

    def _ensure_available(self) -> None:
        if not self.available:
            raise LedgerUnavailable("Local ledger is offline")

    async def get_deal(self, token_id: int) -> Optional[EscrowDeal]:
        self._ensure_available()
        deal = self._deals.get(token_id)
        return deal.model_copy() if deal else None

    async def fee_basis_points(self) -> int:
        self._ensure_available()
        return self._fee_bps

    async def fee_recipient(self) -> str:
        self._ensure_available()
        return self._fee_recipient

    async def owner_of(self, token_id: int) -> Optional[str]:
        self._ensure_available()
        return self._owners.get(token_id)

    async def is_kyc_verified(self, address: str) -> bool:
        self._ensure_available()
        return address.lower() in self._verified

    async def latest_block(self) -> int:
        self._ensure_available()
        return self._block

    async def get_events(self, from_block: int, to_block: Optional[int] = None) -> list[LedgerEvent]:
        self._ensure_available()
        upper = self._block if to_block is None else to_block
        return [e for e in self._events if from_block <= e.block_number <= upper]

    # Submissions

    def _queue(self, operation: str, caller: str, token_id: int, apply: Callable[[], Optional[str]]) -> PendingTransaction:
        self._ensure_available()
        self._nonce += 1
        tx_hash = Web3.to_hex(Web3.keccak(text=f"local:{self._nonce}:{operation}:{token_id}:{caller}"))
        pending = PendingTransaction(
            transaction_hash=tx_hash,
            operation=operation,
            token_id=token_id,
            submitted_at=datetime.now(timezone.utc),
        )
        self._queued[pending.transaction_hash] = _QueuedCall(pending=pending, caller=caller.lower(), apply=apply)
        logger.debug(
            "Local ledger transaction queued",
            operation=operation,
            token_id=token_id,
            caller=mask_address(caller),
            transaction_hash=pending.transaction_hash,
        )
        return pending

    async def submit_create_escrow(self, caller: str, token_id: int, buyer: str, price: int) -> PendingTransaction:
        caller, buyer = caller.lower(), buyer.lower()

        def apply() -> Optional[str]:
            reason = sm.create_guard(
                caller=caller,
                token_owner=self._owners.get(token_id),
                existing=self._deals.get(token_id),
                buyer=buyer,
                price=price,
                buyer_verified=buyer in self._verified,
                seller_verified=caller in self._verified,
            )
            if reason:
                return reason
            fee = sm.compute_fee(price, self._fee_bps)
            self._deals[token_id] = EscrowDeal(
                token_id=token_id,
                seller=caller,
                buyer=buyer,
                price=price,
                fee=fee,
                status=EscrowStatus.PENDING,
                funds_deposited=False,
                created_at=datetime.now(timezone.utc),
            )
            self._emit("EscrowCreated", token_id, seller=caller, buyer=buyer, price=price)
            return None

        return self._queue("createEscrow", caller, token_id, apply)

    async def submit_deposit_funds(self, caller: str, token_id: int, value: int) -> PendingTransaction:
        caller = caller.lower()

        def apply() -> Optional[str]:
            deal = self._deals.get(token_id)
            reason = sm.deposit_guard(caller, deal, value)
            if reason:
                return reason
            if self.balances[caller] < value:
                return "Insufficient balance"
            self.balances[caller] -= value
            self.escrow_balance += value
            self._deals[token_id] = deal.model_copy(update={"status": EscrowStatus.FUNDED, "funds_deposited": True})
            self._emit("FundsDeposited", token_id, amount=value)
            return None

        return self._queue("depositFunds", caller, token_id, apply)

    async def submit_complete_deal(self, caller: str, token_id: int) -> PendingTransaction:
        caller = caller.lower()

        def apply() -> Optional[str]:
            deal = self._deals.get(token_id)
            reason = sm.complete_guard(
                caller,
                deal,
                buyer_verified=deal is not None and deal.buyer in self._verified,
                seller_verified=deal is not None and deal.seller in self._verified,
            )
            if reason:
                return reason
            self.escrow_balance -= deal.total
            self.balances[deal.seller] += deal.price
            self.balances[self._fee_recipient] += deal.fee
            self._owners[token_id] = deal.buyer
            self._deals[token_id] = deal.model_copy(update={"status": EscrowStatus.COMPLETED})
            self._emit("EscrowCompleted", token_id)
            return None

        return self._queue("completeDeal", caller, token_id, apply)

    async def submit_cancel_escrow(self, caller: str, token_id: int) -> PendingTransaction:
        caller = caller.lower()

        def apply() -> Optional[str]:
            deal = self._deals.get(token_id)
            reason = sm.cancel_guard(caller, deal)
            if reason:
                return reason
            self._deals[token_id] = deal.model_copy(update={"status": EscrowStatus.CANCELLED})
            self._emit("EscrowCancelled", token_id)
            return None

        return self._queue("cancelEscrow", caller, token_id, apply)

    async def submit_refund_buyer(self, caller: str, token_id: int) -> PendingTransaction:
        caller = caller.lower()

        def apply() -> Optional[str]:
            deal = self._deals.get(token_id)
            reason = sm.refund_guard(caller, deal)
            if reason:
                return reason
            self.escrow_balance -= deal.total
            self.balances[deal.buyer] += deal.total
            self._deals[token_id] = deal.model_copy(update={"status": EscrowStatus.REFUNDED})
            self._emit("FundsRefunded", token_id, amount=deal.total)
            return None

        return self._queue("refundBuyer", caller, token_id, apply)

    # Mining

    def _emit(self, name: str, token_id: int, **args) -> None:
        self._current_logs.append((name, token_id, args))

    async def _commit(self, queued: _QueuedCall) -> TransactionReceipt:
        async with self._lock:
            self._current_logs = []
            self._block += 1
            reason = queued.apply()
            tx_hash = queued.pending.transaction_hash
            if reason:
                receipt = TransactionReceipt(
                    transaction_hash=tx_hash,
                    succeeded=False,
                    block_number=self._block,
                    revert_reason=reason,
                )
            else:
                for index, (name, token_id, args) in enumerate(self._current_logs):
                    self._events.append(LedgerEvent(
                        name=name,
                        token_id=token_id,
                        transaction_hash=tx_hash,
                        block_number=self._block,
                        log_index=index,
                        **args,
                    ))
                receipt = TransactionReceipt(transaction_hash=tx_hash, succeeded=True, block_number=self._block)
            self._receipts[tx_hash] = receipt
            del self._queued[tx_hash]
            return receipt

    async def mine_pending(self) -> list[TransactionReceipt]:
        """Commit every queued transaction in submission order."""
        receipts = []
        for queued in list(self._queued.values()):
            receipts.append(await self._commit(queued))
        return receipts

    async def wait_for_receipt(self, pending: PendingTransaction, timeout: float) -> Optional[TransactionReceipt]:
        self._ensure_available()
        tx_hash = pending.transaction_hash
        if tx_hash in self._receipts:
            return self._receipts[tx_hash]
        queued = self._queued.get(tx_hash)
        if queued is None or not self.auto_mine:
            return None
        return await self._commit(queued)
