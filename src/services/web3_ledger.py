"""Escrow ledger backed by the deployed contracts, via web3.py."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from src.models.escrow import (
    EscrowDeal,
    EscrowStatus,
    LedgerEvent,
    PendingTransaction,
    TransactionReceipt,
)
from src.services.escrow_ledger import EscrowLedger
from src.utils.errors import AuthorizationError, GuardViolation, LedgerUnavailable
from src.utils.logging import get_structured_logger, log_timing, mask_address

logger = get_structured_logger(__name__)

ABI_DIR = Path(__file__).resolve().parent.parent / "abi"

EVENT_SIGNATURES = {
    "EscrowCreated": "EscrowCreated(uint256,address,address,uint256)",
    "FundsDeposited": "FundsDeposited(uint256,uint256)",
    "EscrowCompleted": "EscrowCompleted(uint256)",
    "EscrowCancelled": "EscrowCancelled(uint256)",
    "FundsRefunded": "FundsRefunded(uint256,uint256)",
}


def load_abi(name: str) -> list:
    """Load a contract ABI from src/abi; accepts bare ABIs and build artifacts."""
    with open(ABI_DIR / f"{name}.json") as f:
        artifact = json.load(f)
    if isinstance(artifact, dict) and "abi" in artifact:
        return artifact["abi"]
    if isinstance(artifact, list):
        return artifact
    raise ValueError(f"Invalid ABI format in {name}.json")


def _revert_reason(error: ContractLogicError) -> str:
    message = getattr(error, "message", None) or str(error)
    for prefix in ("execution reverted: ", "execution reverted"):
        if message.startswith(prefix):
            message = message[len(prefix):]
    return message.strip() or "Transaction reverted"


class Web3EscrowLedger(EscrowLedger):
    """Talks to the escrow, KYC registry and property NFT contracts.

    Mutations are signed with keys from ``signer_keys``; a caller without a
    configured key cannot act through this backend.
    """

    def __init__(
        self,
        rpc_url: str,
        escrow_address: str,
        kyc_address: Optional[str] = None,
        nft_address: Optional[str] = None,
        signer_keys: Iterable[str] = (),
    ):
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.contract_address = Web3.to_checksum_address(escrow_address)
        self.escrow = self.w3.eth.contract(address=self.contract_address, abi=load_abi("Escrow"))
        self.kyc = (
            self.w3.eth.contract(address=Web3.to_checksum_address(kyc_address), abi=load_abi("KYCRegistry"))
            if kyc_address else None
        )
        self.nft = (
            self.w3.eth.contract(address=Web3.to_checksum_address(nft_address), abi=load_abi("PropertyNFT"))
            if nft_address else None
        )
        accounts = [Account.from_key(key) for key in signer_keys]
        self._signers = {account.address.lower(): account for account in accounts}
        self._topics = {bytes(Web3.keccak(text=sig)): name for name, sig in EVENT_SIGNATURES.items()}
        logger.info(
            "Web3 escrow ledger initialized",
            escrow_contract=self.contract_address,
            kyc_configured=self.kyc is not None,
            nft_configured=self.nft is not None,
            signers=len(self._signers),
        )

    @asynccontextmanager
    async def _rpc(self, operation: str, **context):
        """Map web3 failures onto the error taxonomy."""
        try:
            with log_timing(f"ledger.{operation}", logger=logger, **context):
                yield
        except ContractLogicError as e:
            raise GuardViolation(_revert_reason(e)) from e
        except (GuardViolation, LedgerUnavailable, AuthorizationError):
            raise
        except Exception as e:
            logger.error("Ledger call failed", operation=operation, error=str(e), **context)
            raise LedgerUnavailable(f"Ledger call {operation} failed") from e

    # Reads

    async def get_deal(self, token_id: int) -> Optional[EscrowDeal]:
        async with self._rpc("getDeal", token_id=token_id):
            raw = await self.escrow.functions.getDeal(token_id).call()
        seller, buyer, price, fee, status, funds_deposited, created_at = raw
        if int(seller, 16) == 0:
            return None
        return EscrowDeal(
            token_id=token_id,
            seller=seller,
            buyer=buyer,
            price=price,
            fee=fee,
            status=EscrowStatus.from_ordinal(status),
            funds_deposited=funds_deposited,
            created_at=datetime.fromtimestamp(created_at, tz=timezone.utc),
        )

    async def fee_basis_points(self) -> int:
        async with self._rpc("feePercent"):
            return int(await self.escrow.functions.feePercent().call())

    async def fee_recipient(self) -> str:
        async with self._rpc("feeRecipient"):
            return (await self.escrow.functions.feeRecipient().call()).lower()

    async def owner_of(self, token_id: int) -> Optional[str]:
        if self.nft is None:
            raise LedgerUnavailable("Property NFT contract not configured")
        try:
            async with self._rpc("ownerOf", token_id=token_id):
                owner = await self.nft.functions.ownerOf(token_id).call()
        except GuardViolation:
            # ownerOf reverts for tokens that were never minted
            return None
        return owner.lower()

    async def is_kyc_verified(self, address: str) -> bool:
        if self.kyc is None:
            raise LedgerUnavailable("KYC registry not configured")
        async with self._rpc("isVerified", address=mask_address(address)):
            return bool(await self.kyc.functions.isVerified(Web3.to_checksum_address(address)).call())

    async def latest_block(self) -> int:
        async with self._rpc("blockNumber"):
            return int(await self.w3.eth.block_number)

    async def get_events(self, from_block: int, to_block: Optional[int] = None) -> list[LedgerEvent]:
        async with self._rpc("getLogs", from_block=from_block, to_block=to_block):
            raw_logs = await self.w3.eth.get_logs({
                "address": self.contract_address,
                "fromBlock": from_block,
                "toBlock": to_block if to_block is not None else "latest",
            })

        events = []
        for raw in raw_logs:
            topics = raw.get("topics") or []
            name = self._topics.get(bytes(topics[0])) if topics else None
            if name is None:
                continue
            try:
                decoded = getattr(self.escrow.events, name)().process_log(raw)
            except Exception as e:
                logger.warning("Failed to decode escrow log", event_name=name, error=str(e))
                continue
            args = decoded["args"]
            events.append(LedgerEvent(
                name=name,
                token_id=args["tokenId"],
                transaction_hash=Web3.to_hex(raw["transactionHash"]),
                block_number=raw["blockNumber"],
                log_index=raw.get("logIndex", 0),
                seller=args.get("seller"),
                buyer=args.get("buyer"),
                price=args.get("price"),
                amount=args.get("amount"),
            ))
        return events

    # Submissions

    async def _send(self, caller: str, operation: str, token_id: int, function, value: int = 0) -> PendingTransaction:
        account = self._signers.get(caller.lower())
        if account is None:
            raise AuthorizationError(f"No ledger signer configured for {mask_address(caller)}")

        async with self._rpc(operation, token_id=token_id, caller=mask_address(caller)):
            nonce = await self.w3.eth.get_transaction_count(account.address, "pending")
            tx = await function.build_transaction({
                "from": account.address,
                "nonce": nonce,
                "value": value,
            })
            signed = account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        return PendingTransaction(
            transaction_hash=Web3.to_hex(tx_hash),
            operation=operation,
            token_id=token_id,
            submitted_at=datetime.now(timezone.utc),
        )

    async def submit_create_escrow(self, caller: str, token_id: int, buyer: str, price: int) -> PendingTransaction:
        function = self.escrow.functions.createEscrow(token_id, Web3.to_checksum_address(buyer), price)
        return await self._send(caller, "createEscrow", token_id, function)

    async def submit_deposit_funds(self, caller: str, token_id: int, value: int) -> PendingTransaction:
        function = self.escrow.functions.depositFunds(token_id)
        return await self._send(caller, "depositFunds", token_id, function, value=value)

    async def submit_complete_deal(self, caller: str, token_id: int) -> PendingTransaction:
        return await self._send(caller, "completeDeal", token_id, self.escrow.functions.completeDeal(token_id))

    async def submit_cancel_escrow(self, caller: str, token_id: int) -> PendingTransaction:
        return await self._send(caller, "cancelEscrow", token_id, self.escrow.functions.cancelEscrow(token_id))

    async def submit_refund_buyer(self, caller: str, token_id: int) -> PendingTransaction:
        return await self._send(caller, "refundBuyer", token_id, self.escrow.functions.refundBuyer(token_id))

    async def wait_for_receipt(self, pending: PendingTransaction, timeout: float) -> Optional[TransactionReceipt]:
        async with self._rpc("waitForReceipt", transaction_hash=pending.transaction_hash):
            try:
                receipt = await self.w3.eth.wait_for_transaction_receipt(pending.transaction_hash, timeout=timeout)
            except TimeExhausted:
                logger.warning(
                    "Ledger confirmation timed out",
                    transaction_hash=pending.transaction_hash,
                    timeout_seconds=timeout,
                )
                return None
        succeeded = receipt["status"] == 1
        return TransactionReceipt(
            transaction_hash=pending.transaction_hash,
            succeeded=succeeded,
            block_number=receipt["blockNumber"],
            revert_reason=None if succeeded else "Transaction reverted",
        )
