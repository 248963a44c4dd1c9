"""KYC user registry: registration, admin review and status lookups."""

from datetime import datetime, timezone
from typing import Optional

from src.models.user import REQUIRED_KYC_DOCUMENTS, KYCStatus, UserRecord, VerificationDetails
from src.models.requests import UserRegistrationRequest, UserReviewRequest
from src.services.kyc_gate import KYCGate
from src.services.mirror_store import MirrorStore
from src.utils.errors import ConflictError, NotFoundError, ValidationError
from src.utils.logging import get_structured_logger, mask_address

logger = get_structured_logger(__name__)


class UserRegistry:
    """Users start pending; only an admin verifies or rejects. Rejected users may re-register."""

    def __init__(self, store: MirrorStore, kyc: Optional[KYCGate] = None):
        self.store = store
        self.kyc = kyc

    async def get(self, wallet_address: str) -> UserRecord:
        user = await self.store.get_user(wallet_address)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def register(self, request: UserRegistrationRequest) -> UserRecord:
        provided = {document.type for document in request.documents}
        missing = [doc for doc in REQUIRED_KYC_DOCUMENTS if doc not in provided]
        if missing:
            raise ValidationError(
                "Missing required documents",
                errors=[f"documents: {doc} is required" for doc in missing],
            )

        now = datetime.now(timezone.utc)
        documents = [
            document.model_copy(update={"uploaded_at": document.uploaded_at or now, "verified": False})
            for document in request.documents
        ]

        existing = await self.store.get_user(request.wallet_address)
        if existing is not None:
            if existing.status != KYCStatus.REJECTED:
                raise ConflictError("User already registered with this wallet address")
            resubmitted = existing.model_copy(update={
                "full_name": request.full_name,
                "email": request.email,
                "status": KYCStatus.PENDING,
                "documents": documents,
                "verification": VerificationDetails(),
                "registered_at": now,
                "updated_at": now,
            })
            saved = await self.store.save_user(resubmitted)
            logger.info("User re-registered after rejection", wallet_address=mask_address(saved.wallet_address))
            return saved

        user = UserRecord(
            wallet_address=request.wallet_address,
            full_name=request.full_name,
            email=request.email,
            status=KYCStatus.PENDING,
            documents=documents,
            registered_at=now,
            updated_at=now,
        )
        created = await self.store.create_user(user)
        logger.info("User registered", wallet_address=mask_address(created.wallet_address))
        return created

    async def get_status(self, wallet_address: str) -> dict:
        """Stored KYC status plus the live registry answer when a gate is configured."""
        user = await self.get(wallet_address)
        ledger_verified = None
        if self.kyc is not None:
            ledger_verified = await self.kyc.is_verified(user.wallet_address)
        return {
            "wallet_address": user.wallet_address,
            "status": user.status,
            "full_name": user.full_name,
            "registered_at": user.registered_at,
            "verification": user.verification,
            "blockchain_verified": user.blockchain_verified,
            "ledger_verified": ledger_verified,
        }

    async def review(self, request: UserReviewRequest, reviewed_by: str) -> UserRecord:
        user = await self.get(request.wallet_address)
        now = datetime.now(timezone.utc)

        if request.action == "verify":
            if user.status == KYCStatus.VERIFIED:
                raise ConflictError("User already verified")
            updates = {
                "status": KYCStatus.VERIFIED,
                "documents": [d.model_copy(update={"verified": True}) for d in user.documents],
                "verification": VerificationDetails(
                    verified_by=reviewed_by,
                    verified_at=now,
                    notes=request.notes,
                ),
            }
            if request.blockchain_transaction_hash:
                updates["blockchain_verified"] = True
                updates["blockchain_transaction_hash"] = request.blockchain_transaction_hash
        else:
            if user.status == KYCStatus.REJECTED:
                raise ConflictError("User already rejected")
            if not request.reason:
                raise ValidationError(errors=["reason: Rejection reason is required"])
            updates = {
                "status": KYCStatus.REJECTED,
                "blockchain_verified": False,
                "verification": VerificationDetails(
                    notes=request.notes,
                    rejection_reason=request.reason,
                    rejected_at=now,
                ),
            }
        updates["updated_at"] = now

        saved = await self.store.save_user(user.model_copy(update=updates))
        logger.info(
            "User reviewed",
            wallet_address=mask_address(saved.wallet_address),
            status=saved.status.value,
            reviewed_by=reviewed_by,
        )
        return saved

    async def list_users(self, status: Optional[KYCStatus] = None) -> dict:
        users = await self.store.list_users()
        counts = {s.value: 0 for s in KYCStatus}
        for user in users:
            counts[user.status.value] += 1
        counts["total"] = len(users)
        if status is not None:
            users = [user for user in users if user.status == status]
        return {"users": users, "counts": counts}
