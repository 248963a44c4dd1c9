"""Escrow transitions invoked as the authenticated wallet."""

from src.models.requests import EscrowActionRequest, parse_request
from src.services.auth import ROLE_USER, authenticate
from src.services.escrow_engine import get_escrow_engine
from src.utils.errors import AuthorizationError, NotFoundError, ValidationError
from src.utils.http import JSONHandler

ACTIONS = ("create", "deposit", "complete", "cancel", "refund")


class handler(JSONHandler):
    """POST /api/escrow/actions/{create,deposit,complete,cancel,refund}

    Responds 200 once the ledger confirms, or 202 with the transaction hash
    while confirmation is still outstanding.
    """

    async def post(self):
        action = self.path_param("action")
        if action not in ACTIONS:
            raise NotFoundError(f"Unknown escrow action: {action}")

        principal = authenticate(self.headers, role=ROLE_USER)
        if not principal.wallet_address:
            raise AuthorizationError("Wallet login required to act on escrows")
        caller = principal.wallet_address

        request = parse_request(EscrowActionRequest, self.read_json())
        engine = get_escrow_engine()

        if action == "create":
            missing = [name for name in ("buyer", "price") if getattr(request, name) is None]
            if missing:
                raise ValidationError(errors=[f"{name}: Field required" for name in missing])
            result = await engine.create_escrow(caller, request.token_id, request.buyer, request.price)
        elif action == "deposit":
            if request.amount is None:
                raise ValidationError(errors=["amount: Field required"])
            result = await engine.deposit_funds(caller, request.token_id, request.amount)
        elif action == "complete":
            result = await engine.complete_deal(caller, request.token_id)
        elif action == "cancel":
            result = await engine.cancel_escrow(caller, request.token_id)
        else:
            result = await engine.refund_buyer(caller, request.token_id)

        return result, 202 if result.state == "pending" else 200
