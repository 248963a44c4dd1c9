"""Record a confirmed escrow ledger event reported by a client."""

from src.models.requests import EscrowTransactionRequest, parse_request
from src.services.auth import authenticate
from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/escrow/transaction (authenticated)."""

    async def post(self):
        principal = authenticate(self.headers)
        request = parse_request(EscrowTransactionRequest, self.read_json())
        result = await get_escrow_engine().record_escrow_event(
            request,
            recorded_by=principal.wallet_address or principal.subject,
        )
        status = 200 if result["duplicate"] else 201
        return result, status
