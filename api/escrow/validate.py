"""Escrow pre-flight validation endpoint."""

from src.models.requests import EscrowValidateRequest, parse_request
from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/escrow/validate: check a prospective deal without touching the ledger."""

    async def post(self):
        request = parse_request(EscrowValidateRequest, self.read_json())
        return await get_escrow_engine().validate_escrow(request)
