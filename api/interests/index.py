"""Buyer interest in a property: list per token, register as a buyer."""

from src.models.requests import PropertyInterestRequest, parse_request
from src.services.auth import ROLE_USER, authenticate
from src.services.escrow_engine import get_interest_registry
from src.utils.errors import AuthorizationError
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/interests/{tokenId} lists interests oldest first.

    POST /api/interests with ``{"tokenId", "message"?, "offeredPrice"?}``
    registers the logged-in wallet as an interested buyer (201).
    """

    async def get(self):
        return await get_interest_registry().for_property(self.int_param("tokenId"))

    async def post(self):
        principal = authenticate(self.headers, role=ROLE_USER)
        if not principal.wallet_address:
            raise AuthorizationError("Wallet login required to express interest")
        request = parse_request(PropertyInterestRequest, self.read_json())
        return await get_interest_registry().express(request, buyer=principal.wallet_address), 201
