"""Record a property's mint on the ledger."""

from src.models.requests import PropertyMintRequest, parse_request
from src.services.auth import authenticate
from src.services.escrow_engine import get_property_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/properties/mint (owner wallet or admin)."""

    async def post(self):
        principal = authenticate(self.headers)
        request = parse_request(PropertyMintRequest, self.read_json())
        return await get_property_registry().record_mint(
            request,
            caller=principal.wallet_address,
            is_admin=principal.is_admin,
        )
