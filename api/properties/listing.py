"""List a minted property for sale, or take it off the market."""

from src.models.requests import PropertyListingRequest, parse_request
from src.services.auth import authenticate
from src.services.escrow_engine import get_property_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/properties/{propertyId}/listing with ``{"isListed", "listingPrice"}`` (owner wallet or admin)."""

    async def post(self):
        principal = authenticate(self.headers)
        body = self.read_json()
        property_id = self.query.get("propertyId")
        if property_id and isinstance(body, dict):
            body = {**body, "propertyId": property_id}
        request = parse_request(PropertyListingRequest, body)
        return await get_property_registry().update_listing(
            request,
            caller=principal.wallet_address,
            is_admin=principal.is_admin,
        )
