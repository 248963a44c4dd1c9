"""Property submission endpoint."""

from src.models.requests import PropertySubmitRequest, parse_request
from src.services.auth import ROLE_USER, authenticate
from src.services.escrow_engine import get_property_registry
from src.utils.errors import AuthorizationError
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/properties/submit: the logged-in wallet becomes the owner."""

    async def post(self):
        principal = authenticate(self.headers, role=ROLE_USER)
        if not principal.wallet_address:
            raise AuthorizationError("Wallet login required to submit a property")
        request = parse_request(PropertySubmitRequest, self.read_json())
        record = await get_property_registry().submit(request, owner=principal.wallet_address)
        return record, 201
