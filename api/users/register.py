"""KYC registration endpoint."""

from src.models.requests import UserRegistrationRequest, parse_request
from src.services.escrow_engine import get_user_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/users/register: creates a pending KYC record."""

    async def post(self):
        request = parse_request(UserRegistrationRequest, self.read_json())
        user = await get_user_registry().register(request)
        return user, 201
