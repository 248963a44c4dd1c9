"""Admin KYC review endpoint."""

from src.models.requests import UserReviewRequest, parse_request
from src.services.auth import ROLE_ADMIN, authenticate
from src.services.escrow_engine import get_user_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/users/review with ``{"walletAddress", "action": "verify"|"reject"}``."""

    async def post(self):
        principal = authenticate(self.headers, role=ROLE_ADMIN)
        request = parse_request(UserReviewRequest, self.read_json())
        return await get_user_registry().review(request, reviewed_by=principal.subject)
