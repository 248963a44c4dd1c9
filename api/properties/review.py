"""Admin property review endpoint."""

from src.models.requests import PropertyReviewRequest, parse_request
from src.services.auth import ROLE_ADMIN, authenticate
from src.services.escrow_engine import get_property_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/properties/review with ``{"propertyId", "action": "approve"|"reject"}``."""

    async def post(self):
        principal = authenticate(self.headers, role=ROLE_ADMIN)
        request = parse_request(PropertyReviewRequest, self.read_json())
        return await get_property_registry().review(request, reviewed_by=principal.subject)
