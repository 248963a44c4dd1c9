"""Interest counts for the admin dashboard."""

from src.services.auth import ROLE_ADMIN, authenticate
from src.services.escrow_engine import get_interest_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/interests/stats (admin)"""

    async def get(self):
        authenticate(self.headers, role=ROLE_ADMIN)
        return await get_interest_registry().stats()
