"""Interests in properties held by an owner."""

from src.services.escrow_engine import get_interest_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/interests/owner/{ownerAddress}"""

    async def get(self):
        return await get_interest_registry().by_owner(self.path_param("ownerAddress"))
