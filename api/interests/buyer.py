"""Interests registered by a buyer."""

from src.services.escrow_engine import get_interest_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/interests/buyer/{buyerAddress}"""

    async def get(self):
        return await get_interest_registry().by_buyer(self.path_param("buyerAddress"))
