"""Deals involving a wallet address."""

from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/escrow/user/{address}"""

    async def get(self):
        return await get_escrow_engine().get_user_deals(self.path_param("address"))
