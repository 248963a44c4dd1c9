"""Transaction ledger entries for one token."""

from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/escrow/transactions/{tokenId}, newest first."""

    async def get(self):
        return await get_escrow_engine().get_token_history(self.int_param("tokenId"))
