"""Escrow deal view endpoint."""

from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/escrow/deal/{tokenId}: ledger deal with the property mirror reconciled to it."""

    async def get(self):
        token_id = self.int_param("tokenId")
        return await get_escrow_engine().get_deal_view(token_id)
