"""Active escrow existence check."""

from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/escrow/exists/{tokenId}"""

    async def get(self):
        token_id = self.int_param("tokenId")
        return {"token_id": token_id, "exists": await get_escrow_engine().escrow_exists(token_id)}
