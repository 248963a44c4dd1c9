"""Historical escrow contract events."""

from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/escrow/events?fromBlock=&toBlock= (toBlock defaults to latest)."""

    async def get(self):
        query = self.query
        from_block = self.int_param("fromBlock", query.get("fromBlock", "0"))
        to_block = None
        if query.get("toBlock") not in (None, "", "latest"):
            to_block = self.int_param("toBlock", query["toBlock"])
        return await get_escrow_engine().get_events(from_block, to_block)
