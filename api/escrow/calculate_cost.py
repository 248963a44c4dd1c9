"""Price, fee and total for a prospective deal."""

from src.models.requests import CalculateCostRequest, parse_request
from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/escrow/calculate-cost with ``{"price": "<wei>"}``."""

    async def post(self):
        request = parse_request(CalculateCostRequest, self.read_json())
        return await get_escrow_engine().calculate_cost(request.price)
