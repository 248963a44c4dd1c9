"""Single property lookup."""

from src.services.escrow_engine import get_property_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/properties/{propertyId}"""

    async def get(self):
        return await get_property_registry().get(self.path_param("propertyId"))
