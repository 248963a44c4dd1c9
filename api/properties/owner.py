"""Properties owned by a wallet."""

from src.services.escrow_engine import get_property_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/properties/owner/{ownerAddress}"""

    async def get(self):
        return await get_property_registry().properties_by_owner(self.path_param("ownerAddress"))
