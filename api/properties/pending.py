"""Admin review queue."""

from src.services.auth import ROLE_ADMIN, authenticate
from src.services.escrow_engine import get_property_registry
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/properties/pending (admin), oldest submission first."""

    async def get(self):
        authenticate(self.headers, role=ROLE_ADMIN)
        return await get_property_registry().pending_properties()
