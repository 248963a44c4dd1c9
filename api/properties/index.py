"""Property listing with filters."""

from src.services.escrow_engine import get_property_registry
from src.utils.errors import ValidationError
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/properties?status=&owner=&propertyType=&listed=&page=&limit="""

    async def get(self):
        query = self.query
        listed = query.get("listed")
        if listed not in (None, "true", "false"):
            raise ValidationError(errors=["listed: must be true or false"])
        return await get_property_registry().list_properties(
            status=query.get("status"),
            owner=query.get("owner"),
            property_type=query.get("propertyType"),
            is_listed=None if listed is None else listed == "true",
            page=self.int_param("page", query.get("page", "1")),
            limit=self.int_param("limit", query.get("limit", "20")),
        )
