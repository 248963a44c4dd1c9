"""KYC status lookup."""

from src.models.common import normalize_address
from src.services.escrow_engine import get_user_registry
from src.utils.errors import ValidationError
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/users/status/{address}"""

    async def get(self):
        try:
            address = normalize_address(self.path_param("address"))
        except ValueError as e:
            raise ValidationError(errors=[f"address: {e}"])
        return await get_user_registry().get_status(address)
