"""Admin user listing."""

from src.models.user import KYCStatus
from src.services.auth import ROLE_ADMIN, authenticate
from src.services.escrow_engine import get_user_registry
from src.utils.errors import ValidationError
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/users?status=pending|verified|rejected"""

    async def get(self):
        authenticate(self.headers, role=ROLE_ADMIN)
        status = None
        raw = self.query.get("status")
        if raw:
            try:
                status = KYCStatus(raw.lower())
            except ValueError:
                raise ValidationError(errors=[f"status: must be one of {', '.join(s.value for s in KYCStatus)}"])
        return await get_user_registry().list_users(status)
