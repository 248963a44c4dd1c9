"""Admin login endpoint."""

from src.models.requests import AdminLoginRequest, parse_request
from src.services.auth import admin_login
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """POST /api/auth/login with ``{"username", "password"}``."""

    async def post(self):
        request = parse_request(AdminLoginRequest, self.read_json())
        return admin_login(request.username, request.password)
