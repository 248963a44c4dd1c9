"""Escrow fee configuration."""

from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/escrow/stats"""

    async def get(self):
        return await get_escrow_engine().get_stats()
