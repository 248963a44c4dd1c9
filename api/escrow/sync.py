"""Escrow event subscription poll (Vercel cron)."""

import hmac

from src.services.auth import ROLE_ADMIN, authenticate
from src.services.escrow_engine import get_escrow_engine
from src.services.escrow_listener import poll_escrow_events_once
from src.utils.config import get_settings
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET or POST /api/escrow/sync: apply one batch of ledger events to the mirror.

    Accepts the cron secret Vercel sends, or an admin token.
    """

    def _authorize(self) -> None:
        secret = get_settings().cron_secret
        header = self.headers.get("Authorization") or ""
        if secret and hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8")):
            return
        authenticate(self.headers, role=ROLE_ADMIN)

    async def get(self):
        self._authorize()
        return await poll_escrow_events_once(
            get_escrow_engine(),
            batch_blocks=get_settings().event_poll_batch_blocks,
        )

    async def post(self):
        return await self.get()
