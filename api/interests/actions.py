"""Owner approval and buyer withdrawal of an interest."""

from src.services.auth import ROLE_USER, authenticate
from src.services.escrow_engine import get_interest_registry
from src.utils.errors import NotFoundError
from src.utils.http import JSONHandler

ACTIONS = ("approve", "withdraw")


class handler(JSONHandler):
    """POST /api/interests/{interestId}/{approve,withdraw}"""

    async def post(self):
        action = self.query.get("action")
        if action not in ACTIONS:
            raise NotFoundError(f"Unknown interest action: {action}")
        principal = authenticate(self.headers, role=ROLE_USER)
        interest_id = self.path_param("interestId")
        registry = get_interest_registry()
        if action == "approve":
            return await registry.approve(interest_id, caller=principal.wallet_address)
        return await registry.withdraw(interest_id, caller=principal.wallet_address)
