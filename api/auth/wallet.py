"""Wallet signature login.

The client asks for the message with GET, signs it with ``personal_sign``
and posts ``{"address", "message", "signature"}`` back.
"""

import time

from src.models.common import normalize_address
from src.models.requests import WalletLoginRequest, parse_request
from src.services.auth import wallet_login, wallet_login_message
from src.utils.errors import ValidationError
from src.utils.http import JSONHandler


class handler(JSONHandler):

    async def get(self):
        try:
            address = normalize_address(self.query.get("address"))
        except ValueError as e:
            raise ValidationError(errors=[f"address: {e}"])
        return {"address": address, "message": wallet_login_message(address, int(time.time()))}

    async def post(self):
        request = parse_request(WalletLoginRequest, self.read_json())
        return wallet_login(request.address, request.message, request.signature)
