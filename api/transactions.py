"""Transaction ledger: filtered listing and client-reported entries."""

from src.models.requests import TransactionRecordRequest, parse_request
from src.services.auth import ROLE_USER, authenticate
from src.services.escrow_engine import get_escrow_engine
from src.utils.http import JSONHandler


class handler(JSONHandler):
    """GET /api/transactions?type=&status=&propertyId=&tokenId=&address=&page=&limit=

    POST records an entry once per transaction hash: 201 when new, 200 with
    the stored entry when the hash was already recorded.
    """

    async def get(self):
        query = self.query
        token_id = query.get("tokenId")
        address = query.get("address")
        return await get_escrow_engine().transactions.list_entries(
            type=query.get("type"),
            status=query.get("status"),
            property_id=query.get("propertyId"),
            token_id=self.int_param("tokenId", token_id) if token_id else None,
            address=address.lower() if address else None,
            page=self.int_param("page", query.get("page", "1")),
            limit=self.int_param("limit", query.get("limit", "20")),
        )

    async def post(self):
        principal = authenticate(self.headers, role=ROLE_USER)
        request = parse_request(TransactionRecordRequest, self.read_json())
        entry, created = await get_escrow_engine().transactions.record_request(
            request,
            recorded_by=principal.wallet_address or principal.subject,
        )
        return {"entry": entry, "duplicate": not created}, 201 if created else 200
