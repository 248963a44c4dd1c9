"""Owner identity: either a wallet address or an internal user ID."""

from typing import Annotated, Any, Literal, Union
from pydantic import BaseModel, Field, TypeAdapter

from src.models.common import WalletAddress, is_address


class WalletOwner(BaseModel):
    kind: Literal["wallet"] = "wallet"
    address: WalletAddress


class InternalUserOwner(BaseModel):
    kind: Literal["user"] = "user"
    user_id: str = Field(..., min_length=1)


OwnerIdentity = Annotated[Union[WalletOwner, InternalUserOwner], Field(discriminator="kind")]

_owner_adapter = TypeAdapter(OwnerIdentity)


def resolve_owner(value: Any) -> Union[WalletOwner, InternalUserOwner]:
    """Resolve a raw owner value into a canonical identity.

    Strings that look like wallet addresses become WalletOwner, any other
    non-empty string is treated as an internal user ID. Dicts must already be
    tagged with ``kind``.
    """
    if isinstance(value, (WalletOwner, InternalUserOwner)):
        return value
    if isinstance(value, dict):
        return _owner_adapter.validate_python(value)
    if isinstance(value, str) and value:
        if is_address(value):
            return WalletOwner(address=value)
        return InternalUserOwner(user_id=value)
    raise ValueError("Owner must be a wallet address or a user ID")


def owner_address(owner: Union[WalletOwner, InternalUserOwner]) -> str | None:
    return owner.address if isinstance(owner, WalletOwner) else None
