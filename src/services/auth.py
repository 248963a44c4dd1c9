"""Bearer-token authentication: admin credentials and wallet signatures."""

import hmac
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import jwt
from eth_account import Account
from eth_account.messages import encode_defunct

from src.models.common import is_address
from src.utils.config import Settings, get_settings
from src.utils.errors import AuthenticationError, AuthorizationError, EscrowBackendError
from src.utils.logging import get_structured_logger, mask_address

logger = get_structured_logger(__name__)

JWT_ALGORITHM = "HS256"
WALLET_LOGIN_TITLE = "Sign in to Estate Escrow"
ROLE_ADMIN = "admin"
ROLE_USER = "user"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""
    subject: str
    role: str
    wallet_address: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def wallet_login_message(address: str, timestamp: int) -> str:
    """Text a wallet signs (personal_sign) to log in."""
    return f"{WALLET_LOGIN_TITLE}\nAddress: {address}\nTimestamp: {timestamp}"


def _secret(settings: Settings) -> str:
    if not settings.jwt_secret:
        raise EscrowBackendError("JWT_SECRET is not configured")
    return settings.jwt_secret


def issue_token(subject: str, role: str, wallet_address: Optional[str] = None, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=settings.jwt_expiry_hours),
    }
    if wallet_address:
        claims["wallet_address"] = wallet_address.lower()
    return jwt.encode(claims, _secret(settings), algorithm=JWT_ALGORITHM)


def decode_token(token: str, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    try:
        return jwt.decode(token, _secret(settings), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def _token_response(token: str, principal: Principal, settings: Settings) -> dict:
    return {
        "token": token,
        "token_type": "Bearer",
        "expires_in": settings.jwt_expiry_hours * 3600,
        "role": principal.role,
        "wallet_address": principal.wallet_address,
    }


def admin_login(username: str, password: str, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    if not settings.admin_password:
        logger.warning("Admin login attempted but ADMIN_PASSWORD is not set")
        raise AuthenticationError("Invalid credentials")

    username_ok = hmac.compare_digest(username.encode("utf-8"), settings.admin_username.encode("utf-8"))
    password_ok = hmac.compare_digest(password.encode("utf-8"), settings.admin_password.encode("utf-8"))
    if not (username_ok and password_ok):
        logger.warning("Admin login failed", username=username)
        raise AuthenticationError("Invalid credentials")

    principal = Principal(subject=f"admin:{username}", role=ROLE_ADMIN)
    logger.info("Admin logged in", username=username)
    return _token_response(issue_token(principal.subject, principal.role, settings=settings), principal, settings)


def _parse_login_message(message: str) -> tuple[str, int]:
    lines = message.strip().splitlines()
    if len(lines) != 3 or lines[0] != WALLET_LOGIN_TITLE:
        raise AuthenticationError("Malformed login message")
    address_label, _, address = lines[1].partition(": ")
    timestamp_label, _, timestamp = lines[2].partition(": ")
    if address_label != "Address" or timestamp_label != "Timestamp" or not timestamp.isdigit():
        raise AuthenticationError("Malformed login message")
    return address, int(timestamp)


def wallet_login(address: str, message: str, signature: str, settings: Optional[Settings] = None) -> dict:
    """Verify a signed login message and issue a user token for the wallet."""
    settings = settings or get_settings()
    address = address.lower()
    signed_address, timestamp = _parse_login_message(message)
    if not is_address(signed_address) or signed_address.lower() != address:
        raise AuthenticationError("Login message is for a different address")
    if abs(time.time() - timestamp) > settings.wallet_login_window_seconds:
        raise AuthenticationError("Login message expired")

    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        logger.warning("Wallet signature could not be recovered", address=mask_address(address), error=str(e))
        raise AuthenticationError("Invalid signature")
    if recovered.lower() != address:
        raise AuthenticationError("Signature does not match address")

    principal = Principal(subject=address, role=ROLE_USER, wallet_address=address)
    logger.info("Wallet logged in", address=mask_address(address))
    token = issue_token(principal.subject, principal.role, wallet_address=address, settings=settings)
    return _token_response(token, principal, settings)


def authenticate(headers: Mapping[str, str], role: Optional[str] = None) -> Principal:
    """Resolve the bearer token in ``headers``; ``role="admin"`` requires an admin token."""
    header = headers.get("Authorization") or headers.get("authorization")
    if not header or not header.startswith("Bearer "):
        raise AuthenticationError("Missing bearer token")

    claims = decode_token(header[len("Bearer "):].strip())
    principal = Principal(
        subject=str(claims.get("sub", "")),
        role=str(claims.get("role", "")),
        wallet_address=claims.get("wallet_address"),
    )
    if role == ROLE_ADMIN and not principal.is_admin:
        raise AuthorizationError("Admin access required")
    if role == ROLE_USER and not (principal.is_admin or principal.wallet_address):
        raise AuthorizationError("Wallet login required")
    return principal
