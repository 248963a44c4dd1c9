"""Environment-driven settings."""

import os
from typing import Literal, Optional
from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime settings read from environment variables."""
    environment: str = Field(default="production", description="production, development, test")
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    ledger_backend: Literal["web3", "local"] = Field(default="web3", description="Ledger implementation")
    ethereum_rpc_url: Optional[str] = None
    escrow_contract_address: str = "0x32f99155646d147b8A4846470b64a96dD9cBa414"
    kyc_contract_address: Optional[str] = None
    property_nft_contract_address: Optional[str] = None
    ledger_signer_keys: list[str] = Field(default_factory=list, description="Hex private keys used to sign ledger calls")
    ledger_confirmation_timeout_seconds: float = Field(default=120.0, gt=0)
    event_poll_batch_blocks: int = Field(default=2000, gt=0)

    # Local ledger only
    local_fee_basis_points: int = Field(default=250, ge=0, le=10000)
    local_fee_recipient: str = "0x000000000000000000000000000000000000fee5"

    jwt_secret: Optional[str] = None
    jwt_expiry_hours: int = Field(default=24, gt=0)
    admin_username: str = "admin"
    admin_password: Optional[str] = None
    wallet_login_window_seconds: int = Field(default=300, gt=0)
    cron_secret: Optional[str] = Field(default=None, description="Bearer secret Vercel cron sends to /api/escrow/sync")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "local")


def _split_keys(raw: str) -> list[str]:
    return [key.strip() for key in raw.split(",") if key.strip()]


def load_settings() -> Settings:
    """Build settings from the current environment."""
    env = os.environ
    values = {
        "environment": env.get("ENVIRONMENT", "production"),
        "supabase_url": env.get("SUPABASE_URL"),
        "supabase_service_role_key": env.get("SUPABASE_SERVICE_ROLE_KEY"),
        "ledger_backend": env.get("LEDGER_BACKEND", "web3").lower(),
        "ethereum_rpc_url": env.get("ETHEREUM_RPC_URL"),
        "kyc_contract_address": env.get("KYC_CONTRACT_ADDRESS"),
        "property_nft_contract_address": env.get("PROPERTY_NFT_CONTRACT_ADDRESS"),
        "ledger_signer_keys": _split_keys(env.get("LEDGER_SIGNER_KEYS", "")),
        "jwt_secret": env.get("JWT_SECRET"),
        "admin_password": env.get("ADMIN_PASSWORD"),
        "cron_secret": env.get("CRON_SECRET"),
    }
    optional = {
        "escrow_contract_address": "ESCROW_CONTRACT_ADDRESS",
        "ledger_confirmation_timeout_seconds": "LEDGER_CONFIRMATION_TIMEOUT_SECONDS",
        "event_poll_batch_blocks": "EVENT_POLL_BATCH_BLOCKS",
        "local_fee_basis_points": "LOCAL_FEE_BASIS_POINTS",
        "local_fee_recipient": "LOCAL_FEE_RECIPIENT",
        "jwt_expiry_hours": "JWT_EXPIRY_HOURS",
        "admin_username": "ADMIN_USERNAME",
        "wallet_login_window_seconds": "WALLET_LOGIN_WINDOW_SECONDS",
    }
    for field_name, env_name in optional.items():
        if env.get(env_name):
            values[field_name] = env[env_name]
    return Settings(**values)


# Global settings instance (singleton pattern)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the settings singleton."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
