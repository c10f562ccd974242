from __future__ import annotations

import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from walletlink.identity.models import DEFAULT_RECORD_KEY
from walletlink.identity.storage_client import ATTESTATION_COLLECTION, PASSKEY_COLLECTION
from walletlink.utils.config_manager import ConfigManager


class WalletLinkConfigurationError(Exception):
    """Raised when wallet link configuration is missing or invalid."""


class WalletLinkSettings(BaseModel):
    """Resolved configuration for the attestation store and engine."""

    service_url: str = Field(default="https://bsky.social", description="Repository host (PDS)")
    attestation_collection: str = Field(default=ATTESTATION_COLLECTION)
    passkey_collection: str = Field(default=PASSKEY_COLLECTION)
    record_key: str = Field(default=DEFAULT_RECORD_KEY)
    http_timeout: float = Field(default=30.0, gt=0)
    operation_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("service_url")
    @classmethod
    def _ensure_http_scheme(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("Service URL must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("attestation_collection", "passkey_collection")
    @classmethod
    def _ensure_nsid(cls, value: str) -> str:
        if value.count(".") < 2:
            raise ValueError(f"Collection must be an NSID like com.example.record, got {value!r}")
        return value

    @classmethod
    def load(cls, config_manager: Optional[ConfigManager] = None) -> "WalletLinkSettings":
        """Load settings from config.json with .env / environment overrides."""
        load_dotenv()
        manager = config_manager or ConfigManager()
        raw_config: Dict[str, Any] = manager.get("walletlink", {}) or {}

        def pick(env: Optional[str], key: str) -> Any:
            if env and os.getenv(env):
                return os.getenv(env)
            return raw_config.get(key, cls.model_fields[key].default)

        values = {
            "service_url": pick("WALLETLINK_SERVICE_URL", "service_url"),
            "attestation_collection": pick("WALLETLINK_COLLECTION", "attestation_collection"),
            "passkey_collection": pick("WALLETLINK_PASSKEY_COLLECTION", "passkey_collection"),
            "record_key": pick(None, "record_key"),
            "http_timeout": pick("WALLETLINK_HTTP_TIMEOUT", "http_timeout"),
            "operation_timeout": pick("WALLETLINK_OPERATION_TIMEOUT", "operation_timeout"),
        }
        try:
            return cls(**values)
        except ValidationError as exc:
            raise WalletLinkConfigurationError(f"Invalid wallet link configuration: {exc}") from exc
