"""
Data models for DID to wallet attestations
Record shape follows the AT Protocol repository records written by the web app
"""

from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .address import canonical_address
from .exceptions import InvalidAddressError

DEFAULT_RECORD_KEY = "self"


def _require_subject(value: str) -> str:
    if not value.strip():
        raise ValueError("Subject must not be blank")
    return value


class Identity(BaseModel):
    """Stable subject of an authenticated session (a DID)"""
    model_config = ConfigDict(frozen=True)

    sub: str = Field(..., min_length=1, description="Subject DID, e.g. did:plc:abc")

    @field_validator("sub")
    @classmethod
    def _non_blank_sub(cls, value: str) -> str:
        return _require_subject(value)


class Session(BaseModel):
    """Externally established OAuth session; the core only reads ``sub``"""
    sub: str = Field(..., min_length=1, description="Subject DID")
    service_url: str = Field("https://bsky.social", description="Repository host (PDS) URL")
    access_token: Optional[str] = Field(None, description="Bearer token for repository writes")

    @field_validator("sub")
    @classmethod
    def _non_blank_sub(cls, value: str) -> str:
        return _require_subject(value)

    @property
    def identity(self) -> Identity:
        return Identity(sub=self.sub)


class AttestationRecord(BaseModel):
    """Signed claim binding an identity to a wallet address"""
    address: str = Field(..., description="Checksummed wallet address")
    signature: str = Field(..., alias="attestation", min_length=1, description="Hex signature over the binding message")
    locator: Optional[str] = Field(None, alias="uri", description="Record URI assigned by the store")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("address")
    @classmethod
    def _canonical_address(cls, value: str) -> str:
        try:
            return canonical_address(value)
        except InvalidAddressError as exc:
            raise ValueError(str(exc)) from exc

    def to_record_value(self, collection: str) -> Dict[str, Any]:
        """Repository value as written by ``putRecord``"""
        return {
            "$type": collection,
            "address": self.address,
            "attestation": self.signature,
        }


class PasskeyWallet(BaseModel):
    """Passkey-derived wallet address stored alongside the attestation"""
    address: str
    locator: Optional[str] = Field(None, alias="uri")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("address")
    @classmethod
    def _canonical_address(cls, value: str) -> str:
        try:
            return canonical_address(value)
        except InvalidAddressError as exc:
            raise ValueError(str(exc)) from exc


class VerificationResult(BaseModel):
    """Derived verification of a record; recomputed on demand, never persisted"""
    model_config = ConfigDict(frozen=True)

    signer_recovered: Optional[str] = Field(None, description="Address recovered from the signature")
    is_authentic: bool = False
    matches_active_wallet: bool = False
    active_wallets: FrozenSet[str] = Field(default_factory=frozenset)
