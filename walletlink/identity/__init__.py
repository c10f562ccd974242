"""
Wallet attestation module
Links a DID session to an EVM wallet through a self-signed, stored attestation
"""

from .models import (
    Identity,
    Session,
    AttestationRecord,
    PasskeyWallet,
    VerificationResult,
)
from .address import addresses_equal, canonical_address
from .codec import build_message, recover_signer, sign_message, verify
from .exceptions import (
    ErrorKind,
    WalletLinkError,
    InvalidAddressError,
    MalformedSignatureError,
    MalformedRecordError,
    RecordNotFoundError,
    SigningDeclinedError,
    TransportError,
    UnauthorizedError,
)
from .storage_client import (
    AttestationStore,
    InMemoryAttestationStore,
    PasskeyWalletStore,
    XrpcAttestationStore,
)
from .view import ReconciliationFlags, project
from .engine import AttestationEngine, EngineSnapshot, EngineState, LinkOutcome

__all__ = [
    "Identity",
    "Session",
    "AttestationRecord",
    "PasskeyWallet",
    "VerificationResult",
    "addresses_equal",
    "canonical_address",
    "build_message",
    "recover_signer",
    "sign_message",
    "verify",
    "ErrorKind",
    "WalletLinkError",
    "InvalidAddressError",
    "MalformedSignatureError",
    "MalformedRecordError",
    "RecordNotFoundError",
    "SigningDeclinedError",
    "TransportError",
    "UnauthorizedError",
    "AttestationStore",
    "InMemoryAttestationStore",
    "PasskeyWalletStore",
    "XrpcAttestationStore",
    "ReconciliationFlags",
    "project",
    "AttestationEngine",
    "EngineSnapshot",
    "EngineState",
    "LinkOutcome",
]
