"""
Error taxonomy for the wallet attestation lifecycle.

Every exception carries the ``ErrorKind`` the engine reports for it and
whether a caller-driven retry can be expected to help.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure categories surfaced by the engine"""
    UNAUTHORIZED = "UNAUTHORIZED"
    TRANSPORT = "TRANSPORT"
    MALFORMED_SIGNATURE = "MALFORMED_SIGNATURE"
    MALFORMED_RECORD = "MALFORMED_RECORD"
    SIGNING_DECLINED = "SIGNING_DECLINED"


class WalletLinkError(Exception):
    """Base exception for wallet link errors"""
    kind: Optional[ErrorKind] = None
    retryable: bool = False


class InvalidAddressError(WalletLinkError, ValueError):
    """Raised when a value is not a 20-byte hex wallet address"""
    pass


class MalformedSignatureError(WalletLinkError):
    """Raised when a signature cannot be decoded or no signer can be recovered"""
    kind = ErrorKind.MALFORMED_SIGNATURE


class RecordNotFoundError(WalletLinkError):
    """Raised when the identity has no attestation record yet.

    This is an expected outcome for new identities, not a failure.
    """
    pass


class UnauthorizedError(WalletLinkError):
    """Raised when the session is missing, invalid or expired"""
    kind = ErrorKind.UNAUTHORIZED


class TransportError(WalletLinkError):
    """Raised for network or backend failures"""
    kind = ErrorKind.TRANSPORT
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class MalformedRecordError(WalletLinkError):
    """Raised when a stored record fails schema validation on read"""
    kind = ErrorKind.MALFORMED_RECORD

    def __init__(self, message: str, locator: Optional[str] = None):
        self.locator = locator
        super().__init__(message)


class SigningDeclinedError(WalletLinkError):
    """Raised when the external wallet refuses or cancels a signing request"""
    kind = ErrorKind.SIGNING_DECLINED
