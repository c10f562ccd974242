"""
Binding message construction and signer recovery
Signatures are EIP-191 personal_sign over the UTF-8 binding message
"""

import logging
from typing import Iterable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_utils.exceptions import ValidationError as EthValidationError
from hexbytes import HexBytes

from .address import addresses_equal, canonical_address, canonical_set
from .exceptions import MalformedSignatureError
from .models import AttestationRecord, Identity, VerificationResult

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65
_VALID_RECOVERY_IDS = {0, 1, 27, 28}


def build_message(identity: Identity, candidate_address: str) -> str:
    """
    Build the canonical message binding ``identity`` to ``candidate_address``.

    The format is ``"<sub>,<checksummed address>"``. The address is fixed-width
    and always last, so two distinct (sub, address) pairs never produce the
    same message.

    Raises:
        InvalidAddressError: if ``candidate_address`` is not a wallet address
        ValueError: if the identity has an empty subject
    """
    sub = identity.sub
    if not sub or not sub.strip():
        raise ValueError("Identity subject must not be empty")
    return f"{sub},{canonical_address(candidate_address)}"


def _decode_signature(signature: str) -> bytes:
    if not isinstance(signature, (str, bytes)):
        raise MalformedSignatureError("Signature must be a hex string")
    try:
        raw = bytes(HexBytes(signature))
    except (ValueError, TypeError) as exc:
        raise MalformedSignatureError(f"Signature is not valid hex: {exc}") from exc
    if len(raw) != SIGNATURE_LENGTH:
        raise MalformedSignatureError(
            f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}"
        )
    if raw[-1] not in _VALID_RECOVERY_IDS:
        raise MalformedSignatureError(f"Invalid recovery id: {raw[-1]}")
    return raw


def recover_signer(message: str, signature: str) -> str:
    """
    Recover the checksummed address that signed ``message``.

    A well-formed signature by some other key returns that other address;
    it is the caller's job to compare.

    Raises:
        MalformedSignatureError: for non-hex, short or unrecoverable signatures
    """
    raw = _decode_signature(signature)
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
    except (BadSignature, KeyValidationError, EthValidationError, ValueError, TypeError) as exc:
        raise MalformedSignatureError(f"Signer recovery failed: {exc}") from exc
    return canonical_address(recovered)


def sign_message(message: str, private_key: str) -> str:
    """Sign ``message`` with a local key; returns a 0x-prefixed 65-byte hex signature."""
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def verify(
    identity: Identity,
    record: Optional[AttestationRecord],
    active_wallets: Iterable[str] = (),
) -> VerificationResult:
    """
    Reconcile a stored record against the identity and the active wallet set.

    Never raises for bad signatures: a malformed signature is reported as
    not authentic.
    """
    wallets = canonical_set(active_wallets)
    if record is None:
        return VerificationResult(active_wallets=wallets)

    signer: Optional[str] = None
    try:
        signer = recover_signer(build_message(identity, record.address), record.signature)
    except MalformedSignatureError as exc:
        logger.warning(f"Malformed signature on record {record.locator or record.address}: {exc}")

    is_authentic = signer is not None and addresses_equal(signer, record.address)
    return VerificationResult(
        signer_recovered=signer,
        is_authentic=is_authentic,
        matches_active_wallet=is_authentic and record.address in wallets,
        active_wallets=wallets,
    )
