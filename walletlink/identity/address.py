"""
Canonical wallet address handling.

Addresses compare case-insensitively; the canonical form is the EIP-55
checksum encoding.
"""

from typing import Any, Iterable, FrozenSet

from eth_utils import is_hex_address, to_checksum_address

from .exceptions import InvalidAddressError


def canonical_address(address: Any) -> str:
    """Return the EIP-55 checksummed form of ``address``.

    Raises:
        InvalidAddressError: if ``address`` is not a 0x-prefixed 20-byte hex string
    """
    if not isinstance(address, str):
        raise InvalidAddressError(f"Wallet address must be a string, got {type(address).__name__}")
    candidate = address.strip()
    if not candidate.startswith(("0x", "0X")):
        raise InvalidAddressError(f"Not a valid wallet address: {address!r}")
    candidate = "0x" + candidate[2:]
    if not is_hex_address(candidate):
        raise InvalidAddressError(f"Not a valid wallet address: {address!r}")
    return to_checksum_address(candidate)


def is_valid_address(address: Any) -> bool:
    try:
        canonical_address(address)
    except InvalidAddressError:
        return False
    return True


def addresses_equal(left: Any, right: Any) -> bool:
    """Canonical equality; anything that is not an address is unequal to everything."""
    try:
        return canonical_address(left) == canonical_address(right)
    except InvalidAddressError:
        return False


def canonical_set(addresses: Iterable[str]) -> FrozenSet[str]:
    """Canonicalize a collection of addresses, rejecting invalid entries."""
    return frozenset(canonical_address(a) for a in addresses)
