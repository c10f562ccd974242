"""
Pure projections of engine state into user-facing status flags and labels.
"""

from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from .address import addresses_equal
from .models import VerificationResult

_RECORD_STATES = {"RECORD_UNVERIFIED", "RECORD_VERIFIED"}

LINK_CTA_NEW = "Link wallet to DID"
LINK_CTA_UPDATE = "Update linked wallet"
NONE_LINKED = "None linked yet."
CHECKING = "Checking…"


class ReconciliationFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_present: bool = False
    record_verified: bool = False
    active_wallet_matches: bool = False


def _state_name(state) -> str:
    return getattr(state, "value", state)


def project(state, result: Optional[VerificationResult]) -> ReconciliationFlags:
    """
    Reduce an engine state and its last verification to three flags.

    Only record-bearing states can report a record; ``record_verified``
    additionally requires the engine to be in ``RECORD_VERIFIED``.
    """
    name = _state_name(state)
    present = name in _RECORD_STATES
    verified = present and name == "RECORD_VERIFIED" and result is not None and result.is_authentic
    matches = verified and result.matches_active_wallet
    return ReconciliationFlags(
        record_present=present,
        record_verified=verified,
        active_wallet_matches=matches,
    )


def status_badges(flags: ReconciliationFlags) -> List[str]:
    if not flags.record_present:
        return []
    return [
        "wallet ownership verified" if flags.record_verified else "Record unverified",
        "Current wallet = attested wallet" if flags.active_wallet_matches else "Current wallet != attested wallet",
    ]


def record_summary(state, record_address: Optional[str]) -> str:
    name = _state_name(state)
    if name in ("LOADING", "LINK_IN_PROGRESS"):
        return CHECKING
    if name in _RECORD_STATES and record_address:
        return record_address
    return NONE_LINKED


def link_cta(flags: ReconciliationFlags) -> str:
    return LINK_CTA_UPDATE if flags.record_present else LINK_CTA_NEW


def active_wallet_note(record_address: Optional[str], active_wallets: Iterable[str]) -> Optional[str]:
    """Compare the record against the active wallets, ignoring authenticity"""
    wallets = list(active_wallets)
    if not record_address or not wallets:
        return None
    if any(addresses_equal(record_address, w) for w in wallets):
        return "Connected wallet matches record."
    return "Connected wallet differs from record."
