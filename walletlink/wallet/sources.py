"""
Active wallet sources.

Each source reports the wallet addresses the caller controls through one
channel (a connected browser wallet, a custodial embedded wallet, a
passkey-derived wallet). The engine only sees the merged set and never
asks which channel produced an address.
"""

import logging
from abc import ABC, abstractmethod
from typing import FrozenSet, Iterable, Optional, Sequence

from ..identity.address import canonical_address
from ..identity.exceptions import (
    InvalidAddressError,
    MalformedRecordError,
    RecordNotFoundError,
)
from ..identity.models import Identity
from ..identity.storage_client import PasskeyWalletStore
from .signer import WalletSigner

logger = logging.getLogger(__name__)


class ActiveWalletSource(ABC):
    """One channel through which the caller currently controls wallets"""

    name: str = "source"

    @abstractmethod
    async def addresses(self, identity: Optional[Identity] = None) -> Iterable[str]:
        ...


class ConnectedWalletSource(ActiveWalletSource):
    """A directly connected wallet, updated by the wallet-connect layer"""

    name = "connected"

    def __init__(self, address: Optional[str] = None):
        self.address: Optional[str] = None
        if address:
            self.connect(address)

    def connect(self, address: str) -> None:
        self.address = canonical_address(address)

    def disconnect(self) -> None:
        self.address = None

    @property
    def is_connected(self) -> bool:
        return self.address is not None

    async def addresses(self, identity: Optional[Identity] = None) -> Iterable[str]:
        return [self.address] if self.address else []


class EmbeddedWalletSource(ActiveWalletSource):
    """A custodial embedded wallet exposed as a signer"""

    name = "embedded"

    def __init__(self, signer: Optional[WalletSigner] = None):
        self.signer = signer

    async def addresses(self, identity: Optional[Identity] = None) -> Iterable[str]:
        return [self.signer.address] if self.signer else []


class PasskeyWalletSource(ActiveWalletSource):
    """The passkey-derived wallet recorded in the identity's repository"""

    name = "passkey"

    def __init__(self, store: PasskeyWalletStore):
        self.store = store

    async def addresses(self, identity: Optional[Identity] = None) -> Iterable[str]:
        if identity is None:
            return []
        try:
            return [await self.store.get_address(identity)]
        except RecordNotFoundError:
            return []
        except MalformedRecordError as exc:
            logger.warning(f"Ignoring malformed passkey wallet record: {exc}")
            return []


async def _collect(source: ActiveWalletSource, identity: Optional[Identity]) -> Iterable[str]:
    try:
        return list(await source.addresses(identity))
    except Exception as exc:
        logger.warning(f"Active wallet source '{source.name}' failed; treating it as empty: {exc!r}")
        return []


async def merge_active_wallets(
    sources: Sequence[ActiveWalletSource],
    identity: Optional[Identity] = None,
) -> FrozenSet[str]:
    """
    Query every source and merge the results into one canonical set.

    A failing source contributes nothing; invalid addresses are dropped.
    """
    merged = set()
    for source in sources:
        for address in await _collect(source, identity):
            try:
                merged.add(canonical_address(address))
            except InvalidAddressError:
                logger.warning(f"Source '{source.name}' reported an invalid address: {address!r}")
    return frozenset(merged)
