"""
Wallet signers: the external capability that signs binding messages.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from ..identity.address import canonical_address
from ..identity.exceptions import SigningDeclinedError

logger = logging.getLogger(__name__)

SignCallback = Callable[[str], Union[Optional[str], Awaitable[Optional[str]]]]


class WalletSigner(ABC):
    """A wallet able to sign a text message for one address"""

    @property
    @abstractmethod
    def address(self) -> str:
        ...

    @abstractmethod
    async def sign_message(self, message: str) -> str:
        """
        Return a 0x-prefixed EIP-191 signature over ``message``.

        Raises:
            SigningDeclinedError: if the wallet refuses or the user cancels
        """


class LocalAccountSigner(WalletSigner):
    """Signs with a locally held ``eth_account`` key"""

    def __init__(self, account: LocalAccount):
        self.account = account

    @property
    def address(self) -> str:
        return canonical_address(self.account.address)

    async def sign_message(self, message: str) -> str:
        signed = self.account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"LocalAccountSigner({self.address})"


class PromptSigner(WalletSigner):
    """
    Delegates to a callback that asks a human (or a remote wallet) to sign.

    The callback returns the signature, or ``None`` when the request was
    declined. Exceptions raised by the callback also count as a refusal.
    """

    def __init__(self, address: str, callback: SignCallback, timeout: Optional[float] = None):
        self._address = canonical_address(address)
        self.callback = callback
        self.timeout = timeout

    @property
    def address(self) -> str:
        return self._address

    async def _invoke(self, message: str) -> Optional[str]:
        result = self.callback(message)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def sign_message(self, message: str) -> str:
        try:
            if self.timeout is None:
                signature = await self._invoke(message)
            else:
                signature = await asyncio.wait_for(self._invoke(message), timeout=self.timeout)
        except SigningDeclinedError:
            raise
        except asyncio.TimeoutError as exc:
            raise SigningDeclinedError(f"Signing request for {self._address} timed out") from exc
        except Exception as exc:
            raise SigningDeclinedError(f"Wallet rejected signing request: {exc}") from exc

        if not signature:
            raise SigningDeclinedError(f"Signing request for {self._address} was declined")
        return signature
