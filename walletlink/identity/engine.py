"""
Attestation engine: the live view model of one session's wallet attestation.

Drives fetch, link and re-verification against an ``AttestationStore`` and
keeps an explicit state machine instead of loose loading/verified flags.
``RECORD_VERIFIED`` is only ever entered after a signer has actually been
recovered and matched against the stored address.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, Field

from . import codec
from .address import canonical_address
from .exceptions import (
    ErrorKind,
    InvalidAddressError,
    MalformedRecordError,
    MalformedSignatureError,
    RecordNotFoundError,
    SigningDeclinedError,
    TransportError,
    WalletLinkError,
)
from .models import AttestationRecord, Identity, Session, VerificationResult
from .storage_client import AttestationStore
from .view import ReconciliationFlags, project
from ..wallet.signer import WalletSigner
from ..wallet.sources import ActiveWalletSource, merge_active_wallets

logger = logging.getLogger(__name__)

T = TypeVar("T")

LINK_SUCCESS_MESSAGE = "Wallet linked to DID successfully."


class EngineState(str, Enum):
    """
    The state of the attestation engine.
    """
    NO_SESSION = "NO_SESSION"
    LOADING = "LOADING"
    NO_RECORD = "NO_RECORD"
    RECORD_UNVERIFIED = "RECORD_UNVERIFIED"
    RECORD_VERIFIED = "RECORD_VERIFIED"
    LINK_IN_PROGRESS = "LINK_IN_PROGRESS"
    ERROR = "ERROR"


class EngineSnapshot(BaseModel):
    """Point-in-time copy of the engine, safe to hand to a UI"""
    state: EngineState
    error_kind: Optional[ErrorKind] = None
    last_issue: Optional[ErrorKind] = None
    subject: Optional[str] = None
    record: Optional[AttestationRecord] = None
    result: Optional[VerificationResult] = None

    @property
    def flags(self) -> ReconciliationFlags:
        return project(self.state, self.result)


class LinkOutcome(BaseModel):
    """Caller-visible result of a link request"""
    success: bool
    message: str
    error_kind: Optional[ErrorKind] = None
    locator: Optional[str] = Field(None, description="Record URI when the write went through")


StateListener = Callable[[EngineSnapshot], None]


class AttestationEngine:
    """
    Re-entrant attestation view model for a single session.

    All operations are serialized by one lock; a trigger arriving while a
    fetch or link is in flight waits for it instead of racing it. Each
    session start/end bumps an epoch so that results from a previous
    session are dropped on delivery.
    """

    def __init__(
        self,
        store: AttestationStore,
        wallet_sources: Sequence[ActiveWalletSource] = (),
        operation_timeout: Optional[float] = None,
    ):
        self.store = store
        self.wallet_sources: List[ActiveWalletSource] = list(wallet_sources)
        self.operation_timeout = operation_timeout

        self.identity: Optional[Identity] = None
        self.state = EngineState.NO_SESSION
        self.error_kind: Optional[ErrorKind] = None
        self.last_issue: Optional[ErrorKind] = None
        self.record: Optional[AttestationRecord] = None
        self.result: Optional[VerificationResult] = None

        self._lock = asyncio.Lock()
        self._epoch = 0
        self._listeners: List[StateListener] = []

    # ------------------------------------------------------------------ #
    # Observation
    # ------------------------------------------------------------------ #
    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback invoked on every state change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            state=self.state,
            error_kind=self.error_kind,
            last_issue=self.last_issue,
            subject=self.identity.sub if self.identity else None,
            record=self.record,
            result=self.result,
        )

    @property
    def flags(self) -> ReconciliationFlags:
        return project(self.state, self.result)

    def _transition(self, state: EngineState, error_kind: Optional[ErrorKind] = None) -> None:
        previous = self.state
        self.state = state
        self.error_kind = error_kind if state == EngineState.ERROR else None
        logger.debug(f"Engine state {previous.value} -> {state.value}" + (f" ({error_kind.value})" if error_kind else ""))
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception(f"State listener {listener!r} failed on {state.value}")

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch and self.identity is not None

    # ------------------------------------------------------------------ #
    # Session lifecycle
    # ------------------------------------------------------------------ #
    async def start_session(self, session: Union[Session, Identity]) -> EngineSnapshot:
        """Bind the engine to a new session and fetch its attestation."""
        identity = session.identity if isinstance(session, Session) else session
        self._epoch += 1
        self.identity = identity
        self._clear()
        logger.info(f"Session started for {identity.sub}")
        self._transition(EngineState.LOADING)
        return await self.refresh()

    def end_session(self) -> None:
        """Drop the session; any in-flight result is discarded when it arrives."""
        if self.identity is not None:
            logger.info(f"Session ended for {self.identity.sub}")
        self._epoch += 1
        self.identity = None
        self._clear()
        self._transition(EngineState.NO_SESSION)

    def _clear(self) -> None:
        self.record = None
        self.result = None
        self.last_issue = None

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #
    async def refresh(self) -> EngineSnapshot:
        """Fetch the stored record and reconcile it against the active wallets."""
        if self.identity is None:
            return self.snapshot()
        async with self._lock:
            if self.identity is not None:
                await self._fetch_and_verify(self._epoch)
        return self.snapshot()

    async def retry(self) -> EngineSnapshot:
        """Explicit retry after an error: ``ERROR -> LOADING``."""
        return await self.refresh()

    async def re_verify(self) -> EngineSnapshot:
        """Recover the signer of the current record again, without refetching."""
        if self.identity is None:
            return self.snapshot()
        async with self._lock:
            epoch = self._epoch
            if self._is_current(epoch) and self.record is not None:
                self._transition(EngineState.RECORD_UNVERIFIED)
                await self._verify(epoch)
        return self.snapshot()

    async def reconcile(self) -> EngineSnapshot:
        """Re-evaluate the active wallet set against the current record."""
        if self.identity is None:
            return self.snapshot()
        async with self._lock:
            epoch = self._epoch
            if self.record is not None:
                await self._verify(epoch)
            elif self.state == EngineState.NO_RECORD:
                wallets = await merge_active_wallets(self.wallet_sources, self.identity)
                if self._is_current(epoch):
                    self.result = codec.verify(self.identity, None, wallets)
        return self.snapshot()

    async def link(self, candidate_address: str, signature: str) -> LinkOutcome:
        """
        Store an attestation for ``candidate_address`` and re-read it.

        ``signature`` must be a fresh signature over
        ``build_message(identity, candidate_address)`` by the candidate
        wallet. The stored value is not trusted until it has been fetched
        back and verified.
        """
        if self.identity is None:
            return LinkOutcome(success=False, message="Sign in before linking a wallet.", error_kind=ErrorKind.UNAUTHORIZED)
        try:
            candidate = canonical_address(candidate_address)
        except InvalidAddressError as exc:
            return LinkOutcome(success=False, message=str(exc))

        async with self._lock:
            epoch = self._epoch
            if not self._is_current(epoch):
                return LinkOutcome(success=False, message="Session ended before the link started.")
            identity = self.identity
            prior = self.state
            prior_error = self.error_kind
            self._transition(EngineState.LINK_IN_PROGRESS)

            rejection = self._check_candidate_signature(identity, candidate, signature)
            if rejection is not None:
                self._transition(prior, prior_error)
                return rejection

            try:
                locator = await self._call(self.store.put(identity, candidate, signature))
            except WalletLinkError as exc:
                if not self._is_current(epoch):
                    return LinkOutcome(success=False, message="Session ended before the link completed.")
                logger.error(f"Storing attestation for {identity.sub} failed: {exc}")
                self._fail(exc)
                return LinkOutcome(success=False, message=f"Failed to link wallet: {exc}", error_kind=exc.kind)

            if not self._is_current(epoch):
                logger.info("Discarding link result for an ended session")
                return LinkOutcome(success=False, message="Session ended before the link completed.", locator=locator)

            await self._fetch_and_verify(epoch)

            if self.state == EngineState.RECORD_VERIFIED and self.record is not None and self.record.address == candidate:
                logger.info(f"Linked {candidate} to {identity.sub}")
                return LinkOutcome(success=True, message=LINK_SUCCESS_MESSAGE, locator=locator)

            kind = self.error_kind or self.last_issue
            logger.warning(f"Attestation for {identity.sub} was stored but did not verify on re-read (state={self.state.value})")
            return LinkOutcome(
                success=False,
                message="Wallet attestation was stored but could not be verified.",
                error_kind=kind,
                locator=locator,
            )

    async def link_with_signer(self, signer: WalletSigner, candidate_address: Optional[str] = None) -> LinkOutcome:
        """
        Ask ``signer`` to sign the binding message, then link.

        A declined request is reported on the outcome; the engine state is
        left untouched and no retry is started.
        """
        if self.identity is None:
            return LinkOutcome(success=False, message="Sign in before linking a wallet.", error_kind=ErrorKind.UNAUTHORIZED)
        epoch = self._epoch
        try:
            candidate = canonical_address(candidate_address or signer.address)
        except InvalidAddressError as exc:
            return LinkOutcome(success=False, message=str(exc))

        message = codec.build_message(self.identity, candidate)
        try:
            signature = await signer.sign_message(message)
        except SigningDeclinedError as exc:
            logger.info(f"Signing declined for {candidate}: {exc}")
            return LinkOutcome(success=False, message=str(exc), error_kind=ErrorKind.SIGNING_DECLINED)

        if not self._is_current(epoch):
            return LinkOutcome(success=False, message="Session changed while waiting for the wallet signature.")
        return await self.link(candidate, signature)

    # ------------------------------------------------------------------ #
    # Internals (lock held)
    # ------------------------------------------------------------------ #
    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self.operation_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Store operation timed out after {self.operation_timeout}s") from exc

    def _check_candidate_signature(self, identity: Identity, candidate: str, signature: str) -> Optional[LinkOutcome]:
        message = codec.build_message(identity, candidate)
        try:
            signer = codec.recover_signer(message, signature)
        except MalformedSignatureError as exc:
            logger.warning(f"Rejected link for {candidate}: {exc}")
            return LinkOutcome(success=False, message=f"Invalid signature: {exc}", error_kind=ErrorKind.MALFORMED_SIGNATURE)
        if signer != candidate:
            logger.warning(f"Rejected link for {candidate}: signature recovers to {signer}")
            return LinkOutcome(
                success=False,
                message=f"Signature was not produced by {candidate}.",
                error_kind=ErrorKind.MALFORMED_SIGNATURE,
            )
        return None

    def _fail(self, exc: WalletLinkError) -> None:
        self._clear()
        self._transition(EngineState.ERROR, exc.kind or ErrorKind.TRANSPORT)

    async def _fetch_and_verify(self, epoch: int) -> None:
        identity = self.identity
        if self.state != EngineState.LOADING:
            self._transition(EngineState.LOADING)
        try:
            record = await self._call(self.store.get(identity))
        except RecordNotFoundError:
            if not self._is_current(epoch):
                return
            self._clear()
            self.result = VerificationResult()
            self._transition(EngineState.NO_RECORD)
            return
        except MalformedRecordError as exc:
            if not self._is_current(epoch):
                return
            logger.warning(f"Malformed attestation record for {identity.sub} ({exc.locator}): {exc}")
            self._clear()
            self.result = VerificationResult()
            self.last_issue = ErrorKind.MALFORMED_RECORD
            self._transition(EngineState.NO_RECORD)
            return
        except WalletLinkError as exc:
            if not self._is_current(epoch):
                return
            logger.error(f"Fetching attestation for {identity.sub} failed: {exc}")
            self._fail(exc)
            return

        if not self._is_current(epoch):
            logger.debug("Discarding fetch result for an ended session")
            return
        self.record = record
        self.result = None
        self.last_issue = None
        self._transition(EngineState.RECORD_UNVERIFIED)
        await self._verify(epoch)

    async def _verify(self, epoch: int) -> None:
        wallets = await merge_active_wallets(self.wallet_sources, self.identity)
        if not self._is_current(epoch) or self.record is None:
            return
        result = codec.verify(self.identity, self.record, wallets)
        self.result = result
        if result.is_authentic:
            self.last_issue = None
            self._transition(EngineState.RECORD_VERIFIED)
            return
        self.last_issue = ErrorKind.MALFORMED_SIGNATURE if result.signer_recovered is None else None
        if result.signer_recovered is not None:
            logger.warning(
                f"Attestation for {self.identity.sub} claims {self.record.address} "
                f"but was signed by {result.signer_recovered}"
            )
        self._transition(EngineState.RECORD_UNVERIFIED)
