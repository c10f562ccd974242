"""
Storage clients for wallet attestation records
AT Protocol repository (XRPC) as the backend, with an in-memory twin for tests
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .exceptions import (
    MalformedRecordError,
    RecordNotFoundError,
    TransportError,
    UnauthorizedError,
)
from .models import DEFAULT_RECORD_KEY, AttestationRecord, Identity, PasskeyWallet

logger = logging.getLogger(__name__)

ATTESTATION_COLLECTION = "com.hypercert.walletAttestationTest"
PASSKEY_COLLECTION = "com.hypercert.walletPasskeyTest"

_NOT_FOUND_ERRORS = {"RecordNotFound", "NotFound"}
_AUTH_ERRORS = {"AuthRequired", "ExpiredToken", "InvalidToken", "AuthMissing"}


def record_uri(identity: Identity, collection: str, rkey: str = DEFAULT_RECORD_KEY) -> str:
    return f"at://{identity.sub}/{collection}/{rkey}"


def format_get_record_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a getRecord response into ``{...value, "uri": uri}``"""
    value = data.get("value")
    if not isinstance(value, dict):
        value = {}
    return {**value, "uri": data.get("uri")}


def format_list_records_response(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten a listRecords response into one dict per record"""
    records = data.get("records")
    if not isinstance(records, list):
        return []
    return [
        {**(record.get("value") if isinstance(record.get("value"), dict) else {}), "uri": record.get("uri")}
        for record in records
        if isinstance(record, dict)
    ]


def parse_attestation(raw: Dict[str, Any]) -> AttestationRecord:
    """Validate a flattened record value.

    Raises:
        MalformedRecordError: if the value does not match the attestation schema
    """
    try:
        return AttestationRecord.model_validate(raw)
    except ValidationError as exc:
        raise MalformedRecordError(
            f"Stored attestation failed validation: {exc.error_count()} error(s)",
            locator=raw.get("uri"),
        ) from exc


class AttestationStore(ABC):
    """Single-slot attestation storage, keyed by identity"""

    @abstractmethod
    async def get(self, identity: Identity) -> AttestationRecord:
        """
        Fetch the identity's current attestation.

        Raises:
            RecordNotFoundError: no record yet
            UnauthorizedError: session invalid or expired
            TransportError: network or backend failure
            MalformedRecordError: stored value fails schema validation
        """

    @abstractmethod
    async def put(self, identity: Identity, address: str, signature: str) -> str:
        """Create or replace the identity's attestation; returns the record locator."""

    async def close(self) -> None:
        return None


class XrpcAttestationStore(AttestationStore):
    """
    Attestation store backed by an AT Protocol repository.

    Reads and writes use ``com.atproto.repo.getRecord`` / ``putRecord`` on a
    fixed record key. Record validation on the server is disabled; the
    core never relies on it.
    """

    def __init__(
        self,
        service_url: str,
        access_token: Optional[str] = None,
        collection: str = ATTESTATION_COLLECTION,
        record_key: str = DEFAULT_RECORD_KEY,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.service_url = service_url.rstrip("/")
        self.collection = collection
        self.record_key = record_key
        self._access_token = access_token
        self._owns_client = client is None
        self.http_client = client or httpx.AsyncClient(
            base_url=self.service_url,
            timeout=httpx.Timeout(timeout),
        )

    def set_access_token(self, token: Optional[str]) -> None:
        """Stores the bearer token of the current session."""
        self._access_token = token

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def _request(self, method: str, nsid: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.http_client.request(
                method, f"/xrpc/{nsid}", headers=self._headers(), **kwargs
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._map_status_error(nsid, e.response) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"{nsid} timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"{nsid} request error: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"{nsid} returned an undecodable body", response.status_code) from e
        if not isinstance(data, dict):
            raise TransportError(f"{nsid} returned a non-object body", response.status_code)
        return data

    def _map_status_error(self, nsid: str, response: httpx.Response) -> Exception:
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        message = (body.get("message") if isinstance(body, dict) else None) or response.text

        if error in _NOT_FOUND_ERRORS or status == 404:
            return RecordNotFoundError(f"{nsid}: {message}")
        if error in _AUTH_ERRORS or status in (401, 403):
            return UnauthorizedError(f"{nsid} rejected credentials ({status}): {message}")
        return TransportError(f"{nsid} failed with HTTP {status}: {error or message}", status)

    async def get_raw(self, identity: Identity, collection: str) -> Dict[str, Any]:
        data = await self._request(
            "GET",
            "com.atproto.repo.getRecord",
            params={"repo": identity.sub, "collection": collection, "rkey": self.record_key},
        )
        return format_get_record_response(data)

    async def put_raw(self, identity: Identity, collection: str, value: Dict[str, Any]) -> str:
        if not self._access_token:
            raise UnauthorizedError("putRecord requires an access token")
        data = await self._request(
            "POST",
            "com.atproto.repo.putRecord",
            json={
                "repo": identity.sub,
                "collection": collection,
                "rkey": self.record_key,
                "record": value,
                "validate": False,
            },
        )
        locator = data.get("uri")
        if not isinstance(locator, str) or not locator:
            raise TransportError("putRecord response missing record uri")
        return locator

    async def get(self, identity: Identity) -> AttestationRecord:
        raw = await self.get_raw(identity, self.collection)
        return parse_attestation(raw)

    async def put(self, identity: Identity, address: str, signature: str) -> str:
        record = AttestationRecord(address=address, signature=signature)
        locator = await self.put_raw(identity, self.collection, record.to_record_value(self.collection))
        logger.info(f"Stored wallet attestation for {identity.sub} at {locator}")
        return locator

    async def list_records(self, identity: Identity, collection: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """List records of a collection in the identity's repository"""
        data = await self._request(
            "GET",
            "com.atproto.repo.listRecords",
            params={"repo": identity.sub, "collection": collection or self.collection, "limit": limit},
        )
        return format_list_records_response(data)

    async def close(self) -> None:
        """Close the HTTP client if this store created it"""
        if self._owns_client:
            await self.http_client.aclose()


class InMemoryAttestationStore(AttestationStore):
    """Dict-backed store with the same locators and error semantics as the XRPC store"""

    def __init__(self, collection: str = ATTESTATION_COLLECTION, record_key: str = DEFAULT_RECORD_KEY):
        self.collection = collection
        self.record_key = record_key
        self.records: Dict[str, Dict[str, Any]] = {}
        self.unauthorized: set = set()
        self.writes = 0
        self.reads = 0

    def _check_auth(self, identity: Identity) -> None:
        if identity.sub in self.unauthorized:
            raise UnauthorizedError(f"Session for {identity.sub} is not authorized")

    def seed(self, identity: Identity, value: Dict[str, Any]) -> str:
        """Write a raw value without any shape checks"""
        locator = record_uri(identity, self.collection, self.record_key)
        self.records[identity.sub] = {**value, "uri": locator}
        return locator

    async def get(self, identity: Identity) -> AttestationRecord:
        self.reads += 1
        self._check_auth(identity)
        raw = self.records.get(identity.sub)
        if raw is None:
            raise RecordNotFoundError(f"No attestation for {identity.sub}")
        return parse_attestation(dict(raw))

    async def put(self, identity: Identity, address: str, signature: str) -> str:
        self._check_auth(identity)
        record = AttestationRecord(address=address, signature=signature)
        self.writes += 1
        return self.seed(identity, record.to_record_value(self.collection))


class PasskeyWalletStore:
    """Single-slot record holding the address of a passkey-derived wallet"""

    def __init__(self, store: XrpcAttestationStore, collection: str = PASSKEY_COLLECTION):
        self.store = store
        self.collection = collection

    async def get_wallet(self, identity: Identity) -> PasskeyWallet:
        raw = await self.store.get_raw(identity, self.collection)
        try:
            return PasskeyWallet.model_validate(raw)
        except ValidationError as exc:
            raise MalformedRecordError(
                f"Stored passkey wallet failed validation: {exc.error_count()} error(s)",
                locator=raw.get("uri"),
            ) from exc

    async def get_address(self, identity: Identity) -> str:
        return (await self.get_wallet(identity)).address

    async def put_address(self, identity: Identity, address: str) -> str:
        wallet = PasskeyWallet(address=address)
        locator = await self.store.put_raw(
            identity,
            self.collection,
            {"$type": self.collection, "address": wallet.address},
        )
        logger.info(f"Stored passkey wallet for {identity.sub} at {locator}")
        return locator
