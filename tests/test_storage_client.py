import json

import httpx
import pytest
from eth_account import Account

from walletlink.identity import (
    AttestationEngine,
    EngineState,
    ErrorKind,
    Identity,
    InMemoryAttestationStore,
    MalformedRecordError,
    PasskeyWalletStore,
    RecordNotFoundError,
    TransportError,
    UnauthorizedError,
    XrpcAttestationStore,
    build_message,
    sign_message,
)
from walletlink.identity.storage_client import (
    ATTESTATION_COLLECTION,
    PASSKEY_COLLECTION,
    format_get_record_response,
    format_list_records_response,
    record_uri,
)

SERVICE_URL = "https://pds.example.com"
IDENTITY = Identity(sub="did:plc:abc")


def _signed(account):
    key = account.key.hex()
    key = key if key.startswith("0x") else "0x" + key
    return sign_message(build_message(IDENTITY, account.address), key)


class FakeRepository:
    """Minimal com.atproto.repo.* backend for httpx.MockTransport"""

    def __init__(self, token="token-123"):
        self.token = token
        self.records = {}
        self.requests = []
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            status, body = self.fail_with
            return httpx.Response(status, json=body)

        nsid = request.url.path.rsplit("/", 1)[-1]
        if nsid == "com.atproto.repo.getRecord":
            params = request.url.params
            key = (params["repo"], params["collection"], params["rkey"])
            if key not in self.records:
                return httpx.Response(400, json={"error": "RecordNotFound", "message": "Could not locate record"})
            return httpx.Response(200, json={"uri": record_uri(Identity(sub=key[0]), key[1], key[2]), "cid": "bafy", "value": self.records[key]})

        if nsid == "com.atproto.repo.listRecords":
            params = request.url.params
            records = [
                {"uri": record_uri(Identity(sub=repo), collection, rkey), "value": value}
                for (repo, collection, rkey), value in self.records.items()
                if repo == params["repo"] and collection == params["collection"]
            ]
            return httpx.Response(200, json={"records": records})

        if nsid == "com.atproto.repo.putRecord":
            if request.headers.get("Authorization") != f"Bearer {self.token}":
                return httpx.Response(401, json={"error": "AuthRequired", "message": "Authentication Required"})
            body = json.loads(request.content)
            key = (body["repo"], body["collection"], body["rkey"])
            self.records[key] = body["record"]
            return httpx.Response(200, json={"uri": record_uri(Identity(sub=key[0]), key[1], key[2]), "cid": "bafy"})

        return httpx.Response(501, json={"error": "MethodNotImplemented"})


def _store(repo, token="token-123", **kwargs):
    client = httpx.AsyncClient(base_url=SERVICE_URL, transport=httpx.MockTransport(repo))
    return XrpcAttestationStore(SERVICE_URL, access_token=token, client=client, **kwargs)


@pytest.mark.asyncio
async def test_put_then_get_round_trip():
    repo = FakeRepository()
    store = _store(repo)
    account = Account.create()
    signature = _signed(account)

    locator = await store.put(IDENTITY, account.address.lower(), signature)
    record = await store.get(IDENTITY)

    assert locator == f"at://did:plc:abc/{ATTESTATION_COLLECTION}/self"
    assert record.address == account.address
    assert record.signature == signature
    assert record.locator == locator

    stored = repo.records[("did:plc:abc", ATTESTATION_COLLECTION, "self")]
    assert stored == {"$type": ATTESTATION_COLLECTION, "address": account.address, "attestation": signature}

    put_body = json.loads(repo.requests[0].content)
    assert put_body["validate"] is False
    await store.close()


@pytest.mark.asyncio
async def test_put_overwrites_single_slot():
    repo = FakeRepository()
    store = _store(repo)
    first, second = Account.create(), Account.create()

    await store.put(IDENTITY, first.address, _signed(first))
    await store.put(IDENTITY, second.address, _signed(second))

    assert len(repo.records) == 1
    assert (await store.get(IDENTITY)).address == second.address


@pytest.mark.asyncio
async def test_get_missing_record_raises_not_found():
    store = _store(FakeRepository())
    with pytest.raises(RecordNotFoundError):
        await store.get(IDENTITY)


@pytest.mark.asyncio
async def test_put_without_token_is_unauthorized():
    repo = FakeRepository()
    store = _store(repo, token=None)
    account = Account.create()

    with pytest.raises(UnauthorizedError):
        await store.put(IDENTITY, account.address, _signed(account))
    assert repo.requests == []


@pytest.mark.asyncio
async def test_put_with_rejected_token_is_unauthorized():
    store = _store(FakeRepository(), token="expired")
    account = Account.create()

    with pytest.raises(UnauthorizedError):
        await store.put(IDENTITY, account.address, _signed(account))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, expected",
    [
        (404, {}, RecordNotFoundError),
        (400, {"error": "ExpiredToken", "message": "Token has expired"}, UnauthorizedError),
        (403, {"error": "Forbidden"}, UnauthorizedError),
        (500, {"error": "InternalServerError"}, TransportError),
        (502, {}, TransportError),
    ],
)
async def test_status_errors_are_mapped(status, body, expected):
    repo = FakeRepository()
    repo.fail_with = (status, body)
    store = _store(repo)

    with pytest.raises(expected):
        await store.get(IDENTITY)


@pytest.mark.asyncio
async def test_transport_error_is_retryable():
    repo = FakeRepository()
    repo.fail_with = (503, {"error": "Unavailable"})
    store = _store(repo)

    with pytest.raises(TransportError) as exc_info:
        await store.get(IDENTITY)
    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(base_url=SERVICE_URL, transport=httpx.MockTransport(handler))
    store = XrpcAttestationStore(SERVICE_URL, client=client)

    with pytest.raises(TransportError):
        await store.get(IDENTITY)


@pytest.mark.asyncio
async def test_malformed_stored_value_raises_malformed_record():
    repo = FakeRepository()
    repo.records[("did:plc:abc", ATTESTATION_COLLECTION, "self")] = {"$type": ATTESTATION_COLLECTION, "address": "0x1234"}
    store = _store(repo)

    with pytest.raises(MalformedRecordError) as exc_info:
        await store.get(IDENTITY)
    assert exc_info.value.locator == f"at://did:plc:abc/{ATTESTATION_COLLECTION}/self"


@pytest.mark.asyncio
async def test_list_records():
    repo = FakeRepository()
    store = _store(repo)
    account = Account.create()
    await store.put(IDENTITY, account.address, _signed(account))

    records = await store.list_records(IDENTITY)

    assert len(records) == 1
    assert records[0]["address"] == account.address
    assert records[0]["uri"].endswith("/self")


@pytest.mark.asyncio
async def test_passkey_wallet_store():
    repo = FakeRepository()
    passkeys = PasskeyWalletStore(_store(repo))
    account = Account.create()

    with pytest.raises(RecordNotFoundError):
        await passkeys.get_address(IDENTITY)

    locator = await passkeys.put_address(IDENTITY, account.address.lower())

    assert locator == f"at://did:plc:abc/{PASSKEY_COLLECTION}/self"
    assert await passkeys.get_address(IDENTITY) == account.address


def test_format_get_record_response_tolerates_missing_value():
    assert format_get_record_response({"uri": "at://x"}) == {"uri": "at://x"}


@pytest.mark.asyncio
async def test_in_memory_store_matches_xrpc_semantics():
    store = InMemoryAttestationStore()
    account = Account.create()

    with pytest.raises(RecordNotFoundError):
        await store.get(IDENTITY)

    locator = await store.put(IDENTITY, account.address, _signed(account))
    assert locator == record_uri(IDENTITY, ATTESTATION_COLLECTION)
    assert (await store.get(IDENTITY)).locator == locator

    store.unauthorized.add(IDENTITY.sub)
    with pytest.raises(UnauthorizedError):
        await store.get(IDENTITY)

    store.unauthorized.clear()
    store.seed(IDENTITY, {"address": account.address})
    with pytest.raises(MalformedRecordError):
        await store.get(IDENTITY)


UNUSABLE_BODIES = [[], "just a string", b"\xff\xff\xff\xff"]


def _unusable_body_handler(body):
    def handler(request):
        if isinstance(body, bytes):
            return httpx.Response(200, content=body, headers={"content-type": "application/json"})
        return httpx.Response(200, json=body)

    return handler


@pytest.mark.asyncio
@pytest.mark.parametrize("body", UNUSABLE_BODIES)
async def test_unusable_response_body_is_transport_error(body):
    client = httpx.AsyncClient(base_url=SERVICE_URL, transport=httpx.MockTransport(_unusable_body_handler(body)))
    store = XrpcAttestationStore(SERVICE_URL, access_token="token-123", client=client)
    account = Account.create()

    with pytest.raises(TransportError):
        await store.get(IDENTITY)
    with pytest.raises(TransportError):
        await store.put(IDENTITY, account.address, _signed(account))
    with pytest.raises(TransportError):
        await store.list_records(IDENTITY)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", UNUSABLE_BODIES)
async def test_engine_enters_error_on_unusable_response_body(body):
    client = httpx.AsyncClient(base_url=SERVICE_URL, transport=httpx.MockTransport(_unusable_body_handler(body)))
    engine = AttestationEngine(XrpcAttestationStore(SERVICE_URL, client=client))

    snapshot = await engine.start_session(IDENTITY)

    assert snapshot.state == EngineState.ERROR
    assert snapshot.error_kind == ErrorKind.TRANSPORT


@pytest.mark.asyncio
async def test_undecodable_error_body_still_mapped():
    def handler(request):
        return httpx.Response(500, content=b"\xff\xff", headers={"content-type": "application/json"})

    client = httpx.AsyncClient(base_url=SERVICE_URL, transport=httpx.MockTransport(handler))
    store = XrpcAttestationStore(SERVICE_URL, client=client)

    with pytest.raises(TransportError) as exc_info:
        await store.get(IDENTITY)
    assert exc_info.value.status_code == 500


def test_format_list_records_response_skips_odd_entries():
    data = {"records": [{"uri": "at://a", "value": "oops"}, "junk", {"uri": "at://b", "value": {"address": "0x1"}}]}

    assert format_list_records_response(data) == [{"uri": "at://a"}, {"address": "0x1", "uri": "at://b"}]
    assert format_list_records_response({"records": 5}) == []
