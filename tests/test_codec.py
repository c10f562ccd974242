import pytest
from eth_account import Account

from walletlink.identity import (
    AttestationRecord,
    Identity,
    InvalidAddressError,
    MalformedSignatureError,
    build_message,
    recover_signer,
    sign_message,
    verify,
)
from walletlink.identity.address import addresses_equal, canonical_address, is_valid_address


IDENTITY = Identity(sub="did:plc:abc")


def _key(account) -> str:
    key = account.key.hex()
    return key if key.startswith("0x") else "0x" + key


def _signed_record(identity, account, address=None):
    address = address or account.address
    signature = sign_message(build_message(identity, address), _key(account))
    return AttestationRecord(address=address, signature=signature)


def test_build_message_is_deterministic_and_checksummed():
    account = Account.create()
    lower = account.address.lower()

    first = build_message(IDENTITY, lower)
    second = build_message(IDENTITY, account.address)

    assert first == second
    assert first == f"did:plc:abc,{account.address}"


def test_build_message_distinguishes_pairs():
    a, b = Account.create(), Account.create()
    other = Identity(sub="did:plc:xyz")
    messages = {
        build_message(IDENTITY, a.address),
        build_message(IDENTITY, b.address),
        build_message(other, a.address),
        build_message(other, b.address),
    }
    assert len(messages) == 4


def test_build_message_subject_containing_comma_does_not_collide():
    a = Account.create()
    left = build_message(Identity(sub="did:plc:a,b"), a.address)
    right = build_message(Identity(sub="did:plc:a"), a.address)
    assert left != right


def test_build_message_rejects_invalid_address():
    with pytest.raises(InvalidAddressError):
        build_message(IDENTITY, "0x1234")
    with pytest.raises(InvalidAddressError):
        build_message(IDENTITY, "not-an-address")


def test_build_message_rejects_blank_subject():
    with pytest.raises(ValueError):
        build_message(Identity.model_construct(sub=""), Account.create().address)


def test_sign_and_recover_round_trip():
    for _ in range(3):
        account = Account.create()
        message = build_message(IDENTITY, account.address)
        signature = sign_message(message, _key(account))

        assert signature.startswith("0x")
        assert len(signature) == 2 + 65 * 2
        assert recover_signer(message, signature) == account.address


def test_recover_signer_returns_other_signer_for_foreign_signature():
    owner, other = Account.create(), Account.create()
    message = build_message(IDENTITY, owner.address)
    signature = sign_message(message, _key(other))

    assert recover_signer(message, signature) == other.address


@pytest.mark.parametrize(
    "signature",
    [
        "",
        "0x",
        "zz" * 65,
        "0x" + "00" * 64,
        "0x" + "11" * 66,
        "0x" + "11" * 64 + "05",
    ],
)
def test_recover_signer_rejects_malformed_signatures(signature):
    with pytest.raises(MalformedSignatureError):
        recover_signer("did:plc:abc,0x0000000000000000000000000000000000000000", signature)


def test_verify_authentic_record_matching_active_wallet():
    account = Account.create()
    record = _signed_record(IDENTITY, account)

    result = verify(IDENTITY, record, [account.address.lower()])

    assert result.signer_recovered == account.address
    assert result.is_authentic is True
    assert result.matches_active_wallet is True
    assert result.active_wallets == frozenset({account.address})


def test_verify_foreign_signer_is_never_authentic():
    claimed, actual = Account.create(), Account.create()
    signature = sign_message(build_message(IDENTITY, claimed.address), _key(actual))
    record = AttestationRecord(address=claimed.address, signature=signature)

    for active in ([], [claimed.address], [actual.address], [claimed.address, actual.address]):
        result = verify(IDENTITY, record, active)
        assert result.is_authentic is False
        assert result.matches_active_wallet is False
        assert result.signer_recovered == actual.address


def test_verify_authentic_record_with_other_active_wallet():
    account, connected = Account.create(), Account.create()
    record = _signed_record(IDENTITY, account)

    result = verify(IDENTITY, record, [connected.address])

    assert result.is_authentic is True
    assert result.matches_active_wallet is False


def test_verify_is_bound_to_identity():
    account = Account.create()
    record = _signed_record(Identity(sub="did:plc:someone-else"), account)

    result = verify(IDENTITY, record, [account.address])

    assert result.is_authentic is False
    assert result.signer_recovered != account.address


def test_verify_tampered_signature_never_raises():
    account = Account.create()
    record = _signed_record(IDENTITY, account)
    raw = bytearray(bytes.fromhex(record.signature[2:]))

    for index in range(len(raw)):
        tampered = bytearray(raw)
        tampered[index] ^= 0x01
        result = verify(
            IDENTITY,
            AttestationRecord(address=account.address, signature="0x" + tampered.hex()),
            [account.address],
        )
        assert result.is_authentic is False
        assert result.matches_active_wallet is False


def test_verify_without_record():
    account = Account.create()
    result = verify(IDENTITY, None, [account.address])

    assert result.signer_recovered is None
    assert result.is_authentic is False
    assert result.active_wallets == frozenset({account.address})


def test_matches_active_wallet_follows_active_set():
    account = Account.create()
    record = _signed_record(IDENTITY, account)

    assert verify(IDENTITY, record, []).matches_active_wallet is False
    assert verify(IDENTITY, record, [account.address]).matches_active_wallet is True
    assert verify(IDENTITY, record, []).matches_active_wallet is False


def test_address_helpers():
    account = Account.create()
    assert canonical_address(account.address.lower()) == account.address
    assert canonical_address("0X" + account.address[2:].upper()) == account.address
    assert addresses_equal(account.address.lower(), account.address)
    assert not addresses_equal(account.address, "garbage")
    assert not is_valid_address(None)
    assert not is_valid_address(account.address[2:])
