import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, Sequence

from walletlink.config import WalletLinkConfigurationError, WalletLinkSettings
from walletlink.identity import (
    AttestationEngine,
    AttestationRecord,
    Identity,
    InvalidAddressError,
    XrpcAttestationStore,
    build_message,
    verify,
)
from walletlink.identity.engine import EngineSnapshot
from walletlink.identity.view import active_wallet_note, link_cta, record_summary, status_badges
from walletlink.wallet import ConnectedWalletSource, EmbeddedWalletSource, load_signer

logger = logging.getLogger("walletlink.cli")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _render(snapshot: EngineSnapshot, active: Sequence[str]) -> dict:
    flags = snapshot.flags
    address = snapshot.record.address if snapshot.record else None
    return {
        "subject": snapshot.subject,
        "state": snapshot.state.value,
        "error_kind": snapshot.error_kind.value if snapshot.error_kind else None,
        "last_issue": snapshot.last_issue.value if snapshot.last_issue else None,
        "record": record_summary(snapshot.state, address),
        "locator": snapshot.record.locator if snapshot.record else None,
        "signer_recovered": snapshot.result.signer_recovered if snapshot.result else None,
        "flags": flags.model_dump(),
        "badges": status_badges(flags),
        "note": active_wallet_note(address, active),
        "cta": link_cta(flags),
    }


def _store(settings: WalletLinkSettings, args: argparse.Namespace) -> XrpcAttestationStore:
    return XrpcAttestationStore(
        service_url=args.service_url or settings.service_url,
        access_token=args.token,
        collection=settings.attestation_collection,
        record_key=settings.record_key,
        timeout=settings.http_timeout,
    )


def cmd_message(args: argparse.Namespace) -> int:
    print(build_message(Identity(sub=args.did), args.address))
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    record = AttestationRecord(address=args.address, signature=args.signature)
    result = verify(Identity(sub=args.did), record, args.active or [])
    print(json.dumps(result.model_dump(mode="json"), indent=2, sort_keys=True))
    return 0 if result.is_authentic else 1


async def _status(args: argparse.Namespace, settings: WalletLinkSettings) -> int:
    store = _store(settings, args)
    sources = [ConnectedWalletSource(address) for address in (args.active or [])]
    engine = AttestationEngine(store, sources, operation_timeout=settings.operation_timeout)
    try:
        snapshot = await engine.start_session(Identity(sub=args.did))
    finally:
        await store.close()
    print(json.dumps(_render(snapshot, args.active or []), indent=2))
    return 0 if snapshot.flags.record_verified else 1


async def _link(args: argparse.Namespace, settings: WalletLinkSettings) -> int:
    signer = load_signer()
    store = _store(settings, args)
    engine = AttestationEngine(store, [EmbeddedWalletSource(signer)], operation_timeout=settings.operation_timeout)
    try:
        await engine.start_session(Identity(sub=args.did))
        outcome = await engine.link_with_signer(signer)
    finally:
        await store.close()
    print(outcome.message)
    print(json.dumps(_render(engine.snapshot(), [signer.address]), indent=2))
    return 0 if outcome.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="walletlink", description="Link a DID to a wallet with a signed attestation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("message", help="Print the binding message for a DID and address")
    p.add_argument("--did", required=True)
    p.add_argument("--address", required=True)
    p.set_defaults(func=cmd_message)

    p = sub.add_parser("verify", help="Verify an attestation offline")
    p.add_argument("--did", required=True)
    p.add_argument("--address", required=True)
    p.add_argument("--signature", required=True)
    p.add_argument("--active", nargs="*", help="Currently active wallet addresses")
    p.set_defaults(func=cmd_verify)

    for name, helptext in (("status", "Fetch and verify the stored attestation"), ("link", "Sign and store an attestation with the local wallet")):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("--did", required=True)
        p.add_argument("--token", help="Repository access token")
        p.add_argument("--service-url", help="Repository host, overrides WALLETLINK_SERVICE_URL")
        if name == "status":
            p.add_argument("--active", nargs="*", help="Currently active wallet addresses")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        if args.command in ("message", "verify"):
            return args.func(args)
        settings = WalletLinkSettings.load()
        if args.command == "status":
            return asyncio.run(_status(args, settings))
        return asyncio.run(_link(args, settings))
    except (InvalidAddressError, WalletLinkConfigurationError, ValueError) as exc:
        logger.error(str(exc))
        return 2


if __name__ == "__main__":
    sys.exit(main())
