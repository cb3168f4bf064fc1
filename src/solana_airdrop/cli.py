from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace

import uvicorn

from .airdrop import AirdropService
from .app import AirdropResponse, create_app
from .config import Settings


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(rpc_url_override=args.rpc_url)


def _service(args: argparse.Namespace) -> AirdropService:
    settings = _settings(args)
    if args.timeout is not None:
        settings = replace(settings, rpc_timeout_s=args.timeout)
    return AirdropService.from_settings(settings)


def cmd_serve(args: argparse.Namespace) -> int:
    service = _service(args)
    log = logging.getLogger("serve")
    log.info("Mode          : %s", "test" if service.settings.test_mode else service.settings.mode)
    log.info("Token mint    : %s", service.settings.token_mint)
    log.info("Operator      : %s", service.operator)
    missing = service.settings.missing()
    if missing:
        log.warning("Missing configuration: %s (claims will fail)", ", ".join(missing))

    uvicorn.run(
        create_app(service=service),
        host=args.host,
        port=args.port,
        log_level="debug" if args.verbose else "info",
    )
    return 0


def cmd_claim(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        outcome = service.claim(args.wallet)
    finally:
        service.close()

    body = AirdropResponse.from_outcome(outcome)
    print(json.dumps(body.model_dump(by_alias=True, exclude_none=True), indent=2))
    return 0 if outcome.ok else 1


def cmd_operator(args: argparse.Namespace) -> int:
    """Prints the public key of the configured operator secret."""
    settings = _settings(args)
    print(settings.keypair().pubkey())
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="solana-airdrop",
        description="One-claim-per-wallet SPL token airdrop endpoint.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=None, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="Run the HTTP airdrop endpoint.")
    s.add_argument("--host", default="127.0.0.1")
    s.add_argument("--port", type=int, default=8000)
    s.set_defaults(func=cmd_serve)

    c = sub.add_parser("claim", help="Send the airdrop to one wallet and print the result.")
    c.add_argument("--wallet", required=True, help="Recipient wallet address.")
    c.set_defaults(func=cmd_claim)

    o = sub.add_parser(
        "operator", help="Print the operator public key derived from WALLET_PRIVATE_KEY."
    )
    o.set_defaults(func=cmd_operator)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
