from __future__ import annotations

import argparse
import logging
from pathlib import Path

import uvicorn

from .addresses import get_associated_token_address
from .client import ClaimOrchestrator, ClaimState, KeypairWallet, PaymentProof
from .config import Settings
from .errors import ClaimError
from .payment import PaymentVerifier
from .rpc import RpcClient
from .server import create_app
from .signer import Keypair


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def cmd_serve(args: argparse.Namespace) -> int:
    app = create_app()
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def cmd_address(args: argparse.Namespace) -> int:
    print(get_associated_token_address(args.owner, args.mint))
    return 0


def cmd_verify_payment(args: argparse.Namespace) -> int:
    rpc_url = Settings.resolve_rpc_url(args.rpc_url)
    rpc = RpcClient(rpc_url, timeout_s=args.timeout)
    try:
        receipt = PaymentVerifier(rpc).verify(args.signature, args.treasury, args.lamports)
    except ClaimError as e:
        print(f"Payment rejected: {e.message}")
        return 1
    finally:
        rpc.close()
    print(f"Payment OK: {receipt.received} lamports received in {receipt.signature}")
    return 0


def cmd_claim(args: argparse.Namespace) -> int:
    log = logging.getLogger("claim")
    keypair = Keypair.from_json(Path(args.keypair).read_text(encoding="utf-8"))

    def confirm(tx) -> bool:
        if args.yes:
            return True
        answer = input(f"Sign claim transaction as {keypair.public_key}? [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    payment = None
    if args.payment_signature:
        payment = PaymentProof(
            signature=args.payment_signature,
            token_amount=args.token_amount,
            expected_lamports=args.lamports,
        )

    rpc = RpcClient(Settings.resolve_rpc_url(args.rpc_url), timeout_s=args.timeout)
    orchestrator = ClaimOrchestrator(
        rpc=rpc,
        claim_url=args.server,
        wallet=KeypairWallet(keypair, confirm=confirm),
        token_mint=args.mint,
        on_status=lambda state, status: log.info("%s", status),
    )
    try:
        result = orchestrator.run(payment)
    finally:
        orchestrator.http.close()
        rpc.close()

    print(result.status)
    if result.state is ClaimState.FAILED and result.retryable:
        print("This looks transient; run the claim again.")
    return 0 if result.state is ClaimState.SUCCESS else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="solana-claim",
        description="Token claim server and client for a custodial SPL treasury.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="Run the claim HTTP server.")
    s.add_argument("--host", default="0.0.0.0")
    s.add_argument("--port", type=int, default=8000)
    s.set_defaults(func=cmd_serve)

    c = sub.add_parser("claim", help="Claim tokens with a local keypair as the wallet.")
    c.add_argument("--keypair", required=True, help="solana-keygen JSON keypair file.")
    c.add_argument("--mint", required=True, help="Token mint address.")
    c.add_argument(
        "--server",
        default="http://127.0.0.1:8000/api/claim",
        help="Claim endpoint URL.",
    )
    c.add_argument("--payment-signature", default=None, help="SOL payment tx (paid claim).")
    c.add_argument("--token-amount", type=int, default=1, help="Whole tokens to buy.")
    c.add_argument("--lamports", type=int, default=0, help="Lamports paid to the treasury.")
    c.add_argument("--yes", action="store_true", help="Sign without prompting.")
    c.set_defaults(func=cmd_claim)

    a = sub.add_parser("address", help="Print the associated token account address.")
    a.add_argument("--owner", required=True)
    a.add_argument("--mint", required=True)
    a.set_defaults(func=cmd_address)

    v = sub.add_parser("verify-payment", help="Check a SOL payment to the treasury.")
    v.add_argument("--signature", required=True)
    v.add_argument("--treasury", required=True, help="Treasury SOL address.")
    v.add_argument("--lamports", required=True, type=int, help="Minimum lamports.")
    v.set_defaults(func=cmd_verify_payment)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
