"""
Client side of a claim: local pre-check, server request, wallet signature,
broadcast and confirmation.

One ``ClaimOrchestrator.run()`` is one attempt. Every step updates a single
human-readable status; the attempt ends in SUCCESS, ALREADY_CLAIMED or
FAILED. A FAILED result says whether re-running the whole flow makes sense.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from .addresses import get_associated_token_address
from .errors import ClaimError, LedgerError, WalletRejectedError
from .project_constants import DEFAULT_COMMITMENT, EXPLORER_TX_URL
from .rpc import RpcClient
from .signer import Keypair
from .token_accounts import read_token_account
from .transaction import Transaction, TransactionError

log = logging.getLogger("client")

ALREADY_CLAIMED_CODES = ("ALREADY_CLAIMED", "ALREADY_HAS_TOKENS")


class ClaimState(str, Enum):
    IDLE = "IDLE"
    CHECKING_LOCAL = "CHECKING_LOCAL"
    REQUESTING_SERVER = "REQUESTING_SERVER"
    AWAITING_USER_SIGNATURE = "AWAITING_USER_SIGNATURE"
    BROADCASTING = "BROADCASTING"
    CONFIRMING = "CONFIRMING"
    SUCCESS = "SUCCESS"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    FAILED = "FAILED"


class Wallet(Protocol):
    @property
    def public_key(self) -> str: ...

    def sign_transaction(self, tx: Transaction) -> Transaction:
        """Returns the signed transaction or raises WalletRejectedError."""
        ...


class KeypairWallet:
    """A local keypair acting as the user's wallet (CLI use)."""

    def __init__(self, keypair: Keypair, confirm: Callable[[Transaction], bool] | None = None):
        self.keypair = keypair
        self.confirm = confirm

    @property
    def public_key(self) -> str:
        return self.keypair.public_key

    def sign_transaction(self, tx: Transaction) -> Transaction:
        if self.confirm is not None and not self.confirm(tx):
            raise WalletRejectedError("User rejected the request.")
        tx.partial_sign(self.keypair)
        return tx


@dataclass(frozen=True)
class PaymentProof:
    signature: str
    token_amount: int
    expected_lamports: int


@dataclass
class ClaimResult:
    state: ClaimState
    status: str
    signature: Optional[str] = None
    retryable: bool = False
    rejected: bool = False


class ClaimOrchestrator:
    def __init__(
        self,
        rpc: RpcClient,
        claim_url: str,
        wallet: Wallet,
        token_mint: str,
        http: httpx.Client | None = None,
        on_status: Callable[[ClaimState, str], None] | None = None,
        commitment: str = DEFAULT_COMMITMENT,
        confirm_timeout_s: float = 90.0,
    ) -> None:
        self.rpc = rpc
        self.claim_url = claim_url
        self.wallet = wallet
        self.token_mint = token_mint
        self.http = http or httpx.Client(timeout=30.0)
        self.on_status = on_status
        self.commitment = commitment
        self.confirm_timeout_s = confirm_timeout_s
        self.state = ClaimState.IDLE
        self.status = ""

    def _set(self, state: ClaimState, status: str) -> None:
        self.state = state
        self.status = status
        log.debug("%s: %s", state.value, status)
        if self.on_status is not None:
            self.on_status(state, status)

    def _finish(
        self,
        state: ClaimState,
        status: str,
        signature: str | None = None,
        retryable: bool = False,
        rejected: bool = False,
    ) -> ClaimResult:
        self._set(state, status)
        return ClaimResult(state, status, signature, retryable, rejected)

    def request_body(self, payment: PaymentProof | None) -> Dict[str, Any]:
        if payment is None:
            return {"wallet": self.wallet.public_key}
        return {
            "buyer": self.wallet.public_key,
            "tokenAmount": payment.token_amount,
            "solTxSignature": payment.signature,
            "expectedLamports": payment.expected_lamports,
        }

    def local_balance(self) -> int:
        ata = get_associated_token_address(self.wallet.public_key, self.token_mint)
        account = read_token_account(self.rpc, ata)
        return 0 if account is None else account.amount

    def run(self, payment: PaymentProof | None = None) -> ClaimResult:
        self._set(ClaimState.CHECKING_LOCAL, "Checking local balance...")
        try:
            if self.local_balance() > 0:
                return self._finish(ClaimState.ALREADY_CLAIMED, "You already have this token.")
        except ClaimError as e:
            # a bad mint or wallet address will not fix itself on retry
            log.error("Local balance check failed: %s", e)
            return self._finish(
                ClaimState.FAILED,
                "Failed to check token balance.",
                retryable=isinstance(e, LedgerError),
            )

        self._set(
            ClaimState.REQUESTING_SERVER,
            "Requesting partially-signed transaction from server...",
        )
        try:
            resp = self.http.post(self.claim_url, json=self.request_body(payment))
        except httpx.HTTPError as e:
            log.error("Claim request failed: %s", e)
            return self._finish(
                ClaimState.FAILED, f"Failed to request claim: {e}", retryable=True
            )

        try:
            payload = resp.json()
        except ValueError:
            return self._finish(
                ClaimState.FAILED,
                "Server returned empty or invalid JSON",
                retryable=resp.status_code >= 500,
            )

        if resp.is_error:
            payload = payload if isinstance(payload, dict) else {}
            code = payload.get("error")
            if code in ALREADY_CLAIMED_CODES:
                return self._finish(ClaimState.ALREADY_CLAIMED, "This wallet already has the token.")
            message = payload.get("message") or code or resp.reason_phrase
            return self._finish(
                ClaimState.FAILED,
                f"Server error: {message}",
                retryable=resp.status_code >= 500,
            )

        try:
            tx_b64 = payload.get("tx") if isinstance(payload, dict) else None
            if not tx_b64:
                raise TransactionError("No transaction data received")
            tx = Transaction.from_base64(tx_b64)
            if tx.fee_payer != self.wallet.public_key:
                raise TransactionError(f"Unexpected fee payer {tx.fee_payer}")
            last_valid = payload.get("lastValidBlockHeight")
            if last_valid is not None and not isinstance(last_valid, int):
                raise TransactionError(f"Bad lastValidBlockHeight {last_valid!r}")
        except TransactionError as e:
            log.error("Bad transaction from server: %s", e)
            return self._finish(ClaimState.FAILED, "Invalid transaction received from server.")

        self._set(ClaimState.AWAITING_USER_SIGNATURE, "Waiting for wallet signature...")
        try:
            signed = self.wallet.sign_transaction(tx)
        except WalletRejectedError:
            return self._finish(
                ClaimState.FAILED, "Signature request rejected in wallet.", rejected=True
            )
        except Exception as e:
            log.exception("Wallet signing failed")
            return self._finish(ClaimState.FAILED, f"Claim failed: {e}")

        self._set(ClaimState.BROADCASTING, "Sending transaction...")
        try:
            signature = self.rpc.send_raw_transaction(signed.serialize())
        except (LedgerError, TransactionError) as e:
            log.error("Broadcast failed: %s", e)
            return self._finish(ClaimState.FAILED, f"Claim failed: {e}", retryable=True)

        self._set(
            ClaimState.CONFIRMING, f"Sent tx: {signature}. Waiting for confirmation..."
        )
        try:
            self.rpc.confirm_transaction(
                signature,
                commitment=self.commitment,
                last_valid_block_height=last_valid,
                timeout_s=self.confirm_timeout_s,
            )
        except LedgerError as e:
            log.error("Confirmation failed for %s: %s", signature, e)
            return self._finish(
                ClaimState.FAILED, f"Claim failed: {e}", signature=signature, retryable=True
            )

        url = EXPLORER_TX_URL.format(signature=signature)
        return self._finish(ClaimState.SUCCESS, f"Claim successful! Tx: {url}", signature=signature)
