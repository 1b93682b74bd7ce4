from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Set

from .errors import PaymentError

log = logging.getLogger("payment")

PAYMENT_NOT_FOUND = "SOL transaction not found or not confirmed yet"
TREASURY_NOT_IN_TRANSACTION = "Treasury address not present in SOL transaction"
UNDERPAID = "Received lamports less than expected"
PAYMENT_ALREADY_USED = "PAYMENT_ALREADY_USED"


class TransactionReader(Protocol):
    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]: ...


class PaymentStore(Protocol):
    """
    Records payment signatures that already back a claim.

    ``reserve`` is an atomic test-and-set: it returns False when the
    signature is already held, otherwise it takes it. ``release`` gives a
    reservation back when the claim it was taken for is abandoned.
    """

    def reserve(self, signature: str) -> bool: ...

    def release(self, signature: str) -> None: ...


class NullPaymentStore:
    """Never remembers anything: a payment can back any number of claims."""

    def reserve(self, signature: str) -> bool:
        return True

    def release(self, signature: str) -> None:
        pass


class InMemoryPaymentStore:
    def __init__(self) -> None:
        self._seen: Set[str] = set()
        self._lock = threading.Lock()

    def reserve(self, signature: str) -> bool:
        with self._lock:
            if signature in self._seen:
                return False
            self._seen.add(signature)
            return True

    def release(self, signature: str) -> None:
        with self._lock:
            self._seen.discard(signature)

    def is_consumed(self, signature: str) -> bool:
        with self._lock:
            return signature in self._seen


@dataclass(frozen=True)
class PaymentReceipt:
    signature: str
    received: int


def transaction_account_keys(record: Dict[str, Any]) -> List[str]:
    """Static keys followed by lookup-table keys (writable, then readonly)."""
    message = (record.get("transaction") or {}).get("message") or {}
    keys: List[str] = []
    for k in message.get("accountKeys") or []:
        # jsonParsed encoding gives {"pubkey": ...} objects
        keys.append(k["pubkey"] if isinstance(k, dict) else str(k))
    loaded = (record.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return keys


class PaymentVerifier:
    """
    Confirms the treasury received at least the expected lamports in a
    previously broadcast transaction, from ledger-observed balance deltas.
    """

    def __init__(self, rpc: TransactionReader, store: PaymentStore | None = None) -> None:
        self.rpc = rpc
        self.store = store or NullPaymentStore()

    def verify(
        self, signature: str, treasury_address: str, expected_minimum: int
    ) -> PaymentReceipt:
        """
        Reserves ``signature`` in the store and checks the payment. On success
        the reservation stays held; the caller releases it if the claim is
        abandoned later.
        """
        if not self.store.reserve(signature):
            raise PaymentError(
                "This payment was already used for a claim.", code=PAYMENT_ALREADY_USED
            )
        try:
            return self._check(signature, treasury_address, expected_minimum)
        except Exception:
            self.store.release(signature)
            raise

    def _check(
        self, signature: str, treasury_address: str, expected_minimum: int
    ) -> PaymentReceipt:
        record = self.rpc.get_transaction(signature)
        meta = (record or {}).get("meta")
        if not record or not meta:
            raise PaymentError(PAYMENT_NOT_FOUND, code=PAYMENT_NOT_FOUND)
        if meta.get("err") is not None:
            log.warning("Payment %s failed on chain: %s", signature, meta["err"])
            raise PaymentError(PAYMENT_NOT_FOUND, code=PAYMENT_NOT_FOUND)

        keys = transaction_account_keys(record)
        try:
            index = keys.index(treasury_address)
        except ValueError:
            raise PaymentError(TREASURY_NOT_IN_TRANSACTION, code=TREASURY_NOT_IN_TRANSACTION)

        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        if index >= len(pre) or index >= len(post):
            raise PaymentError(PAYMENT_NOT_FOUND, code=PAYMENT_NOT_FOUND)

        received = int(post[index]) - int(pre[index])
        if received < expected_minimum:
            log.info(
                "Payment %s underpaid: received=%d expected=%d",
                signature,
                received,
                expected_minimum,
            )
            raise PaymentError(
                f"{UNDERPAID}: received {received}, expected {expected_minimum}",
                code=UNDERPAID,
            )
        return PaymentReceipt(signature=signature, received=received)
