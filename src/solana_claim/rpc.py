from __future__ import annotations

import base64
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .errors import LedgerError, LedgerUnavailableError
from .project_constants import BLOCKHASH_COMMITMENT, DEFAULT_COMMITMENT

log = logging.getLogger("rpc")

# Ordered weakest to strongest
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


class RpcError(LedgerError):
    """JSON-RPC level error returned by the node."""

    def __init__(self, error: Any) -> None:
        self.rpc_error = error
        message = error.get("message") if isinstance(error, dict) else str(error)
        super().__init__(f"RPC error: {message}")


@dataclass(frozen=True)
class AccountInfo:
    owner: str
    lamports: int
    data: bytes


@dataclass(frozen=True)
class LatestBlockhash:
    blockhash: str
    last_valid_block_height: int


def commitment_reached(status: Optional[str], required: str) -> bool:
    if status not in COMMITMENT_LEVELS:
        return False
    return COMMITMENT_LEVELS.index(status) >= COMMITMENT_LEVELS.index(required)


class RpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        commitment: str = DEFAULT_COMMITMENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.client = httpx.Client(timeout=timeout_s, transport=transport)
        self._ids = itertools.count(1)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            resp = self.client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise LedgerUnavailableError(f"RPC {method} failed: {e}") from e
        except ValueError as e:
            raise LedgerUnavailableError(f"RPC {method} returned invalid JSON") from e
        if "error" in data:
            raise RpcError(data["error"])
        return data

    def get_block_height(self, commitment: str | None = None) -> int:
        data = self._post("getBlockHeight", [{"commitment": commitment or self.commitment}])
        return int(data["result"])

    def get_account_info(self, address: str) -> Optional[AccountInfo]:
        """Returns None when the account does not exist on the ledger."""
        data = self._post(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (data.get("result") or {}).get("value")
        if value is None:
            return None
        # value['data'] is [base64_str, "base64"]
        raw = base64.b64decode(value["data"][0])
        return AccountInfo(owner=value["owner"], lamports=int(value["lamports"]), data=raw)

    def get_latest_blockhash(self, commitment: str = BLOCKHASH_COMMITMENT) -> LatestBlockhash:
        data = self._post("getLatestBlockhash", [{"commitment": commitment}])
        value = (data.get("result") or {}).get("value")
        if not value or "blockhash" not in value:
            raise LedgerError("getLatestBlockhash returned no blockhash.")
        return LatestBlockhash(
            blockhash=value["blockhash"],
            last_valid_block_height=int(value["lastValidBlockHeight"]),
        )

    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Transaction record with meta, or None if unknown/not yet confirmed."""
        data = self._post(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        return data.get("result")

    def send_raw_transaction(self, raw: bytes, skip_preflight: bool = False) -> str:
        data = self._post(
            "sendTransaction",
            [
                base64.b64encode(raw).decode("ascii"),
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.commitment,
                },
            ],
        )
        return str(data["result"])

    def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        data = self._post("getSignatureStatuses", [[signature]])
        values = (data.get("result") or {}).get("value") or [None]
        return values[0]

    def confirm_transaction(
        self,
        signature: str,
        commitment: str | None = None,
        last_valid_block_height: int | None = None,
        timeout_s: float = 90.0,
        poll_interval_s: float = 1.0,
    ) -> Dict[str, Any]:
        """
        Blocks until the signature reaches ``commitment``.

        Raises LedgerError if the transaction failed on chain, or if it was
        not confirmed before the blockhash expired / the timeout elapsed.
        """
        required = commitment or self.commitment
        deadline = time.monotonic() + timeout_s
        while True:
            status = self.get_signature_status(signature)
            if status is not None:
                if status.get("err") is not None:
                    raise LedgerError(f"Transaction {signature} failed: {status['err']}")
                if commitment_reached(status.get("confirmationStatus"), required):
                    return status

            if last_valid_block_height is not None:
                if self.get_block_height() > last_valid_block_height:
                    raise LedgerError(
                        f"Transaction {signature} expired before reaching {required}"
                    )
            if time.monotonic() >= deadline:
                raise LedgerError(
                    f"Timed out waiting for {signature} to reach {required}"
                )
            log.debug("Waiting for %s (status=%s)", signature, status)
            time.sleep(poll_interval_s)
