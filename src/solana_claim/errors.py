"""
Error taxonomy for the claim engine.

Every error carries a wire ``code``, a human ``message`` and the HTTP
status the server answers with. The server turns them into
``{"error": code, "message": message}`` bodies.
"""
from __future__ import annotations

from typing import Any, Dict


class ClaimError(Exception):
    code = "SERVER_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InputError(ClaimError):
    """Missing or malformed request fields. Never retried automatically."""

    code = "BAD_REQUEST"
    status_code = 400


class InvalidAddressError(InputError):
    code = "INVALID_ADDRESS"


class EligibilityError(ClaimError):
    """Already claimed, or the treasury cannot fund the claim."""

    status_code = 400


class PaymentError(ClaimError):
    status_code = 400


class ConfigError(ClaimError):
    code = "SERVER_MISCONFIGURED"
    status_code = 500


class LedgerError(ClaimError):
    """The ledger answered, but not with what we expected."""

    code = "SERVER_ERROR"
    status_code = 500


class LedgerUnavailableError(LedgerError):
    """Transport failure talking to the RPC node (timeout, refused, 5xx)."""


class WalletRejectedError(Exception):
    """The user declined to sign in their wallet."""
