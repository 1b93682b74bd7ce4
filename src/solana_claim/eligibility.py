from __future__ import annotations

import logging
from dataclasses import dataclass

from .addresses import get_associated_token_address
from .token_accounts import AccountReader, read_token_account

log = logging.getLogger("eligibility")

ALREADY_HOLDING = "ALREADY_HOLDING"
MISSING_TREASURY_ACCOUNT = "MISSING_TREASURY_ACCOUNT"
INSUFFICIENT_TREASURY_BALANCE = "INSUFFICIENT_TREASURY_BALANCE"


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    error: str | None = None
    balance: int = 0
    account_exists: bool = False

    def __bool__(self) -> bool:
        return self.eligible


class EligibilityChecker:
    """
    Read-only balance checks against current ledger state.

    An absent claimant account is a normal state (balance 0). Transport
    failures raise from the reader and are never treated as absence.
    """

    def __init__(self, rpc: AccountReader, token_mint: str, treasury_owner: str) -> None:
        self.rpc = rpc
        self.token_mint = token_mint
        self.treasury_owner = treasury_owner

    def check_not_already_holding(self, address: str) -> EligibilityResult:
        ata = get_associated_token_address(address, self.token_mint)
        account = read_token_account(self.rpc, ata)
        if account is None:
            return EligibilityResult(eligible=True)
        if account.amount == 0:
            return EligibilityResult(eligible=True, account_exists=True)
        log.info("%s already holds %d base units", address, account.amount)
        return EligibilityResult(
            eligible=False,
            error=ALREADY_HOLDING,
            balance=account.amount,
            account_exists=True,
        )

    def check_treasury_funded(self, minimum_required: int) -> EligibilityResult:
        ata = get_associated_token_address(self.treasury_owner, self.token_mint)
        account = read_token_account(self.rpc, ata)
        if account is None:
            log.error("Treasury token account %s not found", ata)
            return EligibilityResult(eligible=False, error=MISSING_TREASURY_ACCOUNT)
        if account.amount < minimum_required:
            log.warning(
                "Treasury balance %d below required %d", account.amount, minimum_required
            )
            return EligibilityResult(
                eligible=False,
                error=INSUFFICIENT_TREASURY_BALANCE,
                balance=account.amount,
                account_exists=True,
            )
        return EligibilityResult(eligible=True, balance=account.amount, account_exists=True)
