import pytest

from solana_claim.addresses import get_associated_token_address
from solana_claim.eligibility import (
    ALREADY_HOLDING,
    INSUFFICIENT_TREASURY_BALANCE,
    MISSING_TREASURY_ACCOUNT,
    EligibilityChecker,
)
from solana_claim.errors import LedgerError, LedgerUnavailableError
from solana_claim.rpc import AccountInfo


@pytest.fixture
def checker(ledger, mint, treasury):
    return EligibilityChecker(ledger, mint, treasury.public_key)


class TestNotAlreadyHolding:
    def test_absent_account_is_eligible(self, checker, claimant):
        result = checker.check_not_already_holding(claimant.public_key)
        assert result
        assert result.balance == 0
        assert not result.account_exists

    def test_empty_account_is_eligible(self, checker, ledger, claimant):
        ledger.set_token_balance(claimant.public_key, 0)
        result = checker.check_not_already_holding(claimant.public_key)
        assert result
        assert result.account_exists

    def test_positive_balance_is_not_eligible(self, checker, ledger, claimant):
        ledger.set_token_balance(claimant.public_key, 5)
        result = checker.check_not_already_holding(claimant.public_key)
        assert not result
        assert result.error == ALREADY_HOLDING
        assert result.balance == 5

    def test_timeout_is_not_absence(self, checker, ledger, claimant):
        ledger.unavailable = True
        with pytest.raises(LedgerUnavailableError):
            checker.check_not_already_holding(claimant.public_key)

    def test_foreign_account_is_an_error(self, checker, ledger, mint, claimant):
        ata = get_associated_token_address(claimant.public_key, mint)
        ledger.accounts[ata] = AccountInfo(owner=claimant.public_key, lamports=1, data=b"")
        with pytest.raises(LedgerError):
            checker.check_not_already_holding(claimant.public_key)


class TestTreasuryFunded:
    def test_missing_account_fails_closed(self, checker):
        result = checker.check_treasury_funded(1)
        assert not result
        assert result.error == MISSING_TREASURY_ACCOUNT

    def test_below_minimum(self, checker, ledger, treasury):
        ledger.set_token_balance(treasury.public_key, 9)
        result = checker.check_treasury_funded(10)
        assert not result
        assert result.error == INSUFFICIENT_TREASURY_BALANCE
        assert result.balance == 9

    def test_exactly_minimum(self, checker, ledger, treasury):
        ledger.set_token_balance(treasury.public_key, 10)
        assert checker.check_treasury_funded(10)

    def test_timeout_is_not_missing(self, checker, ledger):
        ledger.unavailable = True
        with pytest.raises(LedgerUnavailableError):
            checker.check_treasury_funded(1)
