"""
Claim engine: one flow for free and paid claims.

    validate address -> load treasury key -> [verify payment]
      -> claimant holds nothing -> treasury funded -> build + co-sign

The variant only changes how much is claimed, whether a payment proof is
checked, and which error codes the caller sees.

Eligibility is read from the ledger on every request; nothing is locked.
Two concurrent requests for one claimant can both pass the checks before
either transaction lands. That race is accepted, not handled here.

Payment signatures are different: the store reserves one before the ledger
is read, so concurrent paid requests cannot spend the same payment twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from .addresses import decode_address
from .builder import BuiltClaim, ClaimTransactionBuilder
from .config import Settings
from .eligibility import (
    EligibilityChecker,
    EligibilityResult,
    INSUFFICIENT_TREASURY_BALANCE,
    MISSING_TREASURY_ACCOUNT,
)
from .errors import ConfigError, EligibilityError, InputError
from .payment import PaymentStore, PaymentVerifier, NullPaymentStore
from .rpc import RpcClient
from .schemas import (
    MISSING_PARAMETERS,
    ClaimRequest,
    FreeClaimRequest,
    PaidClaimRequest,
)
from .signer import (
    FileSecretProvider,
    Keypair,
    SecretProvider,
    StaticSecretProvider,
)

log = logging.getLogger("claim")


@dataclass(frozen=True)
class ClaimVariant:
    name: str
    already_holding: str
    already_holding_message: str
    treasury_short: str
    treasury_short_message: str
    treasury_short_status: int = 500
    missing_treasury: str = "MISSING_TREASURY_ATA"
    missing_treasury_message: str = "Treasury ATA not found."


FREE_CLAIM = ClaimVariant(
    name="free",
    already_holding="ALREADY_CLAIMED",
    already_holding_message="This wallet already holds the token.",
    treasury_short="NO_TREASURY_BALANCE",
    treasury_short_message="Treasury is empty.",
)

PAID_CLAIM = ClaimVariant(
    name="paid",
    already_holding="ALREADY_HAS_TOKENS",
    already_holding_message="This wallet already holds the token.",
    treasury_short=INSUFFICIENT_TREASURY_BALANCE,
    treasury_short_message="Treasury balance is too low for this purchase.",
)


class PaymentStrategy(Protocol):
    variant: ClaimVariant
    claimant: str
    amount: int

    def authorize(self, verifier: PaymentVerifier, treasury_address: str) -> None: ...

    def release(self, store: PaymentStore) -> None: ...


class NoPayment:
    variant = FREE_CLAIM

    def __init__(self, request: FreeClaimRequest, settings: Settings) -> None:
        self.claimant = request.wallet
        self.amount = settings.claim_amount

    def authorize(self, verifier: PaymentVerifier, treasury_address: str) -> None:
        pass

    def release(self, store: PaymentStore) -> None:
        pass


class OnChainPayment:
    variant = PAID_CLAIM

    def __init__(self, request: PaidClaimRequest, settings: Settings) -> None:
        self.request = request
        self.claimant = request.buyer
        self.amount = request.tokenAmount * 10**settings.token_decimals
        self.minimum_lamports = request.expectedLamports
        if self.amount >= 2**64:
            raise InputError(
                f"tokenAmount {request.tokenAmount} exceeds the token supply range",
                code=MISSING_PARAMETERS,
            )
        if settings.lamports_per_token is not None:
            # the client's number is only accepted if it covers the configured price
            price = request.tokenAmount * settings.lamports_per_token
            if request.expectedLamports < price:
                raise InputError(
                    f"expectedLamports {request.expectedLamports} is below the "
                    f"price of {price} lamports",
                    code=MISSING_PARAMETERS,
                )

    def authorize(self, verifier: PaymentVerifier, treasury_address: str) -> None:
        receipt = verifier.verify(
            self.request.solTxSignature, treasury_address, self.minimum_lamports
        )
        log.info(
            "Payment %s verified: %d lamports to %s",
            self.request.solTxSignature,
            receipt.received,
            treasury_address,
        )

    def release(self, store: PaymentStore) -> None:
        store.release(self.request.solTxSignature)


def strategy_for(request: ClaimRequest, settings: Settings) -> PaymentStrategy:
    if isinstance(request, PaidClaimRequest):
        return OnChainPayment(request, settings)
    return NoPayment(request, settings)


def default_secret_provider(settings: Settings) -> SecretProvider:
    if settings.treasury_secret:
        return StaticSecretProvider(settings.treasury_secret)
    if settings.treasury_secret_file:
        return FileSecretProvider(settings.treasury_secret_file)
    raise ConfigError("No treasury secret configured")


class ClaimService:
    def __init__(
        self,
        settings: Settings,
        secret_provider: SecretProvider | None = None,
        rpc_factory: Callable[[], RpcClient] | None = None,
        payment_store: PaymentStore | None = None,
    ) -> None:
        self.settings = settings
        self.secret_provider = secret_provider or default_secret_provider(settings)
        self.rpc_factory = rpc_factory or self._default_rpc
        self.payment_store = payment_store or NullPaymentStore()

    def _default_rpc(self) -> RpcClient:
        return RpcClient(
            self.settings.rpc_url,
            timeout_s=self.settings.rpc_timeout,
            commitment=self.settings.commitment,
        )

    def handle(self, request: ClaimRequest) -> BuiltClaim:
        strategy = strategy_for(request, self.settings)
        variant = strategy.variant
        claimant = strategy.claimant
        amount = strategy.amount
        decode_address(claimant)

        # key lives for this request only
        treasury: Keypair = self.secret_provider.load()
        rpc = self.rpc_factory()
        try:
            treasury_sol = self.settings.treasury_sol_address or treasury.public_key
            # a verified payment stays reserved unless the claim is abandoned
            strategy.authorize(PaymentVerifier(rpc, self.payment_store), treasury_sol)
            try:
                checker = EligibilityChecker(rpc, self.settings.token_mint, treasury.public_key)
                holding = checker.check_not_already_holding(claimant)
                self._require(holding, variant)
                self._require(checker.check_treasury_funded(amount), variant)

                builder = ClaimTransactionBuilder(rpc, self.settings.token_mint)
                built = builder.build(
                    claimant, amount, treasury, claimant_account_exists=holding.account_exists
                )
            except Exception:
                strategy.release(self.payment_store)
                raise
        finally:
            rpc.close()

        log.info("%s claim prepared for %s (%d base units)", variant.name, claimant, amount)
        return built

    @staticmethod
    def _require(result: EligibilityResult, variant: ClaimVariant) -> None:
        if result:
            return
        if result.error == MISSING_TREASURY_ACCOUNT:
            raise EligibilityError(
                variant.missing_treasury_message,
                code=variant.missing_treasury,
                status_code=500,
            )
        if result.error == INSUFFICIENT_TREASURY_BALANCE:
            raise EligibilityError(
                variant.treasury_short_message,
                code=variant.treasury_short,
                status_code=variant.treasury_short_status,
            )
        raise EligibilityError(
            variant.already_holding_message,
            code=variant.already_holding,
            status_code=400,
        )
