import json
from typing import Any, Dict, List, Optional

import pytest

from solana_claim.addresses import decode_address, encode_address, get_associated_token_address
from solana_claim.config import Settings
from solana_claim.errors import LedgerError, LedgerUnavailableError
from solana_claim.project_constants import TOKEN_PROGRAM_ID
from solana_claim.rpc import AccountInfo, LatestBlockhash
from solana_claim.signer import Keypair
from solana_claim.token_accounts import encode_token_account

BLOCKHASH = encode_address(bytes(range(1, 33)))


class FakeLedger:
    """In-memory stand-in for RpcClient."""

    def __init__(self, mint: str) -> None:
        self.mint = mint
        self.accounts: Dict[str, AccountInfo] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.sent: List[bytes] = []
        self.confirmed: List[str] = []
        self.confirm_calls: List[Dict[str, Any]] = []
        self.blockhash_calls = 0
        self.closed = 0
        self.unavailable = False
        self.confirm_error: Optional[str] = None

    def set_token_balance(self, owner: str, amount: int) -> str:
        ata = get_associated_token_address(owner, self.mint)
        data = encode_token_account(decode_address(self.mint), decode_address(owner), amount)
        self.accounts[ata] = AccountInfo(owner=TOKEN_PROGRAM_ID, lamports=2039280, data=data)
        return ata

    def add_payment(
        self,
        signature: str,
        keys: List[str],
        pre: List[int],
        post: List[int],
        err: Any = None,
    ) -> None:
        self.transactions[signature] = {
            "slot": 1,
            "transaction": {"message": {"accountKeys": keys}, "signatures": [signature]},
            "meta": {"err": err, "preBalances": pre, "postBalances": post},
        }

    def get_account_info(self, address: str) -> Optional[AccountInfo]:
        if self.unavailable:
            raise LedgerUnavailableError("RPC getAccountInfo failed: timed out")
        return self.accounts.get(address)

    def get_latest_blockhash(self, commitment: str = "finalized") -> LatestBlockhash:
        self.blockhash_calls += 1
        return LatestBlockhash(blockhash=BLOCKHASH, last_valid_block_height=1000)

    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        if self.unavailable:
            raise LedgerUnavailableError("RPC getTransaction failed: timed out")
        return self.transactions.get(signature)

    def send_raw_transaction(self, raw: bytes, skip_preflight: bool = False) -> str:
        self.sent.append(raw)
        return "5" * 64

    def confirm_transaction(self, signature: str, commitment: str = None, **kwargs: Any) -> dict:
        self.confirm_calls.append(dict(kwargs, commitment=commitment))
        if self.confirm_error:
            raise LedgerError(self.confirm_error)
        self.confirmed.append(signature)
        return {"confirmationStatus": commitment or "confirmed", "err": None}

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def mint() -> str:
    return Keypair.generate().public_key


@pytest.fixture
def treasury() -> Keypair:
    return Keypair.generate()


@pytest.fixture
def claimant() -> Keypair:
    return Keypair.generate()


@pytest.fixture
def ledger(mint: str) -> FakeLedger:
    return FakeLedger(mint)


@pytest.fixture
def settings(mint: str, treasury: Keypair) -> Settings:
    return Settings(
        rpc_url="http://rpc.invalid",
        token_mint=mint,
        treasury_secret=json.dumps(list(treasury.secret_key())),
        token_decimals=6,
        claim_amount=1,
    )
