import pytest

from solana_claim.config import Settings
from solana_claim.errors import ConfigError
from solana_claim.project_constants import DEFAULT_RPC_URL

ENV_VARS = (
    "RPC_URL",
    "HELIUS_API_KEY",
    "TOKEN_MINT",
    "TREASURY_SECRET",
    "TREASURY_SECRET_FILE",
    "TREASURY_SOL_ADDRESS",
    "TOKEN_DECIMALS",
    "CLAIM_AMOUNT_BASE_UNITS",
    "LAMPORTS_PER_TOKEN",
    "COMMITMENT",
    "RPC_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("solana_claim.config.load_dotenv", lambda: None)


def test_defaults(monkeypatch, mint):
    monkeypatch.setenv("TOKEN_MINT", mint)
    monkeypatch.setenv("TREASURY_SECRET", "[1]")
    s = Settings.from_env()
    assert s.rpc_url == DEFAULT_RPC_URL
    assert s.token_mint == mint
    assert s.token_decimals == 6
    assert s.claim_amount == 1
    assert s.lamports_per_token is None
    assert s.commitment == "confirmed"


def test_overrides(monkeypatch, mint):
    monkeypatch.setenv("TOKEN_MINT", mint)
    monkeypatch.setenv("TREASURY_SECRET_FILE", "/run/secrets/treasury.json")
    monkeypatch.setenv("HELIUS_API_KEY", "k")
    monkeypatch.setenv("TOKEN_DECIMALS", "9")
    monkeypatch.setenv("CLAIM_AMOUNT_BASE_UNITS", "1000")
    monkeypatch.setenv("LAMPORTS_PER_TOKEN", "5000")
    s = Settings.from_env()
    assert s.rpc_url == "https://mainnet.helius-rpc.com/?api-key=k"
    assert s.treasury_secret is None
    assert s.treasury_secret_file == "/run/secrets/treasury.json"
    assert (s.token_decimals, s.claim_amount, s.lamports_per_token) == (9, 1000, 5000)


def test_cli_override_wins(monkeypatch, mint):
    monkeypatch.setenv("TOKEN_MINT", mint)
    monkeypatch.setenv("TREASURY_SECRET", "[1]")
    monkeypatch.setenv("RPC_URL", "http://env.rpc")
    assert Settings.from_env(rpc_url_override="http://cli.rpc").rpc_url == "http://cli.rpc"


def test_missing_mint():
    with pytest.raises(ConfigError) as exc:
        Settings.from_env()
    assert exc.value.code == "SERVER_MISCONFIGURED"


def test_missing_secret_has_no_default(monkeypatch, mint):
    monkeypatch.setenv("TOKEN_MINT", mint)
    with pytest.raises(ConfigError):
        Settings.from_env()


@pytest.mark.parametrize(
    "name,value",
    [("TOKEN_DECIMALS", "six"), ("CLAIM_AMOUNT_BASE_UNITS", "0"), ("RPC_TIMEOUT", "soon")],
)
def test_bad_numbers(monkeypatch, mint, name, value):
    monkeypatch.setenv("TOKEN_MINT", mint)
    monkeypatch.setenv("TREASURY_SECRET", "[1]")
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        Settings.from_env()
