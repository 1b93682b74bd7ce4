from __future__ import annotations

import os
from dataclasses import dataclass
from dotenv import load_dotenv

from .errors import ConfigError
from .project_constants import (
    DEFAULT_CLAIM_AMOUNT,
    DEFAULT_COMMITMENT,
    DEFAULT_RPC_URL,
    DEFAULT_TOKEN_DECIMALS,
)


def _int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    token_mint: str
    treasury_secret: str | None = None
    treasury_secret_file: str | None = None
    treasury_sol_address: str | None = None
    token_decimals: int = DEFAULT_TOKEN_DECIMALS
    claim_amount: int = DEFAULT_CLAIM_AMOUNT
    lamports_per_token: int | None = None
    commitment: str = DEFAULT_COMMITMENT
    rpc_timeout: float = 30.0

    @staticmethod
    def resolve_rpc_url(rpc_url_override: str | None = None) -> str:
        # If user provides --rpc-url, trust it.
        if rpc_url_override:
            return rpc_url_override

        env_rpc = os.getenv("RPC_URL", "").strip()
        if env_rpc:
            return env_rpc

        helius_key = os.getenv("HELIUS_API_KEY", "").strip()
        if helius_key:
            return f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

        return DEFAULT_RPC_URL

    @staticmethod
    def from_env(rpc_url_override: str | None = None) -> "Settings":
        load_dotenv()

        token_mint = os.getenv("TOKEN_MINT", "").strip()
        if not token_mint:
            raise ConfigError("Missing TOKEN_MINT. Put it in .env or export it.")

        secret = os.getenv("TREASURY_SECRET", "").strip() or None
        secret_file = os.getenv("TREASURY_SECRET_FILE", "").strip() or None
        if not secret and not secret_file:
            raise ConfigError(
                "Missing TREASURY_SECRET (or TREASURY_SECRET_FILE). "
                "Put it in .env or export it."
            )

        decimals = _int_env("TOKEN_DECIMALS", DEFAULT_TOKEN_DECIMALS)
        claim_amount = _int_env("CLAIM_AMOUNT_BASE_UNITS", DEFAULT_CLAIM_AMOUNT)
        if decimals < 0:
            raise ConfigError("TOKEN_DECIMALS must not be negative")
        if claim_amount <= 0:
            raise ConfigError("CLAIM_AMOUNT_BASE_UNITS must be positive")

        timeout_raw = os.getenv("RPC_TIMEOUT", "").strip()
        try:
            rpc_timeout = float(timeout_raw) if timeout_raw else 30.0
        except ValueError:
            raise ConfigError(f"RPC_TIMEOUT must be a number, got {timeout_raw!r}")

        return Settings(
            rpc_url=Settings.resolve_rpc_url(rpc_url_override),
            token_mint=token_mint,
            treasury_secret=secret,
            treasury_secret_file=secret_file,
            treasury_sol_address=os.getenv("TREASURY_SOL_ADDRESS", "").strip() or None,
            token_decimals=decimals,
            claim_amount=claim_amount,
            lamports_per_token=_int_env("LAMPORTS_PER_TOKEN", None),
            commitment=os.getenv("COMMITMENT", "").strip() or DEFAULT_COMMITMENT,
            rpc_timeout=rpc_timeout,
        )
