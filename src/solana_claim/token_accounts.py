from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional, Protocol

import base58

from .errors import LedgerError
from .project_constants import TOKEN_PROGRAM_ID
from .rpc import AccountInfo

TOKEN_ACCOUNT_LEN = 165


@dataclass(frozen=True)
class TokenAccount:
    address: str
    mint: str
    owner: str
    amount: int


class AccountReader(Protocol):
    def get_account_info(self, address: str) -> Optional[AccountInfo]: ...


def parse_token_account(address: str, account_data: bytes) -> TokenAccount | None:
    """
    Standard token account layout.
    Mint(0-32) | Owner(32-64) | Amount(64-72)
    """
    if len(account_data) < 72:
        return None

    mint = base58.b58encode(account_data[0:32]).decode("ascii")
    owner = base58.b58encode(account_data[32:64]).decode("ascii")
    amount = struct.unpack("<Q", account_data[64:72])[0]
    return TokenAccount(address=address, mint=mint, owner=owner, amount=amount)


def encode_token_account(mint: bytes, owner: bytes, amount: int) -> bytes:
    """Inverse of parse_token_account; the remaining fields are left zeroed."""
    head = mint + owner + struct.pack("<Q", amount)
    return head + bytes(TOKEN_ACCOUNT_LEN - len(head))


def read_token_account(rpc: AccountReader, address: str) -> TokenAccount | None:
    """
    Returns None when the account does not exist yet.

    Transport errors propagate from the reader; an existing account that is
    not an SPL token account is a LedgerError, never "absent".
    """
    info = rpc.get_account_info(address)
    if info is None:
        return None
    if info.owner != TOKEN_PROGRAM_ID:
        raise LedgerError(f"Account {address} is not owned by the token program")
    parsed = parse_token_account(address, info.data)
    if parsed is None:
        raise LedgerError(f"Account {address} has malformed token account data")
    return parsed
