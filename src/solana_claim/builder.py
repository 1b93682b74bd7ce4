from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional, Protocol

from .addresses import decode_address, get_associated_token_address
from .project_constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    BLOCKHASH_COMMITMENT,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from .rpc import AccountInfo, LatestBlockhash
from .signer import Signer
from .transaction import AccountMeta, Instruction, Transaction

log = logging.getLogger("builder")

# SPL Token instruction tag
TOKEN_TRANSFER = 3


class LedgerReader(Protocol):
    def get_account_info(self, address: str) -> Optional[AccountInfo]: ...

    def get_latest_blockhash(self, commitment: str = ...) -> LatestBlockhash: ...


def create_associated_token_account_instruction(
    payer: str, associated_account: str, owner: str, mint: str
) -> Instruction:
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=(
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(associated_account, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ),
        data=b"",
    )


def transfer_instruction(source: str, destination: str, owner: str, amount: int) -> Instruction:
    if amount <= 0 or amount >= 2**64:
        raise ValueError(f"Transfer amount out of range: {amount}")
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        accounts=(
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
        ),
        data=struct.pack("<BQ", TOKEN_TRANSFER, amount),
    )


@dataclass(frozen=True)
class BuiltClaim:
    transaction: Transaction
    encoded: str
    created_account: bool
    last_valid_block_height: int


class ClaimTransactionBuilder:
    """
    Builds the claim transaction: [create claimant ATA] + transfer, fee payer
    is the claimant, signed by the treasury only.

    Only instruction lists assembled here are ever signed with the treasury
    key.
    """

    def __init__(self, rpc: LedgerReader, token_mint: str) -> None:
        self.rpc = rpc
        self.token_mint = token_mint

    def instructions_for(
        self, claimant: str, treasury: str, amount: int, claimant_account_exists: bool
    ) -> List[Instruction]:
        claimant_ata = get_associated_token_address(claimant, self.token_mint)
        treasury_ata = get_associated_token_address(treasury, self.token_mint)

        instructions: List[Instruction] = []
        if not claimant_account_exists:
            # claimant pays its own account rent
            instructions.append(
                create_associated_token_account_instruction(
                    claimant, claimant_ata, claimant, self.token_mint
                )
            )
        instructions.append(transfer_instruction(treasury_ata, claimant_ata, treasury, amount))
        return instructions

    def build(
        self,
        claimant: str,
        amount: int,
        signer: Signer,
        claimant_account_exists: bool | None = None,
    ) -> BuiltClaim:
        decode_address(claimant)
        if amount <= 0:
            raise ValueError(f"Claim amount must be positive, got {amount}")

        exists = claimant_account_exists
        if exists is None:
            claimant_ata = get_associated_token_address(claimant, self.token_mint)
            exists = self.rpc.get_account_info(claimant_ata) is not None
        instructions = self.instructions_for(claimant, signer.public_key, amount, exists)

        # Fetched per build; a blockhash is only valid for ~150 blocks.
        latest = self.rpc.get_latest_blockhash(BLOCKHASH_COMMITMENT)
        tx = Transaction.new(claimant, instructions, latest.blockhash)
        tx.partial_sign(signer)

        encoded = tx.to_base64(require_all_signatures=False)
        log.info(
            "Built claim tx for %s: amount=%d create_ata=%s blockhash=%s",
            claimant,
            amount,
            not exists,
            latest.blockhash,
        )
        return BuiltClaim(
            transaction=tx,
            encoded=encoded,
            created_account=not exists,
            last_valid_block_height=latest.last_valid_block_height,
        )
