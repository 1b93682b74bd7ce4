"""
Fixed program ids and defaults for the token claim service.

Program ids are Solana mainnet constants. Deployment-specific values
(mint, treasury, amounts) come from the environment, see config.py.
"""

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

# Balance checks and confirmation wait use the same level.
DEFAULT_COMMITMENT = "confirmed"
# Blockhash for new transactions.
BLOCKHASH_COMMITMENT = "finalized"

# Pump.fun style tokens use 6 decimals
DEFAULT_TOKEN_DECIMALS = 6

# One base unit per free claim unless configured otherwise
DEFAULT_CLAIM_AMOUNT = 1

EXPLORER_TX_URL = "https://explorer.solana.com/tx/{signature}?cluster=mainnet-beta"
