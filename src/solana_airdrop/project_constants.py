"""
Project-wide defaults for the token airdrop endpoint.

The amount and symbol can be overridden from the environment; the program ids
are fixed by the Solana network.
"""

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

# Whole tokens sent per claim
DEFAULT_AIRDROP_AMOUNT = 25_000
DEFAULT_TOKEN_SYMBOL = "DUCK"

MODE_CLAIM_SET = "claim-set"
MODE_BALANCE_CHECK = "balance-check"
AIRDROP_MODES = (MODE_CLAIM_SET, MODE_BALANCE_CHECK)

COMMITMENT = "confirmed"
CONFIRM_TIMEOUT_S = 60.0
CONFIRM_POLL_INTERVAL_S = 1.0
RPC_TIMEOUT_S = 30.0

HELIUS_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"

AIRDROP_ROUTE = "/api/airdrop"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,POST",
    "Access-Control-Allow-Headers": "Content-Type",
}
