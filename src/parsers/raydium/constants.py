"""Raydium AMM v4 + OpenBook market byte layouts and well-known program ids."""

RAYDIUM_AMM_V4_PROGRAM_ID = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
WSOL_MINT = "So11111111111111111111111111111111111111112"

# Instruction tags (first payload byte)
IX_INITIALIZE2 = 1
IX_SWAP_BASE_IN = 9

# Log line emitted by the AMM program when a pool is created
LOG_INITIALIZE2 = "initialize2"

DEFAULT_FEE_RATE = "0.003"

# initialize2 payload, little-endian: (field, offset, struct format)
#   0     discriminator     u8
#   1     nonce             u8
#   2:10  open_time         u64
#   10:18 init_pc_amount    u64  (quote)
#   18:26 init_coin_amount  u64  (base)
INITIALIZE2_LAYOUT: tuple[tuple[str, int, str], ...] = (
    ("discriminator", 0, "<B"),
    ("nonce", 1, "<B"),
    ("open_time", 2, "<Q"),
    ("init_pc_amount", 10, "<Q"),
    ("init_coin_amount", 18, "<Q"),
)
INITIALIZE2_SIZE = 26

# initialize2 account roles → position in the instruction's account list
INITIALIZE2_ACCOUNT_INDEX: dict[str, int] = {
    "program_id": 0,
    "amm_id": 4,
    "amm_authority": 5,
    "amm_open_orders": 6,
    "lp_mint": 7,
    "base_mint": 8,
    "quote_mint": 9,
    "base_vault": 10,
    "quote_vault": 11,
    "target_orders": 13,
    "market_program_id": 15,
    "market_id": 16,
    "deployer": 17,
    "market_base_vault": 18,
    "market_quote_vault": 19,
    "market_authority": 20,
}

# OpenBook/Serum market account: 32-byte sub-account keys
MARKET_EVENT_QUEUE_OFFSET = 245
MARKET_BIDS_OFFSET = 277
MARKET_ASKS_OFFSET = 309
MARKET_MIN_SIZE = MARKET_ASKS_OFFSET + 32  # 341

# AMM pool account: reserves sampled for price (u64 LE)
POOL_BASE_RESERVE_OFFSET = 73
POOL_QUOTE_RESERVE_OFFSET = 81
POOL_MIN_SIZE = POOL_QUOTE_RESERVE_OFFSET + 8  # 89
