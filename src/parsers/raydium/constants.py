"""Raydium AMM v4 / OpenBook program constants and on-chain layout offsets."""

RAYDIUM_AMM_PROGRAM_ID = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
OPENBOOK_PROGRAM_ID = "srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX"

# Jupiter aggregator (note the lower-case "bkb"). Pools created through it are skipped.
JUPITER_AMM_ADDRESS = "JUP6bkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

# Native numeraire: wrapped SOL
WSOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

SYSVAR_CLOCK = "SysvarC1ock11111111111111111111111111111111"
SYSVAR_RENT = "SysvarRent111111111111111111111111111111111"
KNOWN_SYSVARS = frozenset({
    SYSVAR_CLOCK,
    SYSVAR_RENT,
    "SysvarRecentB1ockHashes11111111111111111111",
    "SysvarS1otHashes111111111111111111111111111",
    "SysvarStakeHistory1111111111111111111111111",
    "Sysvar1nstructions1111111111111111111111111",
})

# Log lines emitted by the AMM program on pool creation
POOL_CREATION_LOG_MARKERS = ("InitializeInstruction2", "CreatePool")

# Instruction opcodes (first byte of instruction data)
OPCODE_INITIALIZE2 = 1
OPCODE_SWAP_BASE_IN = 9

# initialize2: u8 opcode | u8 nonce | u64 open_time | u64 init_pc | u64 init_coin
INIT2_NONCE_OFFSET = 1
INIT2_OPEN_TIME_OFFSET = 2
INIT2_PC_AMOUNT_OFFSET = 10
INIT2_COIN_AMOUNT_OFFSET = 18
INIT2_DATA_LEN = 26

# AMM v4 pool state account (LiquidityStateV4): 752 bytes, all u64 LE unless noted
AMM_STATE_SIZE = 752
AMM_STATUS_OFFSET = 0
AMM_NONCE_OFFSET = 8
AMM_BASE_DECIMAL_OFFSET = 32
AMM_QUOTE_DECIMAL_OFFSET = 40
AMM_POOL_OPEN_TIME_OFFSET = 224
AMM_WITHDRAW_QUEUE_OFFSET = 624  # Pubkey
AMM_LP_VAULT_OFFSET = 656  # Pubkey
AMM_LP_RESERVE_OFFSET = 720

# OpenBook / Serum v3 market account ("serum" padding + MarketState)
MARKET_VAULT_SIGNER_NONCE_OFFSET = 45  # u64
MARKET_BASE_VAULT_OFFSET = 117
MARKET_QUOTE_VAULT_OFFSET = 165
MARKET_EVENT_QUEUE_OFFSET = 253
MARKET_BIDS_OFFSET = 285
MARKET_ASKS_OFFSET = 317
MARKET_MIN_SIZE = MARKET_ASKS_OFFSET + 32  # 349

PUBKEY_LEN = 32

# SPL token account: mint(32) | owner(32) | amount(u64)
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64
