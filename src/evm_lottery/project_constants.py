"""
Chain-level constants for the Base mainnet holder snapshot.

These values define which contracts are read and how the provider is paced.
Changing the exclusions changes eligibility and MUST be publicly announced.
"""

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_TOPIC = "0x" + "0" * 64

# Uniswap V3 NonfungiblePositionManager (Base)
POSITION_MANAGER = "0x03a520b32c04bf3beef7beb72e919cf822ed34f1"

# Revert auto-compounder holds positions on behalf of others
REVERT_AUTOCOMPOUNDER = "0x83681c14770b44361e21faf91d8325423365ea5c"
DEFAULT_EXCLUDED_HOLDERS = (REVERT_AUTOCOMPOUNDER,)

# keccak("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
# keccak("Mint(address,address,int24,int24,uint128,uint256,uint256)")
POOL_MINT_TOPIC = "0x7a53080ba414158be7ec69b987b5fb7d07dee101fe85488f0853ae16239d0bde"

# 4-byte selectors
SLOT0_SELECTOR = "0x3850c7bd"
POSITIONS_SELECTOR = "0x99fbab88"

# Provider pacing (seconds)
DELAY_SHORT = 0.075
DELAY_LONG = 0.25
DELAY_ERROR = 0.5
MAX_RETRIES = 3

# Position-manager log scan window (blocks per eth_getLogs call)
BLOCK_CHUNK = 2000
# eth_call items per JSON-RPC batch
CALL_BATCH_SIZE = 100

# Legacy magnitude threshold for unscaled amounts
WEI_THRESHOLD = 10**18
