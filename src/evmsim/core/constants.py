"""
evmsim Constants

This module contains the magic numbers of the pinned EVM rule set, organized
by category.

The execution rules are pinned to Cancun (Dencun) without blob
transactions. Every value marked [RULESET] comes from the corresponding EIP
and changing it changes execution results.
"""

from typing import Final

# =============================================================================
# WORD SIZES
# =============================================================================

WORD_SIZE: Final[int] = 32
UINT256_CEILING: Final[int] = 2**256
UINT256_MAX: Final[int] = 2**256 - 1
UINT160_MAX: Final[int] = 2**160 - 1
ADDRESS_BYTES: Final[int] = 20

# =============================================================================
# EXECUTION LIMITS [RULESET]
# =============================================================================

RULESET_NAME: Final[str] = "cancun"
MAX_STACK_DEPTH: Final[int] = 1024
MAX_CALL_DEPTH: Final[int] = 1024
MAX_CODE_SIZE: Final[int] = 24576  # EIP-170
MAX_INITCODE_SIZE: Final[int] = 49152  # EIP-3860 (2 * MAX_CODE_SIZE)
MAX_NONCE: Final[int] = 2**64 - 1  # EIP-2681
MAX_MEMORY_SIZE: Final[int] = 32 * 1024 * 1024  # Simulation guard, far above gas-reachable sizes
MAX_REFUND_QUOTIENT: Final[int] = 5  # EIP-3529
CALL_GAS_RETENTION_DIVISOR: Final[int] = 64  # EIP-150 "all but one 64th"
BLOCKHASH_WINDOW: Final[int] = 256

# =============================================================================
# TRANSACTION GAS [RULESET]
# =============================================================================

TX_BASE_GAS: Final[int] = 21000
TX_CREATE_GAS: Final[int] = 32000
TX_DATA_ZERO_GAS: Final[int] = 4
TX_DATA_NONZERO_GAS: Final[int] = 16  # EIP-2028
INITCODE_WORD_GAS: Final[int] = 2  # EIP-3860

# =============================================================================
# OPCODE GAS TIERS [RULESET]
# =============================================================================

GAS_ZERO: Final[int] = 0
GAS_JUMPDEST: Final[int] = 1
GAS_BASE: Final[int] = 2
GAS_VERY_LOW: Final[int] = 3
GAS_LOW: Final[int] = 5
GAS_MID: Final[int] = 8
GAS_HIGH: Final[int] = 10
GAS_BLOCKHASH: Final[int] = 20
GAS_EXP: Final[int] = 10
GAS_EXP_BYTE: Final[int] = 50
GAS_KECCAK256: Final[int] = 30
GAS_KECCAK256_WORD: Final[int] = 6
GAS_COPY_WORD: Final[int] = 3
GAS_MEMORY_WORD: Final[int] = 3
GAS_MEMORY_QUADRATIC_DIVISOR: Final[int] = 512
GAS_LOG: Final[int] = 375
GAS_LOG_TOPIC: Final[int] = 375
GAS_LOG_DATA_BYTE: Final[int] = 8
GAS_TRANSIENT: Final[int] = 100  # EIP-1153 TLOAD/TSTORE

# =============================================================================
# STATE ACCESS GAS [RULESET] (EIP-2929 / EIP-2200 / EIP-3529)
# =============================================================================

GAS_WARM_ACCESS: Final[int] = 100
GAS_COLD_ACCOUNT_ACCESS: Final[int] = 2600
GAS_COLD_SLOAD: Final[int] = 2100
GAS_SSTORE_SET: Final[int] = 20000
GAS_SSTORE_RESET: Final[int] = 2900  # 5000 - COLD_SLOAD
GAS_SSTORE_SENTRY: Final[int] = 2300
REFUND_SSTORE_CLEARS: Final[int] = 4800

# =============================================================================
# CALL & CREATE GAS [RULESET]
# =============================================================================

GAS_CALL_VALUE: Final[int] = 9000
GAS_CALL_STIPEND: Final[int] = 2300
GAS_NEW_ACCOUNT: Final[int] = 25000
GAS_CREATE: Final[int] = 32000
GAS_CODE_DEPOSIT_BYTE: Final[int] = 200
GAS_SELFDESTRUCT: Final[int] = 5000

# =============================================================================
# SIMULATION DEFAULTS
# =============================================================================

DEFAULT_CHAIN_ID: Final[int] = 31337
DEFAULT_BLOCK_GAS_LIMIT: Final[int] = 30_000_000
DEFAULT_TX_GAS_LIMIT: Final[int] = 10_000_000
DEFAULT_BLOCK_TIME_SECONDS: Final[int] = 12
DEFAULT_GENESIS_TIMESTAMP: Final[int] = 1_700_000_000
DEFAULT_MAX_SNAPSHOTS: Final[int] = 1024
ADMIN_AGENT_NAME: Final[str] = "admin"
ADMIN_AGENT_ADDRESS: Final[str] = "0x" + "0" * 39 + "1"
