"""
Bitcoin protocol and wallet policy constants.

Amounts are in satoshis, sizes in bytes.
"""

from __future__ import annotations

SATOSHIS_PER_BITCOIN = 100_000_000

# Block height used for transactions that are not yet in a block
TX_UNCONFIRMED = 0x7FFFFFFF

# Lock times at or above this value are unix timestamps, below are block heights
TX_MAX_LOCK_HEIGHT = 500_000_000

# Largest transaction the wallet treats as standard
TX_MAX_SIZE = 100_000

TX_VERSION = 1
TXIN_SEQUENCE = 0xFFFFFFFF
SIGHASH_ALL = 0x01

# Size estimates for unsigned transactions
TX_INPUT_SIZE = 148  # outpoint + compressed pubkey P2PKH scriptSig + sequence
TX_OUTPUT_SIZE = 34  # amount + P2PKH scriptPubKey

# Linear per-kilobyte fee model
TX_FEE_PER_KB = 1000
MIN_FEE_PER_KB = TX_FEE_PER_KB

# Standard P2PKH dust limit in Bitcoin Core: 3 * fee_per_kb * (input + output) / 1000
STANDARD_DUST_LIMIT = 546
TX_MIN_OUTPUT_AMOUNT = STANDARD_DUST_LIMIT

# Priority threshold for free transactions (1 btc * 144 blocks / 250 bytes)
TX_FREE_MIN_PRIORITY = 57_600_000

# Transactions are allowed this much wall-clock slack before counting as postdated
TX_POSTDATE_GRACE_SECONDS = 10 * 60

# Number of unused addresses kept ahead of the last used one on each chain
SEQUENCE_GAP_LIMIT_EXTERNAL = 10
SEQUENCE_GAP_LIMIT_INTERNAL = 5
