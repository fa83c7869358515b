"""
Shared constants for Agent Fleet Bot.

Chain addresses, numeric constants, and default values used across all modules.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

WAD = Decimal("1_000_000_000_000_000_000")  # 1e18 (MON and token amounts)
BPS_DENOMINATOR = 10_000
CURVE_PROGRESS_MAX_BPS = 10_000

SCORE_MIN = 0
SCORE_MAX = 100

# ---------------------------------------------------------------------------
# Monad Mainnet
# ---------------------------------------------------------------------------

MONAD_CHAIN_ID = 143
MONAD_RPC_URL = "https://rpc.monad.xyz"
NADFUN_API_URL = "https://api.nadapp.net"

LENS_ADDRESS = "0x7e78A8DE94f21804F7a17F4E8BF9EC2c872187ea"
BONDING_CURVE_ROUTER = "0x6F6B8F1a20703309951a5127c45B49b1CD981A22"
REWARD_TOKEN_ADDRESS = "0xf70ED26B7c425481b365CD397E6b425805B27777"  # MKEY

# ---------------------------------------------------------------------------
# Coordination
# ---------------------------------------------------------------------------

DEFAULT_CLAIM_TTL_SECONDS = 300
MAX_CLAIM_TTL_SECONDS = 600
DEAD_TOKEN_TTL_SECONDS = 3600

# ---------------------------------------------------------------------------
# Default Trading Values
# ---------------------------------------------------------------------------

DEFAULT_DRY_RUN = True
DEFAULT_SIGNAL_THRESHOLD = 75
DEFAULT_MAX_HOLDINGS = 2
DEFAULT_MIN_TRADE_MON = Decimal("0.5")
DEFAULT_SLIPPAGE_BPS = 500
DEFAULT_DEADLINE_SECONDS = 300
DEFAULT_MAX_POSITION_PCT = Decimal("0.15")
DEFAULT_CYCLE_INTERVAL_SECONDS = 60
DEFAULT_ADVISORY_FALLBACK_SCORE = 85
