"""
Shared data types for Agent Fleet Bot.

Centralized dataclasses and enums used across all modules. Market values
(prices, volumes, reserves) are Decimal in MON; settlement amounts
(token amounts, cost basis, amount in/out) are integer wei.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Strategy(Enum):
    ALPHA_HUNTER = "alpha_hunter"  # 2-15 min old tokens with volume proof
    DIAMOND_HANDS = "diamond_hands"  # Established, broad holder base
    SWING_TRADER = "swing_trader"  # Liquid tokens on an upswing
    DEGEN_APE = "degen_ape"  # Meme names + pumps
    VOLUME_WATCHER = "volume_watcher"  # Volume magnitude
    TREND_FOLLOWER = "trend_follower"  # Multi-timeframe alignment
    CONTRARIAN = "contrarian"  # Dip buying
    SNIPER = "sniper"  # First minutes after launch


class Regime(Enum):
    BULL = "bull"
    BEAR = "bear"
    SIDEWAYS = "sideways"


class Crossover(Enum):
    BULLISH = "bullish"  # short EMA > long EMA * 1.01
    BEARISH = "bearish"  # short EMA < long EMA * 0.99
    NEUTRAL = "neutral"


class VolumeTrend(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class Concentration(Enum):
    HIGH = "high"
    MODERATE = "moderate"
    DISTRIBUTED = "distributed"


class MomentumAction(Enum):
    HOLD = "HOLD"
    SELL_DEMAND_SPIKE = "SELL_DEMAND_SPIKE"
    SELL_DEAD_TOKEN = "SELL_DEAD_TOKEN"
    SELL_MOMENTUM_DYING = "SELL_MOMENTUM_DYING"


class MomentumState(Enum):
    ACCELERATING = "ACCELERATING"
    STABLE = "STABLE"
    DYING = "DYING"
    DEAD = "DEAD"


class TradeType(Enum):
    BUY = "buy"
    SELL = "sell"


class AdvisoryAction(Enum):
    BUY = "BUY"
    SKIP = "SKIP"
    SELL = "SELL"  # accepted from the model; never opens a position


class CycleStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class AgentLogType(Enum):
    DECISION = "decision"
    TRADE = "trade"
    ERROR = "error"
    LEARNING = "learning"
    ADVISORY = "advisory"


# ---------------------------------------------------------------------------
# Market Data Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MarketSnapshot:
    price: Decimal  # MON per token
    reserve_mon: Decimal
    volume_mon: Decimal  # 24h
    price_change_1h: Decimal  # percent
    price_change_24h: Decimal  # percent
    holder_count: int
    total_supply: Decimal
    graduated: bool  # migrated off the bonding curve


@dataclass(frozen=True)
class TokenSummary:
    address: str
    symbol: str
    name: str
    created_at: int  # unix seconds
    creator: str = ""
    market: MarketSnapshot | None = None


@dataclass(frozen=True)
class PricePoint:
    timestamp: int
    price: Decimal
    volume: Decimal


@dataclass(frozen=True)
class HolderEntry:
    address: str
    balance: Decimal
    percentage: Decimal  # share of supply, 0-100


# ---------------------------------------------------------------------------
# Analysis Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TechnicalIndicators:
    rsi: Decimal | None = None
    sma_short: Decimal | None = None
    sma_long: Decimal | None = None
    ema_short: Decimal | None = None
    ema_long: Decimal | None = None
    crossover: Crossover = Crossover.NEUTRAL
    vwap: Decimal | None = None
    price_vs_vwap_pct: Decimal | None = None
    momentum: Decimal | None = None  # rate of change, percent
    volatility: Decimal | None = None  # sample stdev of simple returns
    volume_trend: VolumeTrend = VolumeTrend.STABLE


@dataclass(frozen=True)
class HolderAnalysis:
    holder_count: int
    top1_pct: Decimal
    top5_pct: Decimal
    top10_pct: Decimal
    whale_count: int  # holders above 5%
    micro_holder_count: int  # holders below 0.1%
    has_large_whale: bool  # top holder above 20%
    concentration: Concentration


@dataclass(frozen=True)
class RegimeAnalysis:
    regime: Regime
    confidence: int  # 0-100
    avg_change_1h: Decimal
    avg_change_24h: Decimal
    positive_pct: Decimal  # breadth
    avg_volume_mon: Decimal
    new_token_count: int
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class QualityCheck:
    passed: bool
    score: int
    reason: str = ""


@dataclass(frozen=True)
class ScoreAdjustment:
    delta: int
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenContext:
    """Everything a scorer may look at for one token."""

    token: TokenSummary
    age_seconds: int
    curve_progress_bps: int | None = None  # 0-10000
    technicals: TechnicalIndicators | None = None
    holders: HolderAnalysis | None = None
    regime: RegimeAnalysis | None = None

    @property
    def market(self) -> MarketSnapshot | None:
        return self.token.market


@dataclass(frozen=True)
class MarketSignal:
    token_address: str
    symbol: str
    name: str
    score: int  # 0-100
    reasons: tuple[str, ...]
    metrics: dict[str, Any] = field(default_factory=dict)
    raw_score: int | None = None  # before clamping; ranking tie-break


# ---------------------------------------------------------------------------
# Agent / Position Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentRecord:
    id: int
    name: str
    strategy: Strategy
    vault_index: int
    risk_level: str = "moderate"
    personality: str = ""
    active: bool = True
    capital_wei: int = 0
    realized_pnl_wei: int = 0
    reward_balance_wei: int = 0
    created_at: int = 0


@dataclass(frozen=True)
class Holding:
    agent_id: int
    token_address: str
    symbol: str
    amount: int  # token units, >= 0
    cost_basis: int  # wei
    current_value: int = 0  # wei
    unrealized_pnl_pct: Decimal = Decimal("0")
    acquired_at: int = 0


@dataclass
class TrailingStopState:
    peak_pnl_pct: Decimal
    last_peak_update: float


@dataclass(frozen=True)
class TokenClaim:
    token_address: str  # lowercase
    agent_id: int
    agent_name: str
    reason: str
    claimed_at: float
    expires_at: float


@dataclass(frozen=True)
class DeadTokenEntry:
    token_address: str
    symbol: str
    detected_at: float
    holder_growth: int
    reason: str


@dataclass(frozen=True)
class Trade:
    agent_id: int
    token_address: str
    symbol: str
    trade_type: TradeType
    amount_in: int  # wei for buys, token units for sells
    amount_out: int  # token units for buys, wei for sells
    price: Decimal
    reason: str
    signal_json: str | None = None
    pnl_wei: int | None = None  # sells only
    tx_ref: str = ""
    created_at: int = 0
    id: int | None = None


@dataclass(frozen=True)
class PnLSnapshot:
    agent_id: int
    realized_pnl_wei: int
    capital_wei: int
    timestamp: int


@dataclass(frozen=True)
class AgentLogEntry:
    agent_id: int
    log_type: AgentLogType
    message: str
    data_json: str | None = None
    created_at: int = 0


@dataclass(frozen=True)
class SellDecision:
    should_sell: bool
    fraction: Decimal  # 0-1 of the current amount
    reason: str
    exit_type: str = ""  # profit_target, stop_loss, trailing_stop, time_exit, momentum


# ---------------------------------------------------------------------------
# Learning Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LearningProfile:
    agent_id: int
    total_trades: int
    wins: int
    losses: int
    win_rate: Decimal
    net_pnl_mon: Decimal
    confidence_threshold: int
    position_size_mon: Decimal
    max_positions: int
    winning_patterns: tuple[str, ...] = ()
    losing_patterns: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Momentum Monitor Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntrySnapshot:
    token_address: str
    symbol: str
    entry_time: float
    holders: int
    volume_mon: Decimal
    price: Decimal
    curve_progress_bps: int | None = None


@dataclass(frozen=True)
class MomentumSnapshot:
    timestamp: float
    holders: int
    volume_mon: Decimal
    price: Decimal


@dataclass(frozen=True)
class MomentumResult:
    action: MomentumAction
    confidence: int
    reason: str
    state: MomentumState = MomentumState.STABLE
    holder_growth: int = 0
    price_change_pct: Decimal = Decimal("0")


# ---------------------------------------------------------------------------
# Advisory / Execution Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AdvisoryRequest:
    agent_name: str
    strategy: Strategy
    personality: str
    signal: MarketSignal
    holdings_count: int
    max_holdings: int
    learning_context: str = ""


@dataclass(frozen=True)
class AdvisoryDecision:
    action: AdvisoryAction
    confidence: int  # 0-100
    reasoning: str
    target_amount_mon: Decimal | None = None
    narrative: str = ""
    risks: tuple[str, ...] = ()


@dataclass(frozen=True)
class SettlementResult:
    tx_ref: str
    amount_in: int
    amount_out: int
    token_address: str


@dataclass(frozen=True)
class SafetyCheck:
    can_proceed: bool
    reason: str


@dataclass(frozen=True)
class AgentCycleResult:
    agent_name: str
    status: CycleStatus
    error: str | None = None
