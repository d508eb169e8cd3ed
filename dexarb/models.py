# dexarb/models.py
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional
import time


class Strategy(Enum):
    """
    The two round-trip directions over a venue pair.
    A enters on venue 1 and exits on venue 2, B is the mirror.
    """
    A = "A"
    B = "B"

    @property
    def entry_index(self) -> int:
        return 0 if self is Strategy.A else 1

    @property
    def exit_index(self) -> int:
        return 1 if self is Strategy.A else 0


class Leg(Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeStatus(Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class FailureKind(Enum):
    """
    EARLY: leg 1 never filled, no capital exposed.
    PARTIAL: leg 1 filled but leg 2 did not, capital is stuck in the
    intermediate asset and needs manual intervention.
    """
    EARLY = "EARLY"
    PARTIAL = "PARTIAL"


@dataclass(frozen=True, slots=True)
class TokenDescriptor:
    symbol: str
    mint_address: str
    decimals: int


@dataclass(frozen=True, slots=True)
class AssetPair:
    base: TokenDescriptor
    quote: TokenDescriptor

    @property
    def label(self) -> str:
        return f"{self.base.symbol}/{self.quote.symbol}"


@dataclass(frozen=True, slots=True)
class Venue:
    """One liquidity pool for the pair. Addresses are opaque to the engine."""
    id: str
    label: str
    pool_address: str
    dex_label: str
    fee_rate_ppm: int = 0


@dataclass(slots=True)
class Quote:
    """
    A single executable quote. `price` is output-per-input in the requested
    direction. Never cached across evaluation cycles.
    """
    venue: str
    price: Decimal
    output_amount: Decimal
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class CostBreakdown:
    """All values in USD. pool_fee_cost is informational and not part of total_cost."""
    network_cost: Decimal
    priority_cost: Decimal
    pool_fee_cost: Decimal
    total_cost: Decimal
    network_native: Decimal = Decimal(0)
    priority_native: Decimal = Decimal(0)
    is_fallback: bool = False


@dataclass(slots=True)
class BalanceSnapshot:
    quote_amount: Decimal
    base_amount: Decimal
    settlement_amount: Decimal
    settlement_usd_rate: Decimal

    @property
    def total_value(self) -> Decimal:
        return self.quote_amount + self.settlement_amount * self.settlement_usd_rate


@dataclass(slots=True)
class EvaluationResult:
    """One per evaluation cycle; renderers only ever read the latest."""
    amount_in: Decimal
    strategy_net_profit: Dict[Strategy, Optional[Decimal]]
    leg_outputs: Dict[Strategy, Optional[Decimal]]
    pair_prices: Dict[str, Optional[Decimal]]
    costs: CostBreakdown
    balances: Optional[BalanceSnapshot] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def best_strategy(self) -> Optional[Strategy]:
        best = None
        for strategy in Strategy:
            net = self.strategy_net_profit.get(strategy)
            if net is None:
                continue
            if best is None or net > self.strategy_net_profit[best]:
                best = strategy
        return best

    @property
    def best_net(self) -> Optional[Decimal]:
        best = self.best_strategy
        return self.strategy_net_profit[best] if best is not None else None


@dataclass(slots=True)
class TradeOutcome:
    """Structured result of one two-leg attempt, returned by the coordinator."""
    strategy: Strategy
    amount_in: Decimal
    success: bool
    leg1_tx_id: Optional[str] = None
    leg2_tx_id: Optional[str] = None
    net_profit: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def failure_kind(self) -> Optional[FailureKind]:
        if self.success:
            return None
        return FailureKind.PARTIAL if self.leg1_tx_id else FailureKind.EARLY


@dataclass(frozen=True, slots=True)
class TradeRecord:
    """Immutable ledger entry. A FAILED record never carries a net_profit."""
    strategy: Strategy
    leg: Optional[Leg]
    status: TradeStatus
    tx_id: Optional[str]
    input_volume: str
    net_profit: Optional[Decimal] = None
    fail_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.status is TradeStatus.FAILED and self.net_profit is not None:
            raise ValueError("FAILED trade records cannot carry a net profit")

    def to_row(self) -> list:
        return [
            time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime(self.timestamp)),
            self.strategy.value,
            self.leg.value if self.leg else "",
            self.status.value,
            self.failure_kind.value if self.failure_kind else "",
            self.tx_id or "",
            self.input_volume,
            f"{self.net_profit:.6f}" if self.net_profit is not None else "",
            self.fail_reason or "",
        ]
