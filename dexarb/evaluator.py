# dexarb/evaluator.py
import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import BalanceQueryError, QuoteError
from .interfaces import BalanceProvider, CostEstimator, Quoter, with_timeout
from .models import BalanceSnapshot, EvaluationResult, Quote, Strategy, Venue

# --- PROFIT MODEL ---
# Quoted outputs already net out venue trading fees, so total_cost only
# carries network + priority fees. Pool fees are reported, never subtracted.


def net_profit(leg_output: Decimal, amount_in: Decimal, total_cost: Decimal) -> Decimal:
    return leg_output - amount_in - total_cost


def min_profit_threshold(amount_in: Decimal, min_profit_percent: Decimal) -> Decimal:
    return amount_in * (Decimal(min_profit_percent) / Decimal(100))


def select_strategy(nets: Dict[Strategy, Optional[Decimal]]) -> Optional[Strategy]:
    """Larger net wins; an exact tie goes to A. None counts as minus infinity."""
    net_a = nets.get(Strategy.A)
    net_b = nets.get(Strategy.B)
    if net_a is None and net_b is None:
        return None
    if net_b is None:
        return Strategy.A
    if net_a is None:
        return Strategy.B
    return Strategy.B if net_b > net_a else Strategy.A


def should_execute(best_net: Optional[Decimal], amount_in: Decimal, min_profit_percent: Decimal) -> bool:
    if best_net is None:
        return False
    return best_net > min_profit_threshold(amount_in, min_profit_percent)


def break_even_volume(
    leg_outputs: Dict[Strategy, Optional[Decimal]], amount_in: Decimal, total_cost: Decimal
) -> Optional[Decimal]:
    """
    Smallest input volume at which the current gross spread covers the cost.
    Advisory only: never feeds the execution decision.
    """
    volumes = []
    for output in leg_outputs.values():
        if output is None:
            continue
        gross = output - amount_in
        if gross > 0:
            volumes.append(total_cost * amount_in / gross)
    return min(volumes) if volumes else None


class Evaluator:
    """
    Fetches both round-trip quote chains in parallel and prices them.
    Holds no state between cycles.
    """
    def __init__(
        self,
        venues: Sequence[Venue],
        quoters: Sequence[Quoter],
        cost_estimator: CostEstimator,
        balance_provider: BalanceProvider,
        logger: logging.Logger,
        min_profit_percent: Decimal,
        quote_timeout: float = 5.0,
        balance_timeout: float = 5.0,
    ):
        if len(venues) != 2 or len(quoters) != 2:
            raise ValueError("Spatial arbitrage needs exactly two venues and two quoters")
        self.venues: List[Venue] = list(venues)
        self.quoters: List[Quoter] = list(quoters)
        self.costs = cost_estimator
        self.balances = balance_provider
        self.logger = logger
        self.min_profit_percent = Decimal(min_profit_percent)
        self.quote_timeout = quote_timeout
        self.balance_timeout = balance_timeout

    async def _quote(self, index: int, amount: Decimal, is_buy: bool) -> Quote:
        venue = self.venues[index]
        side = "buy" if is_buy else "sell"
        q = await with_timeout(
            self.quoters[index].quote(amount, is_buy),
            self.quote_timeout, QuoteError, f"{venue.label} {side} quote",
        )
        if q.price <= 0 or q.output_amount <= 0:
            raise QuoteError(f"{venue.label} returned a non-positive {side} quote")
        return q

    async def _quote_chain(self, strategy: Strategy, amount_in: Decimal) -> Tuple[Optional[Quote], Optional[Quote]]:
        """Leg 2 is quoted on leg 1's output, so the two calls are sequential."""
        leg1 = None
        try:
            leg1 = await self._quote(strategy.entry_index, amount_in, True)
            leg2 = await self._quote(strategy.exit_index, leg1.output_amount, False)
            return leg1, leg2
        except QuoteError as e:
            self.logger.warning(f"Strategy {strategy.value} skipped this cycle: {e}")
            return leg1, None

    async def _fetch_balances(self) -> Optional[BalanceSnapshot]:
        try:
            return await with_timeout(
                self.balances.get_balances(), self.balance_timeout, BalanceQueryError, "balance query"
            )
        except BalanceQueryError as e:
            self.logger.warning(f"Balance snapshot unavailable: {e}")
            return None

    async def evaluate(self, amount_in: Decimal) -> EvaluationResult:
        amount_in = Decimal(amount_in)
        costs, balances, chain_a, chain_b = await asyncio.gather(
            self.costs.get_cost_breakdown(amount_in),
            self._fetch_balances(),
            self._quote_chain(Strategy.A, amount_in),
            self._quote_chain(Strategy.B, amount_in),
        )

        nets: Dict[Strategy, Optional[Decimal]] = {}
        outputs: Dict[Strategy, Optional[Decimal]] = {}
        prices: Dict[str, Optional[Decimal]] = {v.id: None for v in self.venues}

        for strategy, (leg1, leg2) in ((Strategy.A, chain_a), (Strategy.B, chain_b)):
            if leg1 is not None:
                prices[self.venues[strategy.entry_index].id] = leg1.price
            if leg2 is None:
                nets[strategy] = None
                outputs[strategy] = None
                continue
            outputs[strategy] = leg2.output_amount
            nets[strategy] = net_profit(leg2.output_amount, amount_in, costs.total_cost)

        if all(n is None for n in nets.values()):
            self.logger.debug("No strategy could be priced this cycle")

        return EvaluationResult(
            amount_in=amount_in,
            strategy_net_profit=nets,
            leg_outputs=outputs,
            pair_prices=prices,
            costs=costs,
            balances=balances,
        )

    def decide(self, result: EvaluationResult) -> Optional[Strategy]:
        """The strategy to fire, or None. Does not look at the in-flight guard."""
        strategy = select_strategy(result.strategy_net_profit)
        if strategy is None:
            return None
        best_net = result.strategy_net_profit[strategy]
        if not should_execute(best_net, result.amount_in, self.min_profit_percent):
            return None
        return strategy
