# dexarb/costs.py
import asyncio
import logging
import math
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import CostEstimationError
from .interfaces import with_timeout
from .models import CostBreakdown, Venue
from .pool_fees import PoolFeeReader
from .pricing import SettlementPriceChain
from .rpc import LAMPORTS_PER_SOL, SolanaRpc

FEE_RATE_DENOMINATOR = Decimal(1_000_000)


def priority_fee_sample(fees: List[int]) -> int:
    """Micro-lamports per CU taken at the 0.75 index of the descending-sorted samples."""
    if not fees:
        raise CostEstimationError("no prioritization fee samples")
    ranked = sorted(fees, reverse=True)
    idx = min(math.floor(len(ranked) * 0.75), len(ranked) - 1)
    return ranked[idx]


def pool_fee_cost(amount_in: Decimal, rates_ppm: Sequence[int]) -> Decimal:
    """Venue fees on one round trip. Display only; quotes already include them."""
    rate = sum(Decimal(r) for r in rates_ppm) / FEE_RATE_DENOMINATOR
    return Decimal(amount_in) * rate


class RpcCostEstimator:
    """
    Gas for a two-swap round trip, priced in USD through the settlement-asset
    rate. Any sampling failure collapses to the configured static estimate.
    """
    def __init__(self, rpc: SolanaRpc, prices: SettlementPriceChain, venues: Sequence[Venue],
                 cfg: Dict, logger: logging.Logger, timeout: float = 5.0,
                 fee_reader: Optional[PoolFeeReader] = None):
        self.rpc = rpc
        self.prices = prices
        self.venues = list(venues)
        self.logger = logger
        self.timeout = timeout
        self.fee_reader = fee_reader
        self.fallback_sol = Decimal(str(cfg['fallback_gas_sol']))
        self.cu_per_swap = Decimal(cfg['compute_units_per_swap'])
        self.lamports_per_signature = Decimal(cfg['lamports_per_signature'])
        self.swaps = Decimal(cfg['swaps_per_round_trip'])

    def native_estimate(self, fees: List[int]) -> Tuple[Decimal, Decimal]:
        """(network SOL, priority SOL) for the whole round trip."""
        fee_per_cu = Decimal(priority_fee_sample(fees))
        priority_lamports = self.cu_per_swap * fee_per_cu / Decimal(1_000_000)
        network = self.swaps * self.lamports_per_signature / LAMPORTS_PER_SOL
        priority = self.swaps * priority_lamports / LAMPORTS_PER_SOL
        floor = self.fallback_sol / 2
        if network + priority < floor:
            network = floor - priority
        return network, priority

    async def _sample(self) -> Tuple[Decimal, Decimal, bool]:
        try:
            fees = await with_timeout(
                self.rpc.get_recent_prioritization_fees(CostEstimationError),
                self.timeout, CostEstimationError, "prioritization fee sampling",
            )
            network, priority = self.native_estimate(fees)
            return network, priority, False
        except CostEstimationError as e:
            self.logger.warning(f"Gas estimate fell back to {self.fallback_sol} SOL: {e}")
            return self.fallback_sol, Decimal(0), True

    async def _fee_rates(self) -> List[int]:
        configured = [v.fee_rate_ppm for v in self.venues]
        if self.fee_reader is None:
            return configured
        try:
            return await with_timeout(
                self.fee_reader.fee_rates(self.venues), self.timeout, CostEstimationError, "pool fee lookup",
            )
        except CostEstimationError as e:
            self.logger.warning(f"Pool fee rates fell back to config: {e}")
            return configured

    async def get_cost_breakdown(self, amount_in: Decimal) -> CostBreakdown:
        (network_sol, priority_sol, is_fallback), rate, fee_rates = await asyncio.gather(
            self._sample(), self.prices.get_price(), self._fee_rates()
        )
        network_usd = network_sol * rate
        priority_usd = priority_sol * rate
        return CostBreakdown(
            network_cost=network_usd,
            priority_cost=priority_usd,
            pool_fee_cost=pool_fee_cost(amount_in, fee_rates),
            total_cost=network_usd + priority_usd,
            network_native=network_sol,
            priority_native=priority_sol,
            is_fallback=is_fallback,
        )
