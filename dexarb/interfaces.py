# dexarb/interfaces.py
"""
Collaborator contracts consumed by the engine.
Venue SDKs, RPC clients and the paper wallet all plug in behind these.
"""
import asyncio
from decimal import Decimal
from typing import Awaitable, Protocol, Type, TypeVar, runtime_checkable

from .errors import ArbError
from .models import BalanceSnapshot, CostBreakdown, Quote, TokenDescriptor, Venue

T = TypeVar("T")


@runtime_checkable
class Quoter(Protocol):
    async def quote(self, amount: Decimal, is_buy: bool) -> Quote:
        """
        Quote `amount` of input. is_buy=True spends the quote asset for base,
        False sells base for the quote asset. Raises QuoteError.
        """
        ...


@runtime_checkable
class CostEstimator(Protocol):
    async def get_cost_breakdown(self, amount_in: Decimal) -> CostBreakdown:
        """Never raises; falls back to a static estimate internally."""
        ...


@runtime_checkable
class BalanceProvider(Protocol):
    async def get_balances(self) -> BalanceSnapshot:
        ...

    async def get_token_balance(self, token: TokenDescriptor) -> Decimal:
        """Realized on-chain holding of one token. Raises BalanceQueryError."""
        ...


@runtime_checkable
class Swapper(Protocol):
    async def swap(self, venue: Venue, input_token: TokenDescriptor, amount: Decimal) -> str:
        """Execute one swap leg and return its transaction id. Raises SwapError."""
        ...


async def with_timeout(aw: Awaitable[T], seconds: float, error_cls: Type[ArbError], what: str) -> T:
    """Await a collaborator call; a timeout is reported as that call failing."""
    try:
        return await asyncio.wait_for(aw, timeout=seconds)
    except asyncio.TimeoutError:
        raise error_cls(f"{what} timed out after {seconds:g}s") from None
