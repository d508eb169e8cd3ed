import asyncio
import logging
from decimal import Decimal

import pytest

from dexarb.errors import BalanceQueryError, SwapError
from dexarb.models import AssetPair, BalanceSnapshot, CostBreakdown, Quote, TokenDescriptor, Venue

BASE = TokenDescriptor(symbol="SKR", mint_address="BaseMint111", decimals=6)
QUOTE = TokenDescriptor(symbol="USDC", mint_address="QuoteMint111", decimals=6)
PAIR = AssetPair(base=BASE, quote=QUOTE)
VENUE_1 = Venue(id="raydium", label="Raydium", pool_address="Pool1", dex_label="Raydium CLMM", fee_rate_ppm=2500)
VENUE_2 = Venue(id="orca", label="Orca", pool_address="Pool2", dex_label="Whirlpool", fee_rate_ppm=3000)


class FakeQuoter:
    """
    buy/sell: a fixed output, a callable of the input amount, or an exception to raise.
    """
    def __init__(self, venue, buy=None, sell=None, delay=0.0):
        self.venue = venue
        self.buy = buy
        self.sell = sell
        self.delay = delay
        self.calls = []

    async def quote(self, amount, is_buy):
        self.calls.append((amount, is_buy))
        if self.delay:
            await asyncio.sleep(self.delay)
        behaviour = self.buy if is_buy else self.sell
        if isinstance(behaviour, Exception):
            raise behaviour
        out = behaviour(amount) if callable(behaviour) else Decimal(str(behaviour))
        return Quote(venue=self.venue.id, price=out / amount, output_amount=out)


class FakeCosts:
    def __init__(self, total="2"):
        self.total = Decimal(total)
        self.calls = 0

    async def get_cost_breakdown(self, amount_in):
        self.calls += 1
        return CostBreakdown(network_cost=self.total, priority_cost=Decimal(0),
                             pool_fee_cost=Decimal("0.55"), total_cost=self.total)


class FakeBalances:
    def __init__(self, quote="1000", base="0", settlement="1", rate="200"):
        self.amounts = {QUOTE.mint_address: Decimal(quote), BASE.mint_address: Decimal(base)}
        self.settlement = Decimal(settlement)
        self.rate = Decimal(rate)
        self.fail_tokens = set()

    async def get_token_balance(self, token):
        if token.mint_address in self.fail_tokens:
            raise BalanceQueryError(f"{token.symbol} unavailable")
        return self.amounts[token.mint_address]

    async def get_balances(self):
        return BalanceSnapshot(self.amounts[QUOTE.mint_address], self.amounts[BASE.mint_address],
                               self.settlement, self.rate)


class FakeSwapper:
    """
    Scripted swapper. Each step is (tx_id, effect) where effect mutates the fake
    balances, or an exception to raise. Tracks how many swaps overlap.
    """
    def __init__(self, balances, steps, delay=0.0):
        self.balances = balances
        self.steps = list(steps)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def swap(self, venue, input_token, amount):
        self.calls.append((venue.id, input_token.symbol, amount))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if not self.steps:
                raise SwapError("no scripted step left")
            step = self.steps.pop(0)
            if isinstance(step, Exception):
                raise step
            tx_id, effect = step
            if effect:
                effect(self.balances)
            return tx_id
        finally:
            self.in_flight -= 1


def buy_effect(spent, received):
    def apply(b):
        b.amounts[QUOTE.mint_address] -= Decimal(spent)
        b.amounts[BASE.mint_address] += Decimal(received)
    return apply


def sell_effect(spent, received):
    def apply(b):
        b.amounts[BASE.mint_address] -= Decimal(spent)
        b.amounts[QUOTE.mint_address] += Decimal(received)
    return apply


@pytest.fixture
def logger():
    return logging.getLogger("dexarb-tests")


@pytest.fixture
def pair():
    return PAIR


@pytest.fixture
def venues():
    return [VENUE_1, VENUE_2]


@pytest.fixture
def profitable_quoters():
    """Strategy A nets 108 - 100 - 2 = 6, strategy B nets 100 - 100 - 2 = -2."""
    return [
        FakeQuoter(VENUE_1, buy="102", sell="100"),
        FakeQuoter(VENUE_2, buy="99", sell="108"),
    ]


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    async def text(self):
        return str(self.payload)


class FakeSession:
    """aiohttp.ClientSession stand-in for GET endpoints; records every request."""
    def __init__(self, payload=None, status=200, exc=None):
        self.payload = payload
        self.status = status
        self.exc = exc
        self.requests = []

    def get(self, url, params=None, headers=None):
        self.requests.append((url, params, headers))
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.payload, self.status)
