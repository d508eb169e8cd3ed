# dexarb/pricing.py
import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, List, Optional, Tuple

import aiohttp

WSOL_MINT = "So11111111111111111111111111111111111111112"
BINANCE_TICKER_URL = "https://api.binance.com/api/v3/ticker/price"
JUPITER_PRICE_URL = "https://api.jup.ag/price/v3"
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"

PriceSource = Callable[[aiohttp.ClientSession], Awaitable[Optional[Decimal]]]


def _positive(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    return price if price.is_finite() and price > 0 else None


def binance_source(symbol: str = "SOLUSDT") -> PriceSource:
    async def fetch(session: aiohttp.ClientSession) -> Optional[Decimal]:
        async with session.get(BINANCE_TICKER_URL, params={"symbol": symbol}) as resp:
            if resp.status != 200:
                return None
            data = await resp.json()
            if not isinstance(data, dict):
                return None
            return _positive(data.get("price"))
    return fetch


def jupiter_source(mint: str = WSOL_MINT, api_key: Optional[str] = None) -> PriceSource:
    async def fetch(session: aiohttp.ClientSession) -> Optional[Decimal]:
        headers = {"x-api-key": api_key} if api_key else {}
        async with session.get(JUPITER_PRICE_URL, params={"ids": mint}, headers=headers) as resp:
            if resp.status != 200:
                return None
            data = await resp.json()
            # v3 answers either bare or wrapped in {"data": ...}
            entries = data.get("data", data) if isinstance(data, dict) else {}
            entry = entries.get(mint) if isinstance(entries, dict) else None
            return _positive(entry.get("usdPrice")) if isinstance(entry, dict) else None
    return fetch


def coingecko_source(coin_id: str = "solana") -> PriceSource:
    async def fetch(session: aiohttp.ClientSession) -> Optional[Decimal]:
        async with session.get(COINGECKO_PRICE_URL, params={"ids": coin_id, "vs_currencies": "usd"}) as resp:
            if resp.status != 200:
                return None
            data = await resp.json()
            if not isinstance(data, dict):
                return None
            entry = data.get(coin_id)
            return _positive(entry.get("usd")) if isinstance(entry, dict) else None
    return fetch


class SettlementPriceChain:
    """
    Settlement-asset USD rate. Sources are tried in order, each under its own
    timeout; the first positive answer wins and the static fallback is the
    last resort. Never raises.
    """
    def __init__(
        self,
        session: aiohttp.ClientSession,
        logger: logging.Logger,
        fallback: Decimal,
        sources: Optional[List[Tuple[str, PriceSource]]] = None,
        timeout: float = 5.0,
    ):
        self.session = session
        self.logger = logger
        self.fallback = Decimal(fallback)
        self.timeout = timeout
        self.sources = sources if sources is not None else [
            ("binance", binance_source()),
            ("jupiter", jupiter_source()),
            ("coingecko", coingecko_source()),
        ]
        self.last_source = "fallback"

    async def get_price(self) -> Decimal:
        for name, source in self.sources:
            try:
                price = await asyncio.wait_for(source(self.session), timeout=self.timeout)
            except (asyncio.TimeoutError, aiohttp.ClientError, ValueError, KeyError, TypeError,
                    AttributeError) as e:
                self.logger.debug(f"Price source {name} failed: {e!r}")
                continue
            if price is not None:
                self.last_source = name
                return price
        self.logger.warning(f"All price sources failed, using static fallback ${self.fallback}")
        self.last_source = "fallback"
        return self.fallback
