# dexarb/quoters.py
import asyncio
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional

import aiohttp

from .errors import QuoteError
from .models import AssetPair, Quote, TokenDescriptor, Venue

DEFAULT_JUPITER_URL = "https://lite-api.jup.ag/swap/v1"


def to_atomic(amount: Decimal, decimals: int) -> int:
    return int((Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_atomic(raw, decimals: int) -> Decimal:
    return Decimal(str(raw)) / (Decimal(10) ** decimals)


class JupiterVenueQuoter:
    """
    Quotes one venue only: the aggregator is pinned to the venue's dex label
    and to direct routes, so the answer is that pool's executable price.
    """
    def __init__(self, session: aiohttp.ClientSession, pair: AssetPair, venue: Venue,
                 base_url: str = DEFAULT_JUPITER_URL, slippage_bps: int = 50,
                 api_key: Optional[str] = None):
        self.session = session
        self.pair = pair
        self.venue = venue
        self.base_url = base_url.rstrip('/')
        self.slippage_bps = slippage_bps
        self.headers = {"x-api-key": api_key} if api_key else {}

    def _tokens(self, is_buy: bool):
        if is_buy:
            return self.pair.quote, self.pair.base
        return self.pair.base, self.pair.quote

    async def quote(self, amount: Decimal, is_buy: bool) -> Quote:
        token_in, token_out = self._tokens(is_buy)
        atomic = to_atomic(amount, token_in.decimals)
        if atomic <= 0:
            raise QuoteError(f"{self.venue.label}: input {amount} {token_in.symbol} rounds to zero")

        params = {
            "inputMint": token_in.mint_address,
            "outputMint": token_out.mint_address,
            "amount": str(atomic),
            "slippageBps": str(self.slippage_bps),
            "dexes": self.venue.dex_label,
            "onlyDirectRoutes": "true",
        }
        try:
            async with self.session.get(f"{self.base_url}/quote", params=params, headers=self.headers) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise QuoteError(f"{self.venue.label} quote HTTP {resp.status}: {text[:200]}")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise QuoteError(f"{self.venue.label} quote request failed: {e}") from e

        return self._parse(data, Decimal(amount), token_out)

    def _parse(self, data: dict, amount: Decimal, token_out: TokenDescriptor) -> Quote:
        raw_out = data.get("outAmount") if isinstance(data, dict) else None
        if raw_out is None:
            raise QuoteError(f"{self.venue.label} quote has no outAmount")
        try:
            output = from_atomic(raw_out, token_out.decimals)
        except (InvalidOperation, TypeError) as e:
            raise QuoteError(f"{self.venue.label} quote has malformed outAmount {raw_out!r}") from e
        if not output.is_finite() or output <= 0:
            raise QuoteError(f"{self.venue.label} quoted zero output")
        return Quote(venue=self.venue.id, price=output / amount, output_amount=output)
