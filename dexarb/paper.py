# dexarb/paper.py
import logging
from decimal import Decimal
from typing import Dict, Mapping, Optional

from .errors import BalanceQueryError, QuoteError, SwapError
from .interfaces import Quoter
from .models import AssetPair, BalanceSnapshot, TokenDescriptor, Venue
from .pricing import SettlementPriceChain


class PaperWallet:
    """
    In-memory wallet that fills swaps at the venue's live quote.
    Stands in for both the BalanceProvider and the Swapper in paper mode.
    """
    def __init__(
        self,
        pair: AssetPair,
        quoters: Mapping[str, Quoter],
        logger: logging.Logger,
        quote_amount: Decimal = Decimal(0),
        base_amount: Decimal = Decimal(0),
        settlement_amount: Decimal = Decimal(0),
        network_fee: Decimal = Decimal("0.000005"),
        prices: Optional[SettlementPriceChain] = None,
        static_rate: Decimal = Decimal(0),
    ):
        self.pair = pair
        self.quoters = dict(quoters)
        self.logger = logger
        self.state: Dict[str, Decimal] = {
            pair.quote.mint_address: Decimal(quote_amount),
            pair.base.mint_address: Decimal(base_amount),
        }
        self.settlement = Decimal(settlement_amount)
        self.network_fee = Decimal(network_fee)
        self.prices = prices
        self.static_rate = Decimal(static_rate)
        self.tx_count = 0

    async def get_token_balance(self, token: TokenDescriptor) -> Decimal:
        if token.mint_address not in self.state:
            raise BalanceQueryError(f"Paper wallet does not track {token.symbol}")
        return self.state[token.mint_address]

    async def get_balances(self) -> BalanceSnapshot:
        rate = await self.prices.get_price() if self.prices is not None else self.static_rate
        return BalanceSnapshot(
            quote_amount=self.state[self.pair.quote.mint_address],
            base_amount=self.state[self.pair.base.mint_address],
            settlement_amount=self.settlement,
            settlement_usd_rate=rate,
        )

    def check_liquidity(self, token: TokenDescriptor, amount_needed: Decimal) -> bool:
        return self.state.get(token.mint_address, Decimal(0)) >= amount_needed

    async def swap(self, venue: Venue, input_token: TokenDescriptor, amount: Decimal) -> str:
        amount = Decimal(amount)
        if amount <= 0:
            raise SwapError(f"Refusing to swap non-positive amount {amount}")
        if not self.check_liquidity(input_token, amount):
            raise SwapError(f"Insufficient {input_token.symbol}: need {amount}")
        if self.settlement < self.network_fee:
            raise SwapError("Insufficient settlement balance for network fee")
        quoter = self.quoters.get(venue.id)
        if quoter is None:
            raise SwapError(f"No quoter for venue {venue.id}")

        is_buy = input_token.mint_address == self.pair.quote.mint_address
        output_token = self.pair.base if is_buy else self.pair.quote
        try:
            fill = await quoter.quote(amount, is_buy)
        except QuoteError as e:
            raise SwapError(f"{venue.label} could not fill: {e}") from e

        self.state[input_token.mint_address] -= amount
        self.state[output_token.mint_address] += fill.output_amount
        self.settlement -= self.network_fee
        self.tx_count += 1
        tx_id = f"paper-{self.tx_count}"
        self.logger.info(
            f"[{venue.label}] {tx_id}: {amount} {input_token.symbol} -> {fill.output_amount} {output_token.symbol}"
        )
        return tx_id
