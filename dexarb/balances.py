# dexarb/balances.py
import asyncio
import logging
from decimal import Decimal

from .errors import BalanceQueryError
from .models import AssetPair, BalanceSnapshot, TokenDescriptor
from .pricing import SettlementPriceChain
from .rpc import SolanaRpc


class RpcBalanceProvider:
    """Read-only view of a real wallet, by public address."""
    def __init__(self, rpc: SolanaRpc, prices: SettlementPriceChain, pair: AssetPair,
                 wallet_address: str, logger: logging.Logger):
        self.rpc = rpc
        self.prices = prices
        self.pair = pair
        self.wallet_address = wallet_address
        self.logger = logger

    async def get_token_balance(self, token: TokenDescriptor) -> Decimal:
        return await self.rpc.get_token_balance(self.wallet_address, token.mint_address, BalanceQueryError)

    async def get_balances(self) -> BalanceSnapshot:
        quote, base, sol, rate = await asyncio.gather(
            self.get_token_balance(self.pair.quote),
            self.get_token_balance(self.pair.base),
            self.rpc.get_balance(self.wallet_address, BalanceQueryError),
            self.prices.get_price(),
        )
        return BalanceSnapshot(quote_amount=quote, base_amount=base,
                               settlement_amount=sol, settlement_usd_rate=rate)
