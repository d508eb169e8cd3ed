from decimal import Decimal

import pytest

from conftest import BASE, PAIR, QUOTE
from dexarb.balances import RpcBalanceProvider
from dexarb.errors import BalanceQueryError


class FakeRpc:
    def __init__(self, tokens, sol="0.5", down=False):
        self.tokens = tokens
        self.sol = Decimal(sol)
        self.down = down

    async def get_token_balance(self, owner, mint, error_cls):
        if self.down:
            raise error_cls("RPC getTokenAccountsByOwner failed: timeout")
        return self.tokens.get(mint, Decimal(0))

    async def get_balance(self, owner, error_cls):
        return self.sol


class FakePrices:
    async def get_price(self):
        return Decimal("180")


@pytest.mark.asyncio
async def test_snapshot_combines_tokens_sol_and_rate(logger):
    rpc = FakeRpc({QUOTE.mint_address: Decimal("250"), BASE.mint_address: Decimal("12")})
    snap = await RpcBalanceProvider(rpc, FakePrices(), PAIR, "Wallet111", logger).get_balances()

    assert (snap.quote_amount, snap.base_amount, snap.settlement_amount) == (Decimal("250"), Decimal("12"), Decimal("0.5"))
    assert snap.total_value == Decimal("340")


@pytest.mark.asyncio
async def test_rpc_failure_surfaces_as_balance_error(logger):
    provider = RpcBalanceProvider(FakeRpc({}, down=True), FakePrices(), PAIR, "Wallet111", logger)
    with pytest.raises(BalanceQueryError):
        await provider.get_token_balance(BASE)
