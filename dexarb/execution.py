# dexarb/execution.py
import logging
from decimal import Decimal
from typing import Optional, Sequence

from .errors import BalanceQueryError, SwapError
from .interfaces import BalanceProvider, Swapper, with_timeout
from .models import AssetPair, Strategy, TokenDescriptor, TradeOutcome, Venue

NO_INTERMEDIATE_BALANCE = "no intermediate balance"


class ExecutionCoordinator:
    """
    Runs the two swap legs of a round trip, strictly in order.
    Leg 2 spends the realized intermediate balance, not the quoted estimate,
    and nothing is ever unwound: a stuck leg is reported, not retried.

    The single-flight guard is owned by the caller and must be held for the
    whole call.
    """
    def __init__(
        self,
        pair: AssetPair,
        venues: Sequence[Venue],
        swapper: Swapper,
        balances: BalanceProvider,
        logger: logging.Logger,
        swap_timeout: float = 60.0,
        balance_timeout: float = 5.0,
    ):
        self.pair = pair
        self.venues = list(venues)
        self.swapper = swapper
        self.balances = balances
        self.logger = logger
        self.swap_timeout = swap_timeout
        self.balance_timeout = balance_timeout

    async def _balance_of(self, token: TokenDescriptor) -> Decimal:
        return await with_timeout(
            self.balances.get_token_balance(token),
            self.balance_timeout, BalanceQueryError, f"{token.symbol} balance query",
        )

    async def _quote_balance(self) -> Optional[Decimal]:
        try:
            return await self._balance_of(self.pair.quote)
        except BalanceQueryError as e:
            self.logger.warning(f"Could not read {self.pair.quote.symbol} balance: {e}")
            return None

    async def _swap(self, venue: Venue, token: TokenDescriptor, amount: Decimal) -> str:
        return await with_timeout(
            self.swapper.swap(venue, token, amount),
            self.swap_timeout, SwapError, f"{venue.label} swap",
        )

    async def execute(self, strategy: Strategy, amount_in: Decimal) -> TradeOutcome:
        entry = self.venues[strategy.entry_index]
        exit_ = self.venues[strategy.exit_index]
        quote_sym, base_sym = self.pair.quote.symbol, self.pair.base.symbol
        self.logger.info(
            f"EXECUTION TRIGGERED: Strategy {strategy.value} | Buy {entry.label} -> Sell {exit_.label} | "
            f"Amt: {amount_in} {quote_sym}"
        )

        start_balance = await self._quote_balance()

        # 1. ENTER
        try:
            leg1_tx = await self._swap(entry, self.pair.quote, amount_in)
        except SwapError as e:
            self.logger.warning(f"FAILED: Leg 1 rejected on {entry.label}. No exposure. Err: {e}")
            return TradeOutcome(strategy, amount_in, success=False, error=str(e))

        # 2. REALIZED INTERMEDIATE BALANCE
        try:
            intermediate = await self._balance_of(self.pair.base)
        except BalanceQueryError as e:
            self.logger.warning(f"Intermediate balance unavailable after {leg1_tx}: {e}")
            intermediate = Decimal(0)
        except Exception as e:
            # leg 1 already moved funds: anything that escapes here is a stranded position
            self.logger.exception(f"PARTIAL FAILURE: balance read crashed after {leg1_tx}")
            return TradeOutcome(strategy, amount_in, success=False, leg1_tx_id=leg1_tx,
                                error=f"unexpected error: {e}")

        if intermediate <= 0:
            self.logger.critical(
                f"PARTIAL FAILURE: Leg 1 {leg1_tx} filled but no {base_sym} balance found. Manual check required."
            )
            return TradeOutcome(strategy, amount_in, success=False, leg1_tx_id=leg1_tx, error=NO_INTERMEDIATE_BALANCE)

        self.logger.info(f"Acquired {intermediate} {base_sym}. Selling on {exit_.label}...")

        # 3. EXIT
        try:
            leg2_tx = await self._swap(exit_, self.pair.base, intermediate)
        except Exception as e:
            self.logger.critical(
                f"PARTIAL FAILURE: Holding {intermediate} {base_sym} after {leg1_tx}; "
                f"exit on {exit_.label} failed: {e!r}"
            )
            error = str(e) if isinstance(e, SwapError) else f"unexpected error: {e}"
            return TradeOutcome(strategy, amount_in, success=False, leg1_tx_id=leg1_tx, error=error)

        # 4. GROUND TRUTH PNL
        try:
            end_balance = await self._quote_balance()
        except Exception:
            self.logger.exception(f"Closing {quote_sym} balance read crashed after {leg2_tx}")
            end_balance = None
        realized = None
        if start_balance is not None and end_balance is not None:
            realized = end_balance - start_balance
        self.logger.info(f"SUCCESS: {leg1_tx} -> {leg2_tx} | Realized: {realized} {quote_sym}")
        return TradeOutcome(
            strategy, amount_in, success=True,
            leg1_tx_id=leg1_tx, leg2_tx_id=leg2_tx, net_profit=realized,
        )
