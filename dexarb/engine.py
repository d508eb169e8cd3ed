# dexarb/engine.py
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterator, Optional

from .evaluator import Evaluator
from .execution import ExecutionCoordinator
from .ledger import Ledger, records_for_outcome
from .logger import AsyncAuditLogger
from .models import BalanceSnapshot, EvaluationResult, TradeOutcome
from .risk_engine import RiskEngine


class SingleFlightGuard:
    """
    The one lock that keeps cycles from overlapping. Acquisition is a plain
    check-and-set with no await in between, so it is atomic on the event loop.
    Busy callers are turned away, never queued.
    """
    def __init__(self):
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    @contextmanager
    def try_hold(self) -> Iterator[bool]:
        if self._held:
            yield False
            return
        self._held = True
        try:
            yield True
        finally:
            self._held = False


@dataclass
class EngineState:
    """Process-wide state shared across triggers. Only mutated inside the guard."""
    guard: SingleFlightGuard = field(default_factory=SingleFlightGuard)
    ledger: Ledger = field(default_factory=Ledger)
    baseline_balances: Optional[BalanceSnapshot] = None
    baseline_total_value: Optional[Decimal] = None
    baseline_pair_prices: Dict[str, Decimal] = field(default_factory=dict)
    latest: Optional[EvaluationResult] = None
    executing: bool = False
    cycles: int = 0
    dropped_triggers: int = 0

    @property
    def is_executing(self) -> bool:
        return self.executing


class ArbitrageEngine:
    """
    Evaluate -> decide -> execute -> record, as one critical section.
    """
    def __init__(
        self,
        amount_in: Decimal,
        quote_symbol: str,
        evaluator: Evaluator,
        coordinator: ExecutionCoordinator,
        risk: RiskEngine,
        logger: logging.Logger,
        audit_log: Optional[AsyncAuditLogger] = None,
        state: Optional[EngineState] = None,
        execution_enabled: bool = True,
    ):
        self.amount_in = Decimal(amount_in)
        self.quote_symbol = quote_symbol
        self.evaluator = evaluator
        self.coordinator = coordinator
        self.risk = risk
        self.logger = logger
        self.audit_log = audit_log
        self.state = state or EngineState()
        self.execution_enabled = execution_enabled
        self._stale = False

    @property
    def input_volume(self) -> str:
        return f"{self.amount_in} {self.quote_symbol}"

    async def trigger(self, source: str = "manual") -> None:
        """
        Scheduler entry point. Nothing raised in a cycle escapes this.
        Changes dropped while a cycle held the guard get one fresh evaluation
        from the holder once the guard is free.
        """
        try:
            await self.run_cycle()
            while self._stale and not self.state.guard.held:
                self._stale = False
                self.logger.debug(f"Re-evaluating after release ({source} held the guard)")
                await self.run_cycle()
        except Exception:
            self.logger.exception(f"Evaluation cycle triggered by {source} failed")

    async def run_cycle(self) -> Optional[TradeOutcome]:
        with self.state.guard.try_hold() as acquired:
            if not acquired:
                self.state.dropped_triggers += 1
                self._stale = True
                self.logger.debug("Trigger dropped: a cycle is already in flight")
                return None

            result = await self.evaluator.evaluate(self.amount_in)
            self._record_evaluation(result)

            strategy = self.evaluator.decide(result)
            if strategy is None:
                return None
            if not self.execution_enabled:
                self.logger.info(f"Strategy {strategy.value} qualifies (watch mode, not executing)")
                return None
            if not self.risk.can_execute():
                self.logger.warning(f"Strategy {strategy.value} qualifies but kill switch is engaged")
                return None

            self.logger.info(
                f"FOUND: Strategy {strategy.value} | Est. Net: ${result.strategy_net_profit[strategy]:.4f}"
            )
            self.state.executing = True
            try:
                outcome = await self._execute(strategy)
            finally:
                self.state.executing = False
            await self._record_outcome(outcome)
            return outcome

    async def _execute(self, strategy) -> TradeOutcome:
        try:
            return await self.coordinator.execute(strategy, self.amount_in)
        except Exception as e:
            self.logger.exception(f"Coordinator crashed on strategy {strategy.value}")
            return TradeOutcome(strategy, self.amount_in, success=False, error=f"unexpected error: {e}")

    def _record_evaluation(self, result: EvaluationResult):
        st = self.state
        st.cycles += 1
        st.latest = result
        if result.balances is not None and st.baseline_balances is None:
            st.baseline_balances = result.balances
            st.baseline_total_value = result.balances.total_value
        for venue_id, price in result.pair_prices.items():
            if price is not None:
                st.baseline_pair_prices.setdefault(venue_id, price)

    async def _record_outcome(self, outcome: TradeOutcome):
        self.risk.record_execution_result(outcome)
        for record in records_for_outcome(outcome, self.input_volume):
            self.state.ledger.append(record)
            if self.audit_log is not None:
                await self.audit_log.log_trade(record.to_row())
