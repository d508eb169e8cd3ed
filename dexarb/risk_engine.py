# dexarb/risk_engine.py
import logging
from decimal import Decimal

from .models import FailureKind, TradeOutcome


class RiskEngine:
    """
    Circuit breaker. Separates 'may we trade?' from 'is there a trade?'.
    Once tripped, evaluation and display go on but nothing executes until
    an operator restarts the engine.
    """
    def __init__(self, config: dict, logger: logging.Logger):
        self.max_consecutive_failures = int(config.get('max_consecutive_failures', 3))
        self.halt_on_partial_failure = bool(config.get('halt_on_partial_failure', True))
        self.logger = logger
        self.session_pnl = Decimal(0)
        self.consecutive_fails = 0
        self.kill_switch = False
        self.halt_reason = ""

    def can_execute(self) -> bool:
        return not self.kill_switch

    def _trip(self, reason: str):
        self.kill_switch = True
        self.halt_reason = reason
        self.logger.critical(f"KILL SWITCH ACTIVATED: {reason}")

    def record_execution_result(self, outcome: TradeOutcome):
        if outcome.success:
            self.consecutive_fails = 0
            if outcome.net_profit is not None:
                self.session_pnl += outcome.net_profit
            return

        self.consecutive_fails += 1
        if outcome.failure_kind is FailureKind.PARTIAL and self.halt_on_partial_failure:
            self._trip(f"partial failure on strategy {outcome.strategy.value} ({outcome.error})")
        elif self.consecutive_fails >= self.max_consecutive_failures:
            self._trip(f"{self.consecutive_fails} consecutive execution failures")
