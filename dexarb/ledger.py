# dexarb/ledger.py
from typing import List, Tuple

from .models import Leg, TradeOutcome, TradeRecord, TradeStatus


class Ledger:
    """
    Append-only, insertion-ordered record of trade attempts.
    Readers get tuples, so a returned view never changes under them.
    """
    def __init__(self):
        self._records: List[TradeRecord] = []

    def append(self, record: TradeRecord) -> None:
        self._records.append(record)

    def recent(self, n: int) -> Tuple[TradeRecord, ...]:
        """Last n records, oldest first."""
        if n <= 0:
            return ()
        return tuple(self._records[-n:])

    def __len__(self) -> int:
        return len(self._records)


def records_for_outcome(outcome: TradeOutcome, input_volume: str) -> List[TradeRecord]:
    """
    A full round trip yields a BUY and a SELL record; the realized PnL rides on
    the SELL. Any failure yields exactly one FAILED record that keeps the
    leg 1 transaction id when there is one.
    """
    if not outcome.success:
        return [TradeRecord(
            strategy=outcome.strategy,
            leg=None,
            status=TradeStatus.FAILED,
            tx_id=outcome.leg1_tx_id,
            input_volume=input_volume,
            fail_reason=outcome.error or "unknown error",
            failure_kind=outcome.failure_kind,
        )]

    records = []
    if outcome.leg1_tx_id:
        records.append(TradeRecord(
            strategy=outcome.strategy, leg=Leg.BUY, status=TradeStatus.SUCCESS,
            tx_id=outcome.leg1_tx_id, input_volume=input_volume,
        ))
    if outcome.leg2_tx_id:
        records.append(TradeRecord(
            strategy=outcome.strategy, leg=Leg.SELL, status=TradeStatus.SUCCESS,
            tx_id=outcome.leg2_tx_id, input_volume=input_volume, net_profit=outcome.net_profit,
        ))
    return records
