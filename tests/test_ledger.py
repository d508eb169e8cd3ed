from decimal import Decimal

import pytest

from dexarb.ledger import Ledger, records_for_outcome
from dexarb.models import FailureKind, Leg, Strategy, TradeOutcome, TradeRecord, TradeStatus


def record(i):
    return TradeRecord(strategy=Strategy.A, leg=Leg.BUY, status=TradeStatus.SUCCESS,
                       tx_id=f"tx{i}", input_volume="1 USDC")


def test_recent_returns_last_n_in_append_order():
    ledger = Ledger()
    for i in range(7):
        ledger.append(record(i))

    assert [r.tx_id for r in ledger.recent(3)] == ["tx4", "tx5", "tx6"]
    assert len(ledger.recent(100)) == 7
    assert ledger.recent(0) == ()


def test_previous_view_is_not_mutated_by_later_appends():
    ledger = Ledger()
    ledger.append(record(0))
    view = ledger.recent(5)
    ledger.append(record(1))

    assert [r.tx_id for r in view] == ["tx0"]
    assert len(ledger) == 2


def test_records_are_immutable():
    rec = record(0)
    with pytest.raises(AttributeError):
        rec.tx_id = "other"


def test_failed_record_cannot_carry_profit():
    with pytest.raises(ValueError):
        TradeRecord(strategy=Strategy.B, leg=None, status=TradeStatus.FAILED, tx_id=None,
                    input_volume="1 USDC", net_profit=Decimal("1"))


def test_success_outcome_becomes_buy_and_sell_records():
    outcome = TradeOutcome(Strategy.B, Decimal("1"), success=True, leg1_tx_id="a", leg2_tx_id="b",
                           net_profit=Decimal("0.02"))
    buy, sell = records_for_outcome(outcome, "1 USDC")

    assert (buy.leg, buy.tx_id, buy.net_profit) == (Leg.BUY, "a", None)
    assert (sell.leg, sell.tx_id, sell.net_profit) == (Leg.SELL, "b", Decimal("0.02"))
    assert buy.strategy is sell.strategy is Strategy.B


def test_failed_outcome_becomes_single_failed_record():
    partial = TradeOutcome(Strategy.A, Decimal("1"), success=False, leg1_tx_id="leg1abc",
                           error="no intermediate balance")
    early = TradeOutcome(Strategy.A, Decimal("1"), success=False, error="rejected")

    (p,) = records_for_outcome(partial, "1 USDC")
    (e,) = records_for_outcome(early, "1 USDC")

    assert p.status is TradeStatus.FAILED and p.tx_id == "leg1abc"
    assert p.failure_kind is FailureKind.PARTIAL
    assert e.tx_id is None and e.failure_kind is FailureKind.EARLY
    assert e.fail_reason == "rejected"


def test_audit_row_layout():
    rec = TradeRecord(strategy=Strategy.A, leg=None, status=TradeStatus.FAILED, tx_id="leg1abc",
                      input_volume="1 USDC", fail_reason="no intermediate balance",
                      failure_kind=FailureKind.PARTIAL, timestamp=0)
    assert rec.to_row() == ["1970-01-01 00:00:00", "A", "", "FAILED", "PARTIAL", "leg1abc",
                            "1 USDC", "", "no intermediate balance"]
