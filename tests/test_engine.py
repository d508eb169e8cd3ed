import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import (PAIR, VENUE_1, VENUE_2, FakeBalances, FakeCosts, FakeQuoter, FakeSwapper,
                      buy_effect, sell_effect)
from dexarb.engine import ArbitrageEngine, EngineState, SingleFlightGuard
from dexarb.errors import SwapError
from dexarb.evaluator import Evaluator
from dexarb.execution import ExecutionCoordinator
from dexarb.models import FailureKind, Leg, Strategy, TradeStatus
from dexarb.risk_engine import RiskEngine


def build_engine(logger, quoters, balances, swapper, execution_enabled=True, risk_cfg=None, audit_log=None):
    evaluator = Evaluator([VENUE_1, VENUE_2], quoters, FakeCosts("2"), balances, logger, Decimal("1"))
    coordinator = ExecutionCoordinator(PAIR, [VENUE_1, VENUE_2], swapper, balances, logger)
    risk = RiskEngine(risk_cfg or {'max_consecutive_failures': 3, 'halt_on_partial_failure': True}, logger)
    return ArbitrageEngine(Decimal("100"), "USDC", evaluator, coordinator, risk, logger,
                           audit_log=audit_log, execution_enabled=execution_enabled)


def round_trip(n=1):
    steps = []
    for i in range(n):
        steps.append((f"buy{i}", buy_effect("100", "50")))
        steps.append((f"sell{i}", sell_effect("50", "106")))
    return steps


def test_guard_refuses_second_holder_and_releases_on_error():
    guard = SingleFlightGuard()
    with guard.try_hold() as first:
        assert first
        with guard.try_hold() as second:
            assert not second
        assert guard.held
    assert not guard.held

    with pytest.raises(RuntimeError):
        with guard.try_hold():
            raise RuntimeError("boom")
    assert not guard.held


@pytest.mark.asyncio
async def test_profitable_cycle_executes_and_records_both_legs(logger, profitable_quoters):
    balances = FakeBalances(quote="1000")
    swapper = FakeSwapper(balances, round_trip())
    audit = AsyncMock()
    engine = build_engine(logger, profitable_quoters, balances, swapper, audit_log=audit)

    outcome = await engine.run_cycle()

    assert outcome.success and outcome.strategy is Strategy.A
    records = engine.state.ledger.recent(10)
    assert [r.leg for r in records] == [Leg.BUY, Leg.SELL]
    assert records[0].net_profit is None
    assert records[1].net_profit == Decimal("6")
    assert records[1].input_volume == "100 USDC"
    assert audit.log_trade.await_count == 2
    assert engine.risk.session_pnl == Decimal("6")
    assert not engine.state.guard.held
    assert not engine.state.is_executing


@pytest.mark.asyncio
async def test_unprofitable_cycle_does_not_execute(logger):
    quoters = [FakeQuoter(VENUE_1, buy="100", sell="100"), FakeQuoter(VENUE_2, buy="100", sell="100")]
    balances = FakeBalances()
    swapper = FakeSwapper(balances, round_trip())
    engine = build_engine(logger, quoters, balances, swapper)

    assert await engine.run_cycle() is None
    assert swapper.calls == []
    assert engine.state.latest is not None
    assert len(engine.state.ledger) == 0


@pytest.mark.asyncio
async def test_first_cycle_sets_baselines(logger, profitable_quoters):
    balances = FakeBalances(quote="500", settlement="2", rate="150")
    engine = build_engine(logger, profitable_quoters, balances, FakeSwapper(balances, round_trip()),
                          execution_enabled=False)
    await engine.run_cycle()
    balances.amounts[PAIR.quote.mint_address] = Decimal("900")
    await engine.run_cycle()

    assert engine.state.baseline_total_value == Decimal("800")
    assert engine.state.baseline_pair_prices["raydium"] == Decimal("1.02")
    assert engine.state.cycles == 2


@pytest.mark.asyncio
async def test_concurrent_triggers_never_overlap_executions(logger):
    quoters = [
        FakeQuoter(VENUE_1, buy="102", sell="100", delay=0.01),
        FakeQuoter(VENUE_2, buy="99", sell="108", delay=0.01),
    ]
    balances = FakeBalances(quote="10000")
    swapper = FakeSwapper(balances, round_trip(20), delay=0.02)
    engine = build_engine(logger, quoters, balances, swapper)

    for _ in range(5):
        await asyncio.gather(*(engine.trigger(src) for src in ("raydium", "orca", "raydium", "orca")))

    assert swapper.max_in_flight == 1
    assert engine.state.dropped_triggers == 15
    # each burst: one cycle plus one follow-up for the dropped changes
    assert len(engine.state.ledger) == 20
    assert not engine.state.guard.held


@pytest.mark.asyncio
async def test_trigger_during_execution_is_dropped_not_queued(logger, profitable_quoters):
    balances = FakeBalances(quote="1000")
    swapper = FakeSwapper(balances, round_trip(2), delay=0.05)
    engine = build_engine(logger, profitable_quoters, balances, swapper)

    first = asyncio.create_task(engine.run_cycle())
    await asyncio.sleep(0.02)
    assert engine.state.is_executing
    assert await engine.run_cycle() is None
    await first

    assert engine.state.dropped_triggers == 1
    assert len(swapper.calls) == 2


@pytest.mark.asyncio
async def test_coordinator_crash_releases_guard_and_is_recorded(logger, profitable_quoters):
    balances = FakeBalances()
    engine = build_engine(logger, profitable_quoters, balances, FakeSwapper(balances, []))
    engine.coordinator.execute = AsyncMock(side_effect=RuntimeError("sdk exploded"))

    outcome = await engine.run_cycle()

    assert not outcome.success
    assert "sdk exploded" in outcome.error
    assert not engine.state.guard.held
    (record,) = engine.state.ledger.recent(5)
    assert record.status is TradeStatus.FAILED


@pytest.mark.asyncio
async def test_evaluation_crash_never_escapes_trigger(logger, profitable_quoters):
    balances = FakeBalances()
    engine = build_engine(logger, profitable_quoters, balances, FakeSwapper(balances, []))
    engine.evaluator.evaluate = AsyncMock(side_effect=RuntimeError("bad"))

    await engine.trigger("orca")

    assert not engine.state.guard.held


@pytest.mark.asyncio
async def test_partial_failure_recorded_once_and_halts_trading(logger, profitable_quoters):
    balances = FakeBalances(base="0")
    swapper = FakeSwapper(balances, [("leg1abc", None)] + round_trip())
    engine = build_engine(logger, profitable_quoters, balances, swapper)

    outcome = await engine.run_cycle()
    (record,) = engine.state.ledger.recent(10)
    assert record.status is TradeStatus.FAILED
    assert record.tx_id == "leg1abc"
    assert record.fail_reason == "no intermediate balance"
    assert record.failure_kind is FailureKind.PARTIAL
    assert record.net_profit is None
    assert outcome.leg1_tx_id == "leg1abc"

    assert engine.risk.kill_switch
    await engine.run_cycle()
    assert len(swapper.calls) == 1


@pytest.mark.asyncio
async def test_watch_mode_evaluates_but_never_swaps(logger, profitable_quoters):
    balances = FakeBalances()
    swapper = FakeSwapper(balances, round_trip())
    engine = build_engine(logger, profitable_quoters, balances, swapper, execution_enabled=False)

    await engine.run_cycle()

    assert swapper.calls == []
    assert engine.state.latest.best_net == Decimal("6")


@pytest.mark.asyncio
async def test_early_failures_trip_breaker_after_limit(logger, profitable_quoters):
    balances = FakeBalances()
    swapper = FakeSwapper(balances, [SwapError("rejected")] * 5)
    engine = build_engine(logger, profitable_quoters, balances, swapper,
                          risk_cfg={'max_consecutive_failures': 2, 'halt_on_partial_failure': True})

    for _ in range(4):
        await engine.run_cycle()

    assert len(swapper.calls) == 2
    assert engine.risk.kill_switch
    assert all(r.failure_kind is FailureKind.EARLY for r in engine.state.ledger.recent(10))


def test_engine_state_defaults():
    state = EngineState()
    assert not state.is_executing
    assert state.latest is None
    assert len(state.ledger) == 0


@pytest.mark.asyncio
async def test_unexpected_exit_error_halts_and_keeps_leg_one_tx(logger, profitable_quoters):
    balances = FakeBalances(quote="1000")
    swapper = FakeSwapper(balances, [("leg1abc", buy_effect("100", "50")), RuntimeError("sdk blew up")])
    engine = build_engine(logger, profitable_quoters, balances, swapper)

    outcome = await engine.run_cycle()

    assert outcome.failure_kind is FailureKind.PARTIAL
    (record,) = engine.state.ledger.recent(5)
    assert record.tx_id == "leg1abc"
    assert record.failure_kind is FailureKind.PARTIAL
    assert engine.risk.kill_switch
    assert balances.amounts[PAIR.base.mint_address] == Decimal("50")


@pytest.mark.asyncio
async def test_changes_dropped_mid_cycle_get_one_fresh_evaluation(logger):
    quoters = [
        FakeQuoter(VENUE_1, buy="100", sell="100", delay=0.02),
        FakeQuoter(VENUE_2, buy="100", sell="100", delay=0.02),
    ]
    balances = FakeBalances()
    engine = build_engine(logger, quoters, balances, FakeSwapper(balances, []), execution_enabled=False)

    await asyncio.gather(engine.trigger("raydium"), engine.trigger("orca"), engine.trigger("orca"))

    assert engine.state.dropped_triggers == 2
    assert engine.state.cycles == 2
    assert not engine.state.guard.held

    await engine.trigger("raydium")
    assert engine.state.cycles == 3
