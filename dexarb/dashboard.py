# dexarb/dashboard.py
import time
from decimal import Decimal
from typing import Optional

from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table

from .config import EngineConfig
from .engine import EngineState
from .evaluator import break_even_volume, min_profit_threshold
from .models import FailureKind, Strategy, TradeStatus
from .risk_engine import RiskEngine

DASH = "-"


def pct_change(now: Optional[Decimal], start: Optional[Decimal]) -> str:
    if now is None or start is None or start == 0:
        return DASH
    return f"{(now - start) / start * 100:.2f}%"


def _money(value: Optional[Decimal], places: int = 4) -> str:
    return DASH if value is None else f"${value:,.{places}f}"


def _strategy_label(strategy: Strategy, cfg: EngineConfig) -> str:
    entry = cfg.venues[strategy.entry_index].label
    exit_ = cfg.venues[strategy.exit_index].label
    return f"{strategy.value} (Buy {entry} -> Sell {exit_})"


def _config_table(state: EngineState, cfg: EngineConfig, risk: RiskEngine) -> Table:
    t = Table(title="Config")
    t.add_column("Config", style="cyan")
    t.add_column("Value", justify="right")
    t.add_row("Mode", cfg.mode.upper())
    t.add_row("Min profit %", f"{cfg.min_profit_percent}%")
    t.add_row("Min profit ($)", _money(min_profit_threshold(cfg.probe_amount, cfg.min_profit_percent), 2))
    latest = state.latest
    if latest is not None and latest.balances is not None:
        t.add_row(f"SOL/{cfg.pair.quote.symbol}", _money(latest.balances.settlement_usd_rate))
    t.add_row("Realized PnL", _money(risk.session_pnl))
    if risk.kill_switch:
        t.add_row("[bold red]KILL SWITCH[/bold red]", f"[red]{risk.halt_reason}[/red]")
    return t


def _fee_table(state: EngineState) -> Table:
    t = Table(title="Fees")
    t.add_column("Fee", style="cyan")
    t.add_column("Amount (SOL)", justify="right")
    t.add_column("Value ($)", justify="right", style="yellow")
    c = state.latest.costs
    t.add_row("Network", f"{c.network_native:.6f}", _money(c.network_cost))
    t.add_row("Priority", f"{c.priority_native:.6f}", _money(c.priority_cost))
    t.add_row("Pool (in quotes)", DASH, _money(c.pool_fee_cost) if c.pool_fee_cost > 0 else DASH)
    total_label = "Total (fallback)" if c.is_fallback else "Total"
    t.add_row(total_label, f"{c.network_native + c.priority_native:.6f}", _money(c.total_cost))
    return t


def _balance_table(state: EngineState, cfg: EngineConfig) -> Table:
    t = Table(title="Balance")
    t.add_column("Asset", style="magenta")
    t.add_column("Amount", justify="right")
    t.add_column("Value ($)", justify="right", style="green")
    t.add_column("% changed", justify="right")
    b = state.latest.balances
    if b is None:
        t.add_row("unavailable", DASH, DASH, DASH)
        return t
    start = state.baseline_balances
    t.add_row(cfg.pair.quote.symbol, f"{b.quote_amount:.4f}", _money(b.quote_amount, 2),
              pct_change(b.quote_amount, start.quote_amount if start else None))
    t.add_row(cfg.pair.base.symbol, f"{b.base_amount:.6f}", DASH,
              pct_change(b.base_amount, start.base_amount if start else None))
    t.add_row("SOL", f"{b.settlement_amount:.6f}", _money(b.settlement_amount * b.settlement_usd_rate, 2),
              pct_change(b.settlement_amount, start.settlement_amount if start else None))
    t.add_row("Total", DASH, _money(b.total_value, 2), pct_change(b.total_value, state.baseline_total_value))
    return t


def _volume_table(state: EngineState, cfg: EngineConfig) -> Table:
    t = Table(title="Volume")
    t.add_column("Volume", style="cyan")
    t.add_column("Amount", justify="right")
    t.add_column("Est Net ($)", justify="right")
    r = state.latest
    quote = cfg.pair.quote.symbol
    t.add_row("Input", f"{r.amount_in} {quote}", _money(r.best_net))
    recommend = break_even_volume(r.leg_outputs, r.amount_in, r.costs.total_cost)
    t.add_row("Recommend", f"{recommend:.2f} {quote}" if recommend is not None else DASH, "Break-even")
    return t


def _price_table(state: EngineState, cfg: EngineConfig) -> Table:
    label = f"Price (1 {cfg.pair.base.symbol} -> {cfg.pair.quote.symbol})"
    t = Table(title="Venues")
    t.add_column("DEX", style="cyan")
    t.add_column(label, justify="right", style="green")
    t.add_column("% changed", justify="right")
    for venue in cfg.venues:
        price = state.latest.pair_prices.get(venue.id)
        start = state.baseline_pair_prices.get(venue.id)
        # buy quotes are base-per-quote; display the inverse
        per_base = 1 / price if price else None
        start_per_base = 1 / start if start else None
        t.add_row(venue.label, _money(per_base, 6), pct_change(per_base, start_per_base))
    return t


def _strategy_table(state: EngineState, cfg: EngineConfig) -> Table:
    t = Table(title="Strategies")
    t.add_column("Strategy", style="cyan")
    t.add_column("Output", justify="right")
    t.add_column("Net ($)", justify="right")
    t.add_column("Net (%)", justify="right")
    r = state.latest
    best = r.best_strategy
    for strategy in Strategy:
        net = r.strategy_net_profit.get(strategy)
        out = r.leg_outputs.get(strategy)
        if net is None or out is None:
            t.add_row(_strategy_label(strategy, cfg), DASH, "[dim]unavailable[/dim]", DASH)
            continue
        style = "green" if net > 0 else "red"
        name = _strategy_label(strategy, cfg) + (" *" if strategy is best else "")
        t.add_row(name, _money(out), f"[{style}]{_money(net)}[/{style}]",
                  f"{net / r.amount_in * 100:.2f}%")
    return t


def _trade_table(state: EngineState, cfg: EngineConfig) -> Table:
    t = Table(title="Transactions")
    for col in ("#", "Tx", "Status", "Order", "Input volume", "Net ($)", "Fail reason", "Time"):
        t.add_column(col)
    recent = state.ledger.recent(cfg.recent_trades)
    start_num = len(state.ledger) - len(recent) + 1
    for i, rec in enumerate(recent):
        if rec.status is TradeStatus.SUCCESS:
            status = "[green]SUCCESS[/green]"
        elif rec.failure_kind is FailureKind.PARTIAL:
            status = "[bold white on red]PARTIAL - MANUAL[/bold white on red]"
        else:
            status = "[yellow]FAILED[/yellow]"
        order = f"{rec.strategy.value} {rec.leg.value}" if rec.leg else _strategy_label(rec.strategy, cfg)
        t.add_row(
            str(start_num + i), rec.tx_id or DASH, status, order, rec.input_volume,
            _money(rec.net_profit), rec.fail_reason or DASH,
            time.strftime('%H:%M:%S', time.localtime(rec.timestamp)),
        )
    return t


def render_dashboard(state: EngineState, cfg: EngineConfig, risk: RiskEngine) -> Layout:
    layout = Layout()
    if state.latest is None:
        layout.update(Panel("Waiting for first evaluation...", title=cfg.pair.label))
        return layout

    layout.split_column(
        Layout(name="top"),
        Layout(name="middle"),
        Layout(name="trades"),
        Layout(name="footer", size=3),
    )
    layout["top"].split_row(
        Layout(Panel(_config_table(state, cfg, risk))),
        Layout(Panel(_fee_table(state))),
        Layout(Panel(_balance_table(state, cfg))),
    )
    layout["middle"].split_row(
        Layout(Panel(_volume_table(state, cfg))),
        Layout(Panel(_price_table(state, cfg))),
        Layout(Panel(_strategy_table(state, cfg)), ratio=2),
    )
    layout["trades"].update(Panel(_trade_table(state, cfg)))

    ago = int(time.time() - state.latest.timestamp)
    status = "[red]EXECUTING[/red]" if state.is_executing else "[green]idle[/green]"
    layout["footer"].update(Panel(
        f"[bold gold1]{cfg.pair.label}[/bold gold1] | Last eval: {ago}s ago | Cycles: {state.cycles} "
        f"| Dropped triggers: {state.dropped_triggers} | {status}",
        style="white on blue",
    ))
    return layout
