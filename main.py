# main.py
import asyncio
import sys
from decimal import Decimal

import aiohttp
import questionary
from rich.console import Console
from rich.live import Live

from dexarb.account_stream import AccountChangeStream
from dexarb.balances import RpcBalanceProvider
from dexarb.config import EngineConfig, load_config
from dexarb.costs import RpcCostEstimator
from dexarb.dashboard import render_dashboard
from dexarb.engine import ArbitrageEngine
from dexarb.errors import ConfigError
from dexarb.evaluator import Evaluator
from dexarb.execution import ExecutionCoordinator
from dexarb.logger import AsyncAuditLogger, setup_console_logger
from dexarb.paper import PaperWallet
from dexarb.pool_fees import PoolFeeReader
from dexarb.pricing import SettlementPriceChain, binance_source, coingecko_source, jupiter_source
from dexarb.quoters import DEFAULT_JUPITER_URL, JupiterVenueQuoter
from dexarb.risk_engine import RiskEngine
from dexarb.rpc import SolanaRpc
from dexarb.scheduler import Scheduler

# --- UI HELPER FUNCTIONS ---

def startup_selection(cfg: EngineConfig) -> str:
    """Interactive confirmation of the pair, venues and run mode."""
    print(f"\nDEX SPATIAL ARB | {cfg.pair.label} | {cfg.venues[0].label} <-> {cfg.venues[1].label}\n")
    mode = questionary.select(
        "Run mode:",
        choices=[
            questionary.Choice("Paper trading (live quotes, simulated wallet)", value="paper"),
            questionary.Choice("Watch only (real wallet balances, never executes)", value="watch"),
        ],
        default=cfg.mode,
    ).ask()
    if mode is None:
        print("No mode selected. Exiting.")
        sys.exit()
    if mode == "watch" and not cfg.network.get('wallet_address'):
        print("Watch mode needs network.wallet_address (or WALLET_ADDRESS). Exiting.")
        sys.exit(1)
    return mode


def ws_url_for(cfg: EngineConfig) -> str:
    if cfg.network.get('ws_url'):
        return cfg.network['ws_url']
    return cfg.network['rpc_url'].replace("https://", "wss://").replace("http://", "ws://")

# --- MAIN CONTROLLER ---

class ArbBot:
    def __init__(self, cfg: EngineConfig, mode: str):
        self.cfg = cfg
        self.mode = mode
        self.logger = setup_console_logger("DexArb", cfg.log_level)
        self.audit_log = AsyncAuditLogger(cfg.audit_path)
        self.risk = RiskEngine(cfg.risk, self.logger)
        self.session = None
        self.rpc = None
        self.stream = None
        self.scheduler = None

    def _build_engine(self) -> ArbitrageEngine:
        cfg, t, net = self.cfg, self.cfg.timing, self.cfg.network
        api_key = net.get('jupiter_api_key')
        prices = SettlementPriceChain(
            self.session, self.logger,
            fallback=Decimal(str(cfg.costs['fallback_settlement_usd'])),
            sources=[("binance", binance_source()), ("jupiter", jupiter_source(api_key=api_key)),
                     ("coingecko", coingecko_source())],
            timeout=float(t['price_timeout_s']),
        )
        quoters = [
            JupiterVenueQuoter(self.session, cfg.pair, v, net.get('jupiter_url', DEFAULT_JUPITER_URL),
                               int(net.get('slippage_bps', 50)), api_key)
            for v in cfg.venues
        ]
        fee_reader = PoolFeeReader(self.rpc, self.logger, ttl=float(cfg.costs['fee_refresh_s']))
        costs = RpcCostEstimator(self.rpc, prices, cfg.venues, cfg.costs, self.logger,
                                 timeout=float(t['price_timeout_s']), fee_reader=fee_reader)

        if self.mode == "paper":
            p = cfg.paper
            wallet = PaperWallet(
                cfg.pair, {v.id: q for v, q in zip(cfg.venues, quoters)}, self.logger,
                quote_amount=Decimal(str(p.get('quote_amount', 100))),
                base_amount=Decimal(str(p.get('base_amount', 0))),
                settlement_amount=Decimal(str(p.get('settlement_amount', 0.1))),
                prices=prices,
            )
            balances, swapper = wallet, wallet
        else:
            balances = RpcBalanceProvider(self.rpc, prices, cfg.pair, net['wallet_address'], self.logger)
            swapper = None

        evaluator = Evaluator(cfg.venues, quoters, costs, balances, self.logger, cfg.min_profit_percent,
                              quote_timeout=float(t['quote_timeout_s']), balance_timeout=float(t['price_timeout_s']))
        coordinator = ExecutionCoordinator(cfg.pair, cfg.venues, swapper, balances, self.logger,
                                           swap_timeout=float(t['swap_timeout_s']),
                                           balance_timeout=float(t['price_timeout_s']))
        return ArbitrageEngine(
            cfg.probe_amount, cfg.pair.quote.symbol, evaluator, coordinator, self.risk, self.logger,
            audit_log=self.audit_log, execution_enabled=self.mode == "paper",
        )

    async def run(self):
        try:
            print("Initializing Diagnostic Checks...")
            await self.audit_log.start()
            self.session = aiohttp.ClientSession()
            self.rpc = SolanaRpc(self.cfg.network['rpc_url'], self.logger, session=self.session)
            if not await self.rpc.initialize():
                print("Diagnostic Failed. Check RPC_URL.")
                return

            engine = self._build_engine()
            console = Console()
            with Live(console=console, refresh_per_second=4, screen=False) as live:
                self.scheduler = Scheduler(
                    [v.id for v in self.cfg.venues], engine.trigger, self.logger,
                    debounce_ms=int(self.cfg.timing['debounce_ms']),
                    render_interval_ms=int(self.cfg.timing['render_interval_ms']),
                    on_render=lambda: live.update(render_dashboard(engine.state, self.cfg, self.risk)),
                )
                self.stream = AccountChangeStream(ws_url_for(self.cfg), self.cfg.venues,
                                                  self.scheduler.notify, self.logger)
                await self.stream.start()
                await self.scheduler.start()
                await asyncio.Event().wait()
        finally:
            print("Shutting down resources...")
            if self.scheduler:
                await self.scheduler.shutdown()
            if self.stream:
                await self.stream.shutdown()
            if self.rpc:
                await self.rpc.shutdown()
            await self.audit_log.stop()
            if self.session:
                await self.session.close()


if __name__ == "__main__":
    try:
        config = load_config("config.yaml")
    except ConfigError as e:
        print(f"Config error: {e}")
        sys.exit(1)
    try:
        selected_mode = startup_selection(config)
        bot = ArbBot(config, selected_mode)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        print("\nBot Stopped by User.")
        sys.exit()
