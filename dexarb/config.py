# dexarb/config.py
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Tuple

import yaml

from .errors import ConfigError
from .models import AssetPair, TokenDescriptor, Venue

ENV_OVERRIDES = {
    'RPC_URL': ('network', 'rpc_url'),
    'WS_URL': ('network', 'ws_url'),
    'WALLET_ADDRESS': ('network', 'wallet_address'),
    'JUPITER_API_KEY': ('network', 'jupiter_api_key'),
}

DEFAULT_TIMING = {
    'debounce_ms': 1000,
    'render_interval_ms': 1000,
    'quote_timeout_s': 5.0,
    'price_timeout_s': 5.0,
    'swap_timeout_s': 60.0,
}

DEFAULT_COSTS = {
    'fallback_gas_sol': '0.005',
    'fallback_settlement_usd': '200',
    'compute_units_per_swap': 350_000,
    'lamports_per_signature': 5_000,
    'swaps_per_round_trip': 2,
    'fee_refresh_s': 300,
}


@dataclass(frozen=True)
class EngineConfig:
    """Immutable run configuration. Sections without a typed field stay in `raw`."""
    pair: AssetPair
    venues: Tuple[Venue, Venue]
    probe_amount: Decimal
    min_profit_percent: Decimal
    mode: str
    timing: Dict[str, Any]
    network: Dict[str, Any]
    costs: Dict[str, Any]
    raw: Dict[str, Any] = field(repr=False, default_factory=dict)

    @property
    def risk(self) -> Dict[str, Any]:
        return self.raw.get('risk_compliance', {})

    @property
    def paper(self) -> Dict[str, Any]:
        return self.raw.get('paper', {})

    @property
    def audit_path(self) -> str:
        return self.raw.get('audit', {}).get('trade_log', 'logs/trades.csv')

    @property
    def recent_trades(self) -> int:
        return int(self.raw.get('display', {}).get('recent_trades', 10))

    @property
    def log_level(self) -> str:
        return self.raw.get('system', {}).get('log_level', 'ERROR')


def _require(section: Dict[str, Any], key: str, where: str) -> Any:
    if key not in section or section[key] in (None, ''):
        raise ConfigError(f"Missing required config key '{where}.{key}'")
    return section[key]


def _decimal(value: Any, where: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigError(f"'{where}' is not a decimal number: {value!r}") from None


def _token(section: Dict[str, Any], where: str) -> TokenDescriptor:
    return TokenDescriptor(
        symbol=_require(section, 'symbol', where),
        mint_address=_require(section, 'mint', where),
        decimals=int(section.get('decimals', 6)),
    )


def _venue(section: Dict[str, Any], where: str) -> Venue:
    return Venue(
        id=_require(section, 'id', where),
        label=section.get('label', section['id']),
        pool_address=_require(section, 'pool_address', where),
        dex_label=section.get('dex_label', section.get('label', section['id'])),
        fee_rate_ppm=int(section.get('fee_rate_ppm', 0)),
    )


def parse_config(raw: Dict[str, Any]) -> EngineConfig:
    raw = dict(raw or {})
    for env_key, (sect, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_key, '').strip()
        if value:
            raw.setdefault(sect, {})
            raw[sect] = {**raw[sect], key: value}

    pair_cfg = _require(raw, 'pair', 'root')
    pair = AssetPair(base=_token(_require(pair_cfg, 'base', 'pair'), 'pair.base'),
                     quote=_token(_require(pair_cfg, 'quote', 'pair'), 'pair.quote'))

    venues_cfg = _require(raw, 'venues', 'root')
    if not isinstance(venues_cfg, list) or len(venues_cfg) != 2:
        raise ConfigError("'venues' must list exactly two venues")
    venues = tuple(_venue(v, f"venues[{i}]") for i, v in enumerate(venues_cfg))
    if venues[0].id == venues[1].id:
        raise ConfigError("The two venues must have distinct ids")

    target = _require(raw, 'target', 'root')
    probe = _decimal(_require(target, 'probe_amount', 'target'), 'target.probe_amount')
    if probe <= 0:
        raise ConfigError("'target.probe_amount' must be positive")
    min_pct = _decimal(target.get('min_profit_percent', 1), 'target.min_profit_percent')

    mode = raw.get('system', {}).get('mode', 'paper')
    if mode not in ('paper', 'watch'):
        raise ConfigError(f"Unknown system.mode '{mode}' (expected 'paper' or 'watch')")

    return EngineConfig(
        pair=pair,
        venues=venues,
        probe_amount=probe,
        min_profit_percent=min_pct,
        mode=mode,
        timing={**DEFAULT_TIMING, **raw.get('timing', {})},
        network=dict(raw.get('network', {})),
        costs={**DEFAULT_COSTS, **raw.get('costs', {})},
        raw=raw,
    )


def load_config(path: str = "config.yaml") -> EngineConfig:
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    return parse_config(raw)
