# dexarb/errors.py


class ArbError(Exception):
    """Base class for every error the engine raises or converts."""


class ConfigError(ArbError):
    pass


class QuoteError(ArbError):
    """A venue could not quote. Recoverable: the strategy is skipped this cycle."""


class CostEstimationError(ArbError):
    """Never surfaced past the cost estimator, which falls back to a static estimate."""


class BalanceQueryError(ArbError):
    pass


class SwapError(ArbError):
    """One on-chain swap leg failed."""
