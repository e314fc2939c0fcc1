"""
Run configuration for portfolio walk-forward backtests.

Configuration is a plain dataclass; YAML files may reference environment
variables as ${VAR} (a local .env file is loaded first).
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional
import os
import re
import structlog

import yaml
from dotenv import load_dotenv

from src.data.schema import to_timestamp
from src.exceptions import ConfigurationError
from src.portfolio.allocator import WeightingMode
from src.strategy.factory import STRATEGY_NAMES, StrategyFactory, StrategyParams

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/portfolio_wf.yaml"

REBALANCE_STEP_DAYS = {
    "weekly": 7,
    "monthly": 30,
    "daily": 1,
}
REBALANCE_MODES = ("oos",) + tuple(REBALANCE_STEP_DAYS)

_ENV_VAR = re.compile(r"\$\{([^}]+)\}")


@dataclass
class PortfolioWalkForwardConfig:
    """
    All options of one portfolio walk-forward run.

    Percent-valued options (commission_pct, dd_reduce_pct, dd_halt_pct) are
    in percent units; max_symbol_weight and min_symbol_window_ratio are
    fractions in [0, 1]. A zero threshold disables the corresponding rule.
    """
    symbols: list[str] = field(default_factory=list)
    start: str = ""
    end: str = ""

    # Walk-forward windows (calendar days)
    in_sample_days: int = 180
    out_sample_days: int = 60
    step_days: int = 30
    warmup_days: int = 0
    rebalance: str = "oos"

    min_oos_trades: int = 3
    max_positions: int = 5

    # Weighting
    weighting: str = WeightingMode.EQUAL.value
    vol_lookback: int = 30
    max_symbol_weight: float = 0.0

    # Costs
    initial_capital: float = 10_000_000
    commission_pct: float = 0.05
    slippage_bps: float = 0.0

    # Drawdown throttle
    dd_reduce_pct: float = 0.0
    dd_halt_pct: float = 0.0
    dd_lookback: int = 0

    # Filters
    use_benchmark_filter: bool = False
    benchmark_symbol: str = "SPY"
    symbol_ma_filter: bool = False
    symbol_ma_period: int = 50
    min_symbol_window_ratio: float = 0.0

    stress_compare: bool = False

    # Strategy selection per asset class
    us_strategy: str = "regime-adaptive"
    crypto_strategy: str = "regime-adaptive"
    krx_strategy: str = "regime-adaptive"
    strategy_params: dict = field(default_factory=dict)

    max_workers: Optional[int] = None

    @property
    def effective_step_days(self) -> int:
        """Step between windows; a rebalance cadence overrides step_days."""
        return REBALANCE_STEP_DAYS.get(self.rebalance, self.step_days)

    @property
    def weighting_mode(self) -> WeightingMode:
        return WeightingMode(self.weighting)

    def validate(self) -> "PortfolioWalkForwardConfig":
        """
        Check the configuration for values the engine cannot run with.

        Raises:
            ConfigurationError: on the first invalid option
        """
        if not self.symbols:
            raise ConfigurationError("At least one symbol is required")
        if not self.start or not self.end:
            raise ConfigurationError("Both start and end dates are required")
        try:
            start, end = to_timestamp(self.start), to_timestamp(self.end)
        except ValueError as e:
            raise ConfigurationError(f"Invalid date: {e}") from e
        if start >= end:
            raise ConfigurationError(f"start ({self.start}) must be before end ({self.end})")

        for name in ("in_sample_days", "out_sample_days"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.effective_step_days <= 0:
            raise ConfigurationError("step_days must be positive")
        if self.warmup_days < 0:
            raise ConfigurationError("warmup_days must be >= 0")

        if self.rebalance not in REBALANCE_MODES:
            raise ConfigurationError(
                f"Unknown rebalance '{self.rebalance}'. Expected one of: {', '.join(REBALANCE_MODES)}"
            )
        if self.weighting not in {m.value for m in WeightingMode}:
            raise ConfigurationError(f"Unknown weighting mode '{self.weighting}'")

        if self.max_positions < 1:
            raise ConfigurationError("max_positions must be >= 1")
        if self.min_oos_trades < 0:
            raise ConfigurationError("min_oos_trades must be >= 0")
        if self.vol_lookback < 2:
            raise ConfigurationError("vol_lookback must be >= 2")
        if not 0 <= self.max_symbol_weight <= 1:
            raise ConfigurationError("max_symbol_weight must be within [0, 1]")
        if not 0 <= self.min_symbol_window_ratio <= 1:
            raise ConfigurationError("min_symbol_window_ratio must be within [0, 1]")

        if self.initial_capital <= 0:
            raise ConfigurationError("initial_capital must be positive")
        for name in ("commission_pct", "slippage_bps", "dd_reduce_pct", "dd_halt_pct"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")
        if self.dd_lookback < 0:
            raise ConfigurationError("dd_lookback must be >= 0")
        if self.symbol_ma_period < 1:
            raise ConfigurationError("symbol_ma_period must be >= 1")

        for name in (self.us_strategy, self.crypto_strategy, self.krx_strategy):
            if name not in STRATEGY_NAMES:
                raise ConfigurationError(
                    f"Unknown strategy '{name}'. Expected one of: {', '.join(STRATEGY_NAMES)}"
                )
        StrategyParams.from_dict(self.strategy_params)

        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1")

        return self

    def strategy_factory(self) -> StrategyFactory:
        """Per-asset-class strategy factory for this run."""
        return StrategyFactory(
            us=self.us_strategy,
            crypto=self.crypto_strategy,
            krx=self.krx_strategy,
            params=StrategyParams.from_dict(self.strategy_params),
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PortfolioWalkForwardConfig":
        """Build a config from a mapping; unknown keys raise ConfigurationError."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown config options: {sorted(unknown)}")

        if isinstance(data.get("symbols"), str):
            data["symbols"] = [s.strip() for s in data["symbols"].split(",") if s.strip()]
        for key in ("start", "end"):
            if key in data and data[key] is not None:
                data[key] = str(data[key])

        return cls(**data)


def expand_env_vars(value: Any) -> Any:
    """Expand ${VAR} placeholders in strings (recursively in lists/dicts)."""
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    if isinstance(value, str) and "${" in value:
        def replace_env(match):
            env_var = match.group(1)
            return os.environ.get(env_var, match.group(0))
        return _ENV_VAR.sub(replace_env, value)
    return value


def load_config(path: str = DEFAULT_CONFIG_PATH) -> PortfolioWalkForwardConfig:
    """
    Load and validate a run configuration from YAML.

    The file may hold the options at top level or under a
    `portfolio_walk_forward` key.

    Raises:
        ConfigurationError: missing file or invalid options
    """
    load_dotenv()

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")

    raw = raw.get("portfolio_walk_forward", raw)
    config = PortfolioWalkForwardConfig.from_dict(expand_env_vars(raw)).validate()

    logger.info("config_loaded", path=path, symbols=len(config.symbols))
    return config
