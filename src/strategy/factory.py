"""
Strategy construction by name and by asset class.

Each symbol gets a fresh strategy instance built from one shared parameter
block; the strategy name is chosen per candle source (crypto, KRX, US).
"""

from dataclasses import asdict, dataclass
from typing import Optional
import structlog

from src.data.schema import SOURCE_KIS, SOURCE_UPBIT, SOURCE_YF, resolve_symbol
from src.exceptions import ConfigurationError
from src.strategy.base import Strategy
from src.strategy.bb_squeeze import BBSqueezeStrategy
from src.strategy.enhanced_ma import EnhancedMAStrategy
from src.strategy.regime_adaptive import RegimeAdaptiveStrategy
from src.strategy.simple_ma import SimpleMAStrategy

logger = structlog.get_logger(__name__)

STRATEGY_NAMES = ("simple-ma", "enhanced-ma", "bb-squeeze", "regime-adaptive")


@dataclass(frozen=True)
class StrategyParams:
    """Parameters shared by all strategy variants."""
    short_ma: int = 10
    long_ma: int = 20
    atr_multiplier: float = 2.0
    slope_period: int = 5
    use_200ma_filter: bool = False
    ma200_period: int = 200
    bb_period: int = 20
    bb_std_dev: float = 2.0
    keltner_multiplier: float = 1.5

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "StrategyParams":
        data = data or {}
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown strategy parameters: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> dict:
        return asdict(self)


def build_strategy(name: str, params: Optional[StrategyParams] = None) -> Strategy:
    """
    Build a strategy instance by name.

    Raises:
        ConfigurationError: unknown strategy name
    """
    p = params or StrategyParams()

    enhanced_ma = {
        "short_period": p.short_ma,
        "long_period": p.long_ma,
        "atr_multiplier": p.atr_multiplier,
        "slope_period": p.slope_period,
        "use_200ma_filter": p.use_200ma_filter,
        "ma200_period": p.ma200_period,
    }
    bb_squeeze = {
        "bb_period": p.bb_period,
        "bb_std_dev": p.bb_std_dev,
        "keltner_multiplier": p.keltner_multiplier,
        "atr_stop_multiplier": p.atr_multiplier,
    }

    if name == "simple-ma":
        return SimpleMAStrategy(short_period=p.short_ma, long_period=p.long_ma)
    if name == "enhanced-ma":
        return EnhancedMAStrategy(**enhanced_ma)
    if name == "bb-squeeze":
        return BBSqueezeStrategy(**bb_squeeze)
    if name == "regime-adaptive":
        return RegimeAdaptiveStrategy(
            sma50_period=50,
            sma200_period=p.ma200_period,
            adx_period=14,
            enhanced_ma=enhanced_ma,
            bb_squeeze=bb_squeeze,
        )

    raise ConfigurationError(
        f"Unknown strategy '{name}'. Expected one of: {', '.join(STRATEGY_NAMES)}"
    )


class StrategyFactory:
    """
    Builds the strategy for a symbol based on its asset class.

    Usage:
        factory = StrategyFactory(us="regime-adaptive", crypto="enhanced-ma")
        strategy = factory("KRW-BTC")
    """

    def __init__(
        self,
        us: str = "regime-adaptive",
        crypto: str = "regime-adaptive",
        krx: str = "regime-adaptive",
        params: Optional[StrategyParams] = None,
    ):
        for name in (us, crypto, krx):
            if name not in STRATEGY_NAMES:
                raise ConfigurationError(f"Unknown strategy '{name}'")

        self.names = {SOURCE_YF: us, SOURCE_UPBIT: crypto, SOURCE_KIS: krx}
        self.params = params or StrategyParams()

    def name_for(self, symbol: str) -> str:
        return self.names[resolve_symbol(symbol).source]

    def __call__(self, symbol: str) -> Strategy:
        return build_strategy(self.name_for(symbol), self.params)

    @property
    def display_name(self) -> str:
        """Single strategy name when all asset classes agree, else a per-class summary."""
        us, crypto, krx = self.names[SOURCE_YF], self.names[SOURCE_UPBIT], self.names[SOURCE_KIS]
        if us == crypto == krx:
            return us
        return f"us={us} | crypto={crypto} | krx={krx}"
