"""
Stress compare runner.

Re-runs the portfolio walk-forward with fixed slippage of 0, 30 and 50 bps
on identical symbols and windows.

The key insight: a result that only holds with frictionless fills is not a
result. Windows that are valid at 0 bps but lose validity once realistic
costs are charged were carried by trades too small to pay for themselves.

0 bps means "no override": every symbol keeps its source preset, so the
0 bps scenario reproduces the default run exactly.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Union
import structlog

from src.data.loader import CandleSource
from research.backtesting.config import PortfolioWalkForwardConfig
from research.backtesting.portfolio import (
    PortfolioWalkForward,
    PortfolioWalkForwardResult,
    PortfolioWindowStatus,
    StrategyFactoryFn,
)

logger = structlog.get_logger(__name__)

STRESS_SCENARIOS_BPS = (0, 30, 50)
BASELINE_BPS = 0


@dataclass
class DroppedWindow:
    """A window valid at baseline but not under stress."""
    window_index: int
    out_sample_start: datetime
    baseline_return: float
    stressed_status: Optional[PortfolioWindowStatus]  # None = window missing


@dataclass
class StressCompareResult:
    """Portfolio results per slippage scenario (bps)."""
    results: dict[int, PortfolioWalkForwardResult]
    dropped_windows: dict[int, list[DroppedWindow]]
    consistency: dict[int, bool]

    @property
    def baseline(self) -> PortfolioWalkForwardResult:
        return self.results[BASELINE_BPS]

    def dropped_indices(self, bps: int) -> list[int]:
        return [d.window_index for d in self.dropped_windows.get(bps, [])]

    @property
    def survives_stress(self) -> bool:
        """Consistency gate passes in every scenario."""
        return all(self.consistency.values())


def find_dropped_windows(
    baseline: PortfolioWalkForwardResult,
    stressed: PortfolioWalkForwardResult,
) -> list[DroppedWindow]:
    """Baseline-valid windows whose stressed counterpart (same OOS start) is not valid."""
    stressed_by_start = stressed.window_by_oos_start()

    dropped = []
    for window in baseline.windows:
        if window.status != PortfolioWindowStatus.VALID:
            continue
        match = stressed_by_start.get(window.out_sample_start)
        if match is None or match.status != PortfolioWindowStatus.VALID:
            dropped.append(DroppedWindow(
                window_index=window.window_index,
                out_sample_start=window.out_sample_start,
                baseline_return=window.portfolio_return,
                stressed_status=match.status if match is not None else None,
            ))
    return dropped


class StressCompareRunner:
    """
    Run the portfolio walk-forward under several slippage assumptions.

    Usage:
        runner = StressCompareRunner(candle_source)
        comparison = runner.run(config)
    """

    def __init__(
        self,
        source: CandleSource,
        strategy_factory: Optional[StrategyFactoryFn] = None,
        scenarios_bps: tuple[int, ...] = STRESS_SCENARIOS_BPS,
    ):
        """
        Initialize stress compare runner.

        Args:
            source: Candle source shared by every scenario
            strategy_factory: Optional strategy factory (defaults to the config's)
            scenarios_bps: Slippage overrides to compare; must include 0
        """
        if BASELINE_BPS not in scenarios_bps:
            raise ValueError("Stress scenarios must include the 0 bps baseline")

        self.source = source
        self.strategy_factory = strategy_factory
        self.scenarios_bps = scenarios_bps

    def run(self, config: PortfolioWalkForwardConfig) -> StressCompareResult:
        """
        Run every scenario and compare against the 0 bps baseline.

        Returns:
            StressCompareResult
        """
        results: dict[int, PortfolioWalkForwardResult] = {}
        for bps in self.scenarios_bps:
            logger.info("running_stress_scenario", slippage_bps=bps)
            scenario_config = replace(config, slippage_bps=bps, stress_compare=False)
            results[bps] = PortfolioWalkForward(
                self.source, scenario_config, self.strategy_factory
            ).run()

        baseline = results[BASELINE_BPS]
        dropped = {
            bps: find_dropped_windows(baseline, result)
            for bps, result in results.items()
            if bps != BASELINE_BPS
        }
        consistency = {bps: r.aggregated.consistency_pass for bps, r in results.items()}

        for bps, windows in dropped.items():
            if windows:
                logger.warning(
                    "stress_windows_dropped",
                    slippage_bps=bps,
                    dropped=[w.window_index for w in windows],
                )

        logger.info(
            "stress_compare_complete",
            consistency={str(k): v for k, v in consistency.items()},
            valid_windows={str(k): r.aggregated.total_valid_windows for k, r in results.items()},
        )

        return StressCompareResult(
            results=results,
            dropped_windows=dropped,
            consistency=consistency,
        )


def run_from_config(
    source: CandleSource,
    config: PortfolioWalkForwardConfig,
    strategy_factory: Optional[StrategyFactoryFn] = None,
) -> Union[PortfolioWalkForwardResult, StressCompareResult]:
    """Single portfolio run, or the full 0/30/50 bps comparison when config.stress_compare is set."""
    if config.stress_compare:
        return StressCompareRunner(source, strategy_factory).run(config)
    return PortfolioWalkForward(source, config, strategy_factory).run()
