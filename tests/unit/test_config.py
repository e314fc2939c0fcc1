"""
Tests for run configuration and YAML loading.
"""

from pathlib import Path

import pytest

from research.backtesting.config import (
    PortfolioWalkForwardConfig,
    expand_env_vars,
    load_config,
)
from src.exceptions import ConfigurationError
from src.portfolio.allocator import WeightingMode

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "portfolio_wf.yaml"


def _config(**overrides) -> PortfolioWalkForwardConfig:
    base = {"symbols": ["AAPL"], "start": "2024-01-01", "end": "2024-12-31"}
    base.update(overrides)
    return PortfolioWalkForwardConfig(**base)


class TestDefaults:

    def test_defaults_are_valid(self):
        config = _config().validate()
        assert config.in_sample_days == 180
        assert config.out_sample_days == 60
        assert config.step_days == 30
        assert config.min_oos_trades == 3
        assert config.max_positions == 5
        assert config.initial_capital == 10_000_000
        assert config.commission_pct == 0.05
        assert config.weighting_mode == WeightingMode.EQUAL

    @pytest.mark.parametrize("rebalance,expected", [
        ("oos", 30), ("weekly", 7), ("monthly", 30), ("daily", 1),
    ])
    def test_rebalance_overrides_step(self, rebalance, expected):
        assert _config(rebalance=rebalance).effective_step_days == expected

    def test_strategy_factory(self):
        factory = _config(us_strategy="simple-ma", strategy_params={"short_ma": 5}).strategy_factory()
        strategy = factory("AAPL")
        assert strategy.short_period == 5


class TestValidate:

    @pytest.mark.parametrize("overrides", [
        {"symbols": []},
        {"start": ""},
        {"start": "2025-01-01"},
        {"start": "not-a-date"},
        {"in_sample_days": 0},
        {"out_sample_days": -5},
        {"step_days": 0},
        {"warmup_days": -1},
        {"rebalance": "hourly"},
        {"weighting": "risk_parity"},
        {"max_positions": 0},
        {"vol_lookback": 1},
        {"max_symbol_weight": 1.5},
        {"min_symbol_window_ratio": -0.1},
        {"initial_capital": 0},
        {"commission_pct": -0.01},
        {"dd_halt_pct": -1},
        {"us_strategy": "martingale"},
        {"strategy_params": {"unknown_param": 1}},
        {"max_workers": 0},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            _config(**overrides).validate()

    def test_step_days_ignored_with_rebalance_cadence(self):
        _config(step_days=0, rebalance="weekly").validate()

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            _config(symbols=[]).validate()


class TestFromDict:

    def test_symbols_string_is_split(self):
        config = PortfolioWalkForwardConfig.from_dict({"symbols": "AAPL, MSFT,,BTC"})
        assert config.symbols == ["AAPL", "MSFT", "BTC"]

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError):
            PortfolioWalkForwardConfig.from_dict({"symbols": ["AAPL"], "leverage": 3})


class TestLoadConfig:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_repo_config_loads(self):
        config = load_config(str(REPO_CONFIG))
        assert config.symbols == ["AAPL", "MSFT", "NVDA", "QQQ", "BTC"]
        assert config.max_workers is None

    def test_env_vars_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WF_BENCHMARK", "QQQ")
        path = tmp_path / "wf.yaml"
        path.write_text(
            "portfolio_walk_forward:\n"
            "  symbols: [AAPL, MSFT]\n"
            "  start: 2024-01-01\n"
            "  end: 2024-12-31\n"
            "  benchmark_symbol: ${WF_BENCHMARK}\n"
        )

        config = load_config(str(path))

        assert config.benchmark_symbol == "QQQ"
        assert config.start == "2024-01-01"

    def test_top_level_options(self, tmp_path):
        path = tmp_path / "wf.yaml"
        path.write_text("symbols: [BTC]\nstart: '2024-01-01'\nend: '2024-06-30'\nweighting: inv_vol\n")

        config = load_config(str(path))

        assert config.weighting_mode == WeightingMode.INV_VOL

    def test_invalid_file_contents(self, tmp_path):
        path = tmp_path / "wf.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))


class TestExpandEnvVars:

    def test_unset_variable_left_as_is(self, monkeypatch):
        monkeypatch.delenv("WF_NOT_SET", raising=False)
        assert expand_env_vars("${WF_NOT_SET}") == "${WF_NOT_SET}"

    def test_nested(self, monkeypatch):
        monkeypatch.setenv("WF_SYMBOL", "NVDA")
        assert expand_env_vars({"a": ["${WF_SYMBOL}", 1]}) == {"a": ["NVDA", 1]}
