"""
Performance metrics for a single simulation run.

Money amounts (PnL, equity) stay Decimal; ratios are reported as float.
Percentages are in percent units (5.0 means 5%).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Optional

import numpy as np

from src.strategy.base import SignalType
from src.utils.decimal_utils import HUNDRED, MONEY_CONTEXT, ZERO, pct_change

TRADING_DAYS_PER_YEAR = 252


@dataclass
class Trade:
    """A single fill. realized_pnl is set only on a closing SELL."""
    symbol: str
    side: SignalType
    qty: Decimal
    price: Decimal
    timestamp: datetime
    commission: Decimal
    slippage_pct: Decimal
    realized_pnl: Optional[Decimal] = None
    reason: str = ""


@dataclass
class EquityPoint:
    timestamp: datetime
    equity: Decimal


@dataclass
class DrawdownPoint:
    timestamp: datetime
    drawdown_pct: float
    peak: Decimal


@dataclass
class PerformanceMetrics:
    """Summary statistics of one run."""
    total_return: float = 0.0        # %
    sharpe_ratio: float = 0.0        # annualized, rf = 0
    max_drawdown: float = 0.0        # %
    win_rate: float = 0.0            # % of all trades
    profit_factor: float = 0.0
    avg_win: Decimal = ZERO
    avg_loss: Decimal = ZERO
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    avg_trade_duration: float = 0.0  # hours

    def to_dict(self) -> dict:
        return {
            "total_return": self.total_return,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "avg_win": float(self.avg_win),
            "avg_loss": float(self.avg_loss),
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "avg_trade_duration": self.avg_trade_duration,
        }


def calculate_metrics(
    trades: list[Trade],
    equity: list[EquityPoint],
    initial_capital: Decimal,
) -> PerformanceMetrics:
    """
    Compute run metrics from trades and the equity curve.

    A run without trades reports all-zero metrics.
    """
    if not trades:
        return PerformanceMetrics()

    final_equity = equity[-1].equity if equity else initial_capital
    winning, losing, win_rate = calculate_win_rate(trades)
    avg_win, avg_loss = calculate_avg_win_loss(trades)

    return PerformanceMetrics(
        total_return=pct_change(initial_capital, final_equity),
        sharpe_ratio=calculate_sharpe_ratio(equity),
        max_drawdown=calculate_max_drawdown(equity),
        win_rate=win_rate,
        profit_factor=calculate_profit_factor(trades),
        avg_win=avg_win,
        avg_loss=avg_loss,
        total_trades=len(trades),
        winning_trades=winning,
        losing_trades=losing,
        avg_trade_duration=calculate_avg_trade_duration(trades),
    )


def calculate_sharpe_ratio(equity: list[EquityPoint]) -> float:
    """
    Annualized Sharpe ratio of bar-to-bar equity returns.

    Uses population standard deviation and sqrt(252) annualization.
    """
    if len(equity) < 2:
        return 0.0

    returns = []
    for prev, curr in zip(equity[:-1], equity[1:]):
        if prev.equity > 0:
            returns.append(float((curr.equity - prev.equity) / prev.equity))

    if not returns:
        return 0.0

    std = float(np.std(returns))
    if std == 0:
        return 0.0

    return float(np.mean(returns) / std * np.sqrt(TRADING_DAYS_PER_YEAR))


def calculate_drawdowns(equity: list[EquityPoint]) -> list[DrawdownPoint]:
    """Drawdown from running peak (%) for every equity point."""
    if not equity:
        return []

    drawdowns = []
    peak = equity[0].equity
    for point in equity:
        if point.equity > peak:
            peak = point.equity

        drawdown = 0.0
        if peak > 0:
            with localcontext(MONEY_CONTEXT):
                drawdown = float((peak - point.equity) / peak * HUNDRED)

        drawdowns.append(DrawdownPoint(timestamp=point.timestamp, drawdown_pct=drawdown, peak=peak))

    return drawdowns


def calculate_max_drawdown(equity: list[EquityPoint]) -> float:
    """Largest peak-to-trough decline of the equity curve (%)."""
    drawdowns = calculate_drawdowns(equity)
    if not drawdowns:
        return 0.0
    return max(d.drawdown_pct for d in drawdowns)


def calculate_win_rate(trades: list[Trade]) -> tuple[int, int, float]:
    """
    Returns:
        (winning_trades, losing_trades, win_rate %)

    The rate is taken over all trades, buys included.
    """
    if not trades:
        return 0, 0, 0.0

    winning = sum(1 for t in trades if t.realized_pnl is not None and t.realized_pnl > 0)
    losing = sum(1 for t in trades if t.realized_pnl is not None and t.realized_pnl < 0)
    return winning, losing, winning / len(trades) * 100


def calculate_profit_factor(trades: list[Trade]) -> float:
    """Gross profit / gross loss; inf with profit and no losses, 0 with neither."""
    total_profit = ZERO
    total_loss = ZERO
    for t in trades:
        if t.realized_pnl is None:
            continue
        if t.realized_pnl > 0:
            total_profit += t.realized_pnl
        elif t.realized_pnl < 0:
            total_loss += abs(t.realized_pnl)

    if total_loss <= 0:
        return float("inf") if total_profit > 0 else 0.0

    with localcontext(MONEY_CONTEXT):
        return float(total_profit / total_loss)


def calculate_avg_win_loss(trades: list[Trade]) -> tuple[Decimal, Decimal]:
    """Average winning PnL and average absolute losing PnL."""
    wins = [t.realized_pnl for t in trades if t.realized_pnl is not None and t.realized_pnl > 0]
    losses = [abs(t.realized_pnl) for t in trades if t.realized_pnl is not None and t.realized_pnl < 0]

    with localcontext(MONEY_CONTEXT):
        avg_win = sum(wins, ZERO) / len(wins) if wins else ZERO
        avg_loss = sum(losses, ZERO) / len(losses) if losses else ZERO
    return avg_win, avg_loss


def calculate_avg_trade_duration(trades: list[Trade]) -> float:
    """Mean BUY-to-SELL holding time in hours."""
    if len(trades) < 2:
        return 0.0

    durations = []
    last_buy: Optional[datetime] = None
    for t in trades:
        if t.side == SignalType.BUY:
            last_buy = t.timestamp
        elif t.side == SignalType.SELL and last_buy is not None:
            durations.append((t.timestamp - last_buy).total_seconds() / 3600)
            last_buy = None

    if not durations:
        return 0.0
    return float(np.mean(durations))


def count_round_trips(trades: list[Trade]) -> int:
    """Completed round trips = number of SELL fills."""
    return sum(1 for t in trades if t.side == SignalType.SELL)
