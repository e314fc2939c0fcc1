"""
Backtesting engine.

Walks one symbol's bars once, in order, executing strategy signals against
a single cash balance and at most one open position.

Key principles:
- Causal: at bar i the strategy sees bars[0..i] and nothing later
- Transaction costs ALWAYS applied (slippage + commission)
- Fixed-point bookkeeping: cash, quantities, prices and PnL are Decimal
- Any open position is liquidated on the final bar
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
import structlog

import pandas as pd

from research.backtesting.metrics import (
    DrawdownPoint,
    EquityPoint,
    PerformanceMetrics,
    Trade,
    calculate_drawdowns,
    calculate_metrics,
)
from src.data.cost_model.slippage_model import (
    OrderSide,
    SlippageParams,
    apply_slippage,
    calculate_slippage,
)
from src.data.loader import DateLike, calculate_avg_volume, estimate_bid_ask_spread
from src.data.schema import to_timestamp
from src.exceptions import NoDataError
from src.strategy.base import Position, SignalType, Strategy
from src.utils.decimal_utils import HUNDRED, ZERO, Number, money_div, money_mul, quantize, to_decimal

logger = structlog.get_logger(__name__)

DEFAULT_POSITION_FRACTION = Decimal("0.95")


@dataclass
class BacktestResult:
    """Results from a backtest run."""
    strategy_name: str
    symbol: str
    start: Optional[datetime]
    end: Optional[datetime]
    initial_capital: Decimal
    final_capital: Decimal
    total_return: float  # %
    metrics: PerformanceMetrics
    trades: list[Trade] = field(default_factory=list)
    equity: list[EquityPoint] = field(default_factory=list)
    drawdowns: list[DrawdownPoint] = field(default_factory=list)

    @property
    def final_equity(self) -> Decimal:
        """Last mark-to-market equity point."""
        if self.equity:
            return self.equity[-1].equity
        return self.initial_capital

    @property
    def round_trips(self) -> int:
        return sum(1 for t in self.trades if t.side == SignalType.SELL)


class BacktestEngine:
    """
    Single-symbol causal simulator.

    Usage:
        engine = BacktestEngine(initial_capital=10_000_000, commission_pct=0.05)
        result = engine.run(strategy, bars)
    """

    def __init__(
        self,
        initial_capital: Number = Decimal("10000000"),
        commission_pct: Number = Decimal("0.05"),
        slippage: Optional[SlippageParams] = None,
        max_position_fraction: Number = DEFAULT_POSITION_FRACTION,
    ):
        """
        Initialize backtest engine.

        Args:
            initial_capital: Starting cash
            commission_pct: Commission per fill, in percent of notional
            slippage: Slippage model parameters (order/liquidity inputs are
                filled in per fill)
            max_position_fraction: Fraction of cash used when a BUY signal
                carries no explicit quantity
        """
        self.initial_capital = to_decimal(initial_capital)
        self.commission_rate = to_decimal(commission_pct) / HUNDRED
        self.slippage = slippage or SlippageParams()
        self.max_position_fraction = to_decimal(max_position_fraction)

    def run(
        self,
        strategy: Strategy,
        bars: pd.DataFrame,
        trade_start: Optional[DateLike] = None,
        symbol: Optional[str] = None,
    ) -> BacktestResult:
        """
        Run a backtest over bars.

        Args:
            strategy: Strategy to simulate (a fresh state is created per run)
            bars: Bars with columns timestamp, open, high, low, close, volume
            trade_start: Bars before this time are warmup history only:
                visible to the strategy on later bars, never simulated
            symbol: Symbol label (defaults to the bars' symbol column)

        Returns:
            BacktestResult

        Raises:
            NoDataError: no bars to simulate
        """
        if bars is None or len(bars) == 0:
            raise NoDataError("Cannot backtest on empty data", symbol=symbol)

        bars = bars.reset_index(drop=True)
        if symbol is None:
            symbol = str(bars["symbol"].iloc[0]) if "symbol" in bars.columns else "UNKNOWN"

        first = 0
        if trade_start is not None:
            start_ts = to_timestamp(trade_start)
            later = bars.index[bars["timestamp"] >= start_ts]
            if len(later) == 0:
                raise NoDataError(f"No bars for {symbol} on or after {start_ts.date()}", symbol=symbol)
            first = int(later[0])

        state = strategy.initial_state()
        capital = self.initial_capital
        position: Optional[Position] = None
        entry_commission = ZERO
        trades: list[Trade] = []
        equity: list[EquityPoint] = []

        for i in range(first, len(bars)):
            visible = bars.iloc[: i + 1]
            close = to_decimal(float(bars["close"].iloc[i]))
            timestamp = pd.Timestamp(bars["timestamp"].iloc[i]).to_pydatetime()

            signal = strategy.decide(visible, position, state)

            if signal.action == SignalType.BUY and position is None:
                trade = self._execute_buy(symbol, visible, close, timestamp, capital, signal.quantity)
                if trade is not None:
                    trade.reason = signal.reason
                    trades.append(trade)
                    capital = quantize(capital - money_mul(trade.qty, trade.price) - trade.commission)
                    entry_commission = trade.commission
                    position = Position(
                        symbol=symbol,
                        qty=trade.qty,
                        avg_price=trade.price,
                        entry_time=timestamp,
                    )

            elif signal.action == SignalType.SELL and position is not None:
                trade = self._execute_sell(symbol, visible, close, timestamp, position, entry_commission)
                trade.reason = signal.reason
                trades.append(trade)
                capital = quantize(capital + money_mul(trade.qty, trade.price) - trade.commission)
                position = None
                entry_commission = ZERO

            current_equity = capital
            if position is not None:
                market_value = money_mul(position.qty, close)
                position.unrealized_pnl = quantize(market_value - money_mul(position.qty, position.avg_price))
                current_equity = quantize(capital + market_value)

            equity.append(EquityPoint(timestamp=timestamp, equity=current_equity))

        if position is not None:
            last_close = to_decimal(float(bars["close"].iloc[-1]))
            last_time = pd.Timestamp(bars["timestamp"].iloc[-1]).to_pydatetime()
            trade = self._execute_sell(symbol, bars, last_close, last_time, position, entry_commission)
            trade.reason = "Forced liquidation on final bar"
            trades.append(trade)
            capital = quantize(capital + money_mul(trade.qty, trade.price) - trade.commission)

            logger.debug(
                "final_position_liquidated",
                symbol=symbol,
                price=str(trade.price),
                realized_pnl=str(trade.realized_pnl),
            )

        metrics = calculate_metrics(trades, equity, self.initial_capital)

        return BacktestResult(
            strategy_name=strategy.name,
            symbol=symbol,
            start=equity[0].timestamp if equity else None,
            end=equity[-1].timestamp if equity else None,
            initial_capital=self.initial_capital,
            final_capital=capital,
            total_return=metrics.total_return,
            metrics=metrics,
            trades=trades,
            equity=equity,
            drawdowns=calculate_drawdowns(equity),
        )

    def _slippage_pct(self, visible: pd.DataFrame, qty: Decimal, close: Decimal) -> Decimal:
        params = self.slippage.with_market(
            order_size=money_mul(qty, close),
            avg_volume=calculate_avg_volume(visible),
            bid_ask_spread=estimate_bid_ask_spread(visible),
        )
        return calculate_slippage(params)

    def _execute_buy(
        self,
        symbol: str,
        visible: pd.DataFrame,
        close: Decimal,
        timestamp: datetime,
        capital: Decimal,
        quantity: Optional[Decimal],
    ) -> Optional[Trade]:
        """Open a position at the current close plus slippage."""
        if quantity is not None:
            qty = to_decimal(quantity)
        elif close > 0:
            qty = money_div(money_mul(capital, self.max_position_fraction), close)
        else:
            qty = ZERO

        if qty <= 0:
            logger.warning("order_quantity_not_positive", symbol=symbol, qty=str(qty))
            return None

        slippage_pct = self._slippage_pct(visible, qty, close)
        price = quantize(apply_slippage(close, slippage_pct, OrderSide.BUY))
        commission = money_mul(qty, price, self.commission_rate)

        return Trade(
            symbol=symbol,
            side=SignalType.BUY,
            qty=qty,
            price=price,
            timestamp=timestamp,
            commission=commission,
            slippage_pct=slippage_pct,
        )

    def _execute_sell(
        self,
        symbol: str,
        visible: pd.DataFrame,
        close: Decimal,
        timestamp: datetime,
        position: Position,
        entry_commission: Decimal,
    ) -> Trade:
        """Close the position at the current close minus slippage."""
        qty = position.qty
        slippage_pct = self._slippage_pct(visible, qty, close)
        price = quantize(apply_slippage(close, slippage_pct, OrderSide.SELL))
        commission = money_mul(qty, price, self.commission_rate)

        realized_pnl = quantize(
            money_mul(qty, price)
            - money_mul(qty, position.avg_price)
            - commission
            - entry_commission
        )

        return Trade(
            symbol=symbol,
            side=SignalType.SELL,
            qty=qty,
            price=price,
            timestamp=timestamp,
            commission=commission,
            slippage_pct=slippage_pct,
            realized_pnl=realized_pnl,
        )
