"""
Data Model Module

Value types shared by the indicator engine, the strategy engine and the
collaborators in core/. Everything here is immutable; the store is the only
place that builds new Position/Trade records.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class Action(str, Enum):
    BUY = 'BUY'
    SELL = 'SELL'
    HOLD = 'HOLD'


class Urgency(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    IMMEDIATE = 'IMMEDIATE'
    CRITICAL = 'CRITICAL'


class Trend(str, Enum):
    UPTREND = 'UPTREND'
    DOWNTREND = 'DOWNTREND'
    NEUTRAL = 'NEUTRAL'
    SIDEWAYS = 'SIDEWAYS'


# Signal tags
RSI_OVERSOLD = 'RSI_OVERSOLD'
RSI_OVERBOUGHT = 'RSI_OVERBOUGHT'
SMA_BULLISH = 'SMA_BULLISH'
SMA_BEARISH = 'SMA_BEARISH'
MACD_BULLISH = 'MACD_BULLISH'
MACD_BEARISH = 'MACD_BEARISH'
MACD_BULLISH_CROSSOVER = 'MACD_BULLISH_CROSSOVER'
MACD_BEARISH_CROSSOVER = 'MACD_BEARISH_CROSSOVER'

BULLISH_SIGNALS = frozenset({
    RSI_OVERSOLD, SMA_BULLISH, MACD_BULLISH, MACD_BULLISH_CROSSOVER
})
BEARISH_SIGNALS = frozenset({
    RSI_OVERBOUGHT, SMA_BEARISH, MACD_BEARISH, MACD_BEARISH_CROSSOVER
})


@dataclass(frozen=True)
class PriceBar:
    """One daily OHLCV bar."""
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MacdValues:
    line: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    """
    Latest indicator readings derived from a bar history.

    Fields that need more history than was supplied are None rather than a
    neutral placeholder.
    """
    close: float
    bars: int
    sma20: Optional[float]
    sma50: Optional[float]
    sma200: Optional[float]
    rsi14: Optional[float]
    macd: Optional[MacdValues]
    momentum10: Optional[float]
    volatility: float
    volume_ratio: Optional[float]
    trend: Trend
    signals: Tuple[str, ...] = ()
    sma20_history: Tuple[float, ...] = ()

    @property
    def bullish_signals(self) -> Tuple[str, ...]:
        return tuple(s for s in self.signals if s in BULLISH_SIGNALS)

    @property
    def bearish_signals(self) -> Tuple[str, ...]:
        return tuple(s for s in self.signals if s in BEARISH_SIGNALS)

    def to_dict(self) -> dict:
        return {
            'close': self.close,
            'bars': self.bars,
            'sma20': self.sma20,
            'sma50': self.sma50,
            'sma200': self.sma200,
            'rsi14': self.rsi14,
            'macd': None if self.macd is None else {
                'line': self.macd.line,
                'signal': self.macd.signal,
                'histogram': self.macd.histogram,
            },
            'momentum10': self.momentum10,
            'volatility': self.volatility,
            'volume_ratio': self.volume_ratio,
            'trend': self.trend.value,
            'signals': list(self.signals),
        }


@dataclass(frozen=True)
class Position:
    """Open holding for a symbol, as recorded by the store."""
    symbol: str
    quantity: float
    average_price: float
    high_water_mark: Optional[float] = None
    last_updated: Optional[str] = None

    def value_at(self, price: float) -> float:
        return self.quantity * price

    def pnl_percent(self, price: float) -> float:
        """Signed unrealised P&L in percent (negative = loss)."""
        if self.average_price <= 0:
            return 0.0
        return (price - self.average_price) * 100 / self.average_price

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.average_price) * self.quantity


@dataclass(frozen=True)
class Trade:
    """A filled (or recorded) order."""
    id: str
    timestamp: str
    symbol: str
    action: str
    quantity: float
    price: float
    pnl: Optional[float] = None
    order_id: Optional[str] = None

    @property
    def executed_at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp.replace('Z', '+00:00'))

    @classmethod
    def from_dict(cls, data: dict) -> 'Trade':
        return cls(
            id=str(data['id']),
            timestamp=data['timestamp'],
            symbol=data['symbol'],
            action=data['action'],
            quantity=float(data['quantity']),
            price=float(data['price']),
            pnl=None if data.get('pnl') is None else float(data['pnl']),
            order_id=data.get('order_id'),
        )


@dataclass(frozen=True)
class AccountInfo:
    equity: float
    peak_equity: Optional[float] = None
    cash: Optional[float] = None
    buying_power: Optional[float] = None


@dataclass(frozen=True)
class TradeContext:
    """
    Recent trading context for risk gating.

    recent_trades is ordered oldest first. as_of is the evaluation time used
    for the daily trade limit; the engine never reads the clock itself.
    """
    last_trade: Optional[Trade] = None
    account_info: Optional[AccountInfo] = None
    recent_trades: Tuple[Trade, ...] = ()
    as_of: Optional[datetime] = None


@dataclass(frozen=True)
class Decision:
    action: Action
    quantity: float = 0.0
    confidence: float = 0.0
    urgency: Urgency = Urgency.LOW
    reasoning: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_trade(self) -> bool:
        return self.action in (Action.BUY, Action.SELL)

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'quantity': self.quantity,
            'confidence': self.confidence,
            'urgency': self.urgency.value,
            'reasoning': list(self.reasoning),
        }


def hold(confidence: float = 0.0, *reasoning: str, urgency: Urgency = Urgency.LOW) -> Decision:
    """Build a HOLD decision."""
    return Decision(
        action=Action.HOLD,
        quantity=0.0,
        confidence=confidence,
        urgency=urgency,
        reasoning=tuple(reasoning),
    )
