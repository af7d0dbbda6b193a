"""
Entry/exit scoring.

Both scores are bounded to 0-10 and built from weighted sub-scores so the
engine can explain exactly where each point came from.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .config import StrategyConfig
from .models import IndicatorSnapshot, Trend


@dataclass(frozen=True)
class ScoreCard:
    score: float
    components: Tuple[Tuple[str, float, str], ...] = field(default_factory=tuple)

    def lines(self) -> List[str]:
        """One reasoning line per sub-score."""
        return [f"{name}: +{points:g} ({detail})" for name, points, detail in self.components]


def sma_distance(current_price: float, sma: Optional[float]) -> Optional[float]:
    """Relative distance of price from an SMA, or None if the SMA is unusable."""
    if sma is None or sma <= 0:
        return None
    return (current_price - sma) / sma


def _fmt_rsi(rsi: Optional[float]) -> str:
    return 'n/a' if rsi is None else f"{rsi:.2f}"


def buy_score(
    indicators: IndicatorSnapshot,
    current_price: float,
    volume: float,
    config: StrategyConfig
) -> ScoreCard:
    """
    Score an entry opportunity (0-10).

    RSI oversold depth 0-3, price above SMA20 0-2, trend 0-2,
    bullish signals 0-2, volume confirmation 0-1.
    """
    parts = []
    rsi = indicators.rsi14

    # RSI oversold depth (0-3)
    if rsi is not None and rsi < config.rsi_oversold:
        points = 3
    elif rsi is not None and rsi < config.rsi_oversold + config.rsi_band:
        points = 2
    elif rsi is not None and rsi < 50:
        points = 1
    else:
        points = 0
    parts.append(('RSI', points, f"{_fmt_rsi(rsi)}, oversold <{config.rsi_oversold:g}"))

    # Price vs SMA20 (0-2)
    distance = sma_distance(current_price, indicators.sma20)
    if distance is None:
        points, detail = 0, 'SMA20 unavailable'
    else:
        points = 2 if distance > 0.02 else 1 if distance > 0 else 0
        detail = f"{distance * 100:+.2f}% vs SMA20"
    parts.append(('Price vs SMA20', points, detail))

    # Trend (0-2)
    trend = indicators.trend
    points = 2 if trend == Trend.UPTREND else 0 if trend == Trend.DOWNTREND else 1
    parts.append(('Trend', points, trend.value))

    # Bullish signals (0-2)
    bullish = indicators.bullish_signals
    parts.append(('Bullish signals', min(2, len(bullish)), ', '.join(bullish) or 'none'))

    # Volume confirmation (0-1)
    points = 1 if volume > config.min_volume_threshold * 2 else 0
    parts.append(('Volume', points, f"{volume:,.0f} vs {config.min_volume_threshold * 2:,.0f} for confirmation"))

    score = min(10, sum(p for _, p, _ in parts))
    return ScoreCard(score=score, components=tuple(parts))


def sell_score(
    indicators: IndicatorSnapshot,
    current_price: float,
    config: StrategyConfig
) -> ScoreCard:
    """
    Score a technical exit (0-10).

    RSI overbought depth 0-3, price below SMA20 0-2, trend 0-3 (downtrend
    weighted heavier than on the entry side), bearish signals 0-2.
    """
    parts = []
    rsi = indicators.rsi14

    # RSI overbought depth (0-3)
    if rsi is not None and rsi > config.rsi_overbought + config.rsi_band:
        points = 3
    elif rsi is not None and rsi > config.rsi_overbought:
        points = 2
    elif rsi is not None and rsi > config.rsi_overbought - config.rsi_band:
        points = 1
    else:
        points = 0
    parts.append(('RSI', points, f"{_fmt_rsi(rsi)}, overbought >{config.rsi_overbought:g}"))

    # Price vs SMA20 (0-2)
    distance = sma_distance(current_price, indicators.sma20)
    if distance is None:
        points, detail = 0, 'SMA20 unavailable'
    else:
        points = 2 if distance < -0.03 else 1 if distance < -0.01 else 0
        detail = f"{distance * 100:+.2f}% vs SMA20"
    parts.append(('Price vs SMA20', points, detail))

    # Trend (0-3)
    trend = indicators.trend
    points = 3 if trend == Trend.DOWNTREND else 0 if trend == Trend.UPTREND else 1
    parts.append(('Trend', points, trend.value))

    # Bearish signals (0-2)
    bearish = indicators.bearish_signals
    parts.append(('Bearish signals', min(2, len(bearish)), ', '.join(bearish) or 'none'))

    score = min(10, sum(p for _, p, _ in parts))
    return ScoreCard(score=score, components=tuple(parts))
