"""
Technical Indicators Module

Pure pandas/numpy implementations - no TA-Lib required.
The calculate_* functions take a DataFrame with OHLCV columns and return
Series aligned to it; compute_indicators() reduces them to the latest
IndicatorSnapshot.

Smoothing rules:
    EMA  - seeded with the SMA of the first `period` values, then
           ema = a * x + (1 - a) * prev with a = 2 / (period + 1).
    RSI  - Wilder: first average gain/loss is the simple mean of the first
           `period` deltas, then avg = (prev * (period - 1) + x) / period.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import IndicatorConfig
from .models import (
    IndicatorSnapshot,
    MacdValues,
    PriceBar,
    Trend,
    MACD_BEARISH,
    MACD_BEARISH_CROSSOVER,
    MACD_BULLISH,
    MACD_BULLISH_CROSSOVER,
    RSI_OVERBOUGHT,
    RSI_OVERSOLD,
    SMA_BEARISH,
    SMA_BULLISH,
)

log = logging.getLogger(__name__)

OHLCV_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


class InsufficientDataError(ValueError):
    """Raised when there are too few bars for the shortest-window indicator."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Need at least {required} bars to compute indicators, got {available}"
        )


def bars_to_frame(bars: Union[pd.DataFrame, Sequence[PriceBar]]) -> pd.DataFrame:
    """
    Normalise input bars to a DataFrame.

    Args:
        bars: DataFrame with OHLCV columns, or PriceBar records in date order.

    Returns:
        DataFrame indexed by date with float OHLCV columns.
    """
    if isinstance(bars, pd.DataFrame):
        if 'close' not in bars.columns:
            raise ValueError("Bar DataFrame needs a 'close' column")
        return bars.astype({c: float for c in OHLCV_COLUMNS if c in bars.columns})

    records = list(bars)
    df = pd.DataFrame(
        [[b.open, b.high, b.low, b.close, b.volume] for b in records],
        columns=OHLCV_COLUMNS,
        index=pd.Index([b.date for b in records], name='date'),
        dtype=float,
    )
    return df


def _seeded_ewm(series: pd.Series, period: int, alpha: float) -> pd.Series:
    """Recursive average seeded with the SMA of the first `period` valid values."""
    values = series.astype(float)
    valid_pos = np.flatnonzero(values.notna().to_numpy())
    if len(valid_pos) < period:
        return pd.Series(np.nan, index=series.index)

    first = valid_pos[0]
    seed_pos = first + period - 1
    seeded = values.copy()
    seeded.iloc[seed_pos] = values.iloc[first:seed_pos + 1].mean()
    seeded.iloc[:seed_pos] = np.nan

    # adjust=False starts the recursion at the first non-NaN value (the seed)
    return seeded.ewm(alpha=alpha, adjust=False).mean()


def calculate_sma(df: pd.DataFrame, period: int, column: str = 'close') -> pd.Series:
    """Simple moving average; NaN until `period` values exist."""
    return df[column].rolling(window=period).mean()


def calculate_ema(series: pd.Series, period: int) -> pd.Series:
    """
    Exponential moving average seeded with an SMA.

    Args:
        series: Values to smooth. Leading NaNs are skipped.
        period: EMA span.

    Returns:
        EMA values, NaN before the seed.
    """
    return _seeded_ewm(series, period, alpha=2.0 / (period + 1))


def calculate_rsi(df: pd.DataFrame, period: int = 14, column: str = 'close') -> pd.Series:
    """
    Relative Strength Index (RSI), Wilder smoothing.

    Measures momentum by comparing recent gains to recent losses.
    Range: 0-100. Typically >70 = overbought, <30 = oversold.

    Args:
        df: DataFrame with price data.
        period: Lookback period (default 14).
        column: Price column to use.

    Returns:
        RSI values as Series, defined from bar `period + 1` onwards.
    """
    delta = df[column].diff()

    gain = delta.clip(lower=0)
    loss = -delta.clip(upper=0)

    avg_gain = _seeded_ewm(gain, period, alpha=1.0 / period)
    avg_loss = _seeded_ewm(loss, period, alpha=1.0 / period)

    rs = avg_gain / avg_loss.replace(0, np.nan)
    rsi = 100 - (100 / (1 + rs))

    # No losses in the window: pinned high, or flat if nothing moved either
    rsi = rsi.mask((avg_loss == 0) & (avg_gain > 0), 100.0)
    rsi = rsi.mask((avg_loss == 0) & (avg_gain == 0), 50.0)

    return rsi


def calculate_macd(
    df: pd.DataFrame,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
    column: str = 'close'
) -> tuple[pd.Series, pd.Series, pd.Series]:
    """
    Moving Average Convergence Divergence (MACD)

    Trend-following momentum indicator.

    Args:
        df: DataFrame with price data.
        fast: Fast EMA period.
        slow: Slow EMA period.
        signal: Signal line period.
        column: Price column to use.

    Returns:
        Tuple of (macd_line, signal_line, histogram) Series.
    """
    exp_fast = calculate_ema(df[column], fast)
    exp_slow = calculate_ema(df[column], slow)

    macd_line = exp_fast - exp_slow
    signal_line = calculate_ema(macd_line, signal)
    histogram = macd_line - signal_line

    return macd_line, signal_line, histogram


def calculate_momentum(df: pd.DataFrame, period: int = 10, column: str = 'close') -> pd.Series:
    """Price change over `period` bars (close[t] - close[t - period])."""
    return df[column].diff(period)


def calculate_volatility(
    df: pd.DataFrame,
    window: int = 20,
    min_bars: int = 10,
    default: float = 0.02,
    column: str = 'close'
) -> float:
    """
    Standard deviation of day-over-day returns over the last `window` bars.

    Used only to damp position size, so short histories fall back to a
    conservative default instead of failing.
    """
    closes = df[column]
    if len(closes) < min_bars:
        return default

    returns = closes.tail(window).pct_change().dropna()
    if len(returns) < 2:
        return default

    return float(returns.std(ddof=0))


def calculate_volume_ratio(df: pd.DataFrame, window: int = 20) -> pd.Series:
    """Volume relative to its rolling mean; NaN where the mean is zero."""
    mean = df['volume'].rolling(window=window).mean()
    return df['volume'] / mean.replace(0, np.nan)


def classify_trend(
    price: float,
    sma20_recent: Sequence[float],
    sma50: Optional[float] = None,
    sideways_band: float = 0.01
) -> Trend:
    """
    Classify trend from the recent SMA20 slope and where price sits.

    Args:
        price: Latest close.
        sma20_recent: Most recent SMA20 values, oldest first.
        sma50: Latest SMA50, if available.
        sideways_band: Max relative distance from SMA20 for SIDEWAYS.

    Returns:
        Trend classification. Equal SMA values classify as NEUTRAL.
    """
    if len(sma20_recent) < 2:
        return Trend.NEUTRAL

    pairs = list(zip(sma20_recent, sma20_recent[1:]))
    rising = all(b > a for a, b in pairs)
    falling = all(b < a for a, b in pairs)
    latest = sma20_recent[-1]

    if rising and price > latest and (sma50 is None or price > sma50):
        return Trend.UPTREND
    if falling and price < latest and (sma50 is None or price < sma50):
        return Trend.DOWNTREND
    if rising or falling or all(b == a for a, b in pairs):
        return Trend.NEUTRAL

    if latest > 0 and abs(price - latest) / latest <= sideways_band:
        return Trend.SIDEWAYS
    return Trend.NEUTRAL


def tag_signals(
    rsi: Optional[float],
    sma20: Optional[float],
    sma50: Optional[float],
    macd: Optional[MacdValues],
    previous_macd: Optional[MacdValues] = None,
    oversold: float = 30,
    overbought: float = 70
) -> tuple[str, ...]:
    """
    Categorical signal flags. Categories are independent; equal values emit
    nothing for that category.
    """
    signals: List[str] = []

    if rsi is not None:
        if rsi < oversold:
            signals.append(RSI_OVERSOLD)
        elif rsi > overbought:
            signals.append(RSI_OVERBOUGHT)

    if sma20 is not None and sma50 is not None:
        if sma20 > sma50:
            signals.append(SMA_BULLISH)
        elif sma20 < sma50:
            signals.append(SMA_BEARISH)

    if macd is not None:
        if macd.line > macd.signal:
            signals.append(MACD_BULLISH)
        elif macd.line < macd.signal:
            signals.append(MACD_BEARISH)

        if previous_macd is not None:
            if previous_macd.line <= previous_macd.signal and macd.line > macd.signal:
                signals.append(MACD_BULLISH_CROSSOVER)
            elif previous_macd.line >= previous_macd.signal and macd.line < macd.signal:
                signals.append(MACD_BEARISH_CROSSOVER)

    return tuple(signals)


def add_all_indicators(df: pd.DataFrame, config: Optional[IndicatorConfig] = None) -> pd.DataFrame:
    """
    Add all standard indicators to a DataFrame.

    Args:
        df: DataFrame with OHLCV columns.
        config: Window configuration.

    Returns:
        DataFrame with added indicator columns.
    """
    config = config or IndicatorConfig()
    df = df.copy()

    short, mid, long_ = config.sma_periods
    df['sma20'] = calculate_sma(df, short)
    df['sma50'] = calculate_sma(df, mid)
    df['sma200'] = calculate_sma(df, long_)

    df['rsi14'] = calculate_rsi(df, config.rsi_period)

    df['macd'], df['macd_signal'], df['macd_hist'] = calculate_macd(
        df, config.macd_fast, config.macd_slow, config.macd_signal
    )

    df['momentum10'] = calculate_momentum(df, config.momentum_period)

    if 'volume' in df.columns:
        df['volume_ratio'] = calculate_volume_ratio(df, config.volume_window)
    else:
        df['volume_ratio'] = np.nan

    return df


def _value(row: pd.Series, column: str) -> Optional[float]:
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    return float(value)


def _macd_at(row: pd.Series) -> Optional[MacdValues]:
    line, signal, hist = _value(row, 'macd'), _value(row, 'macd_signal'), _value(row, 'macd_hist')
    if line is None or signal is None or hist is None:
        return None
    return MacdValues(line=line, signal=signal, histogram=hist)


def compute_indicators(
    bars: Union[pd.DataFrame, Iterable[PriceBar]],
    config: Optional[IndicatorConfig] = None
) -> IndicatorSnapshot:
    """
    Compute the latest indicator snapshot from a full bar history.

    Args:
        bars: Date-ascending bars (PriceBar records or an OHLCV DataFrame).
        config: Window configuration (defaults to IndicatorConfig()).

    Returns:
        IndicatorSnapshot for the last bar.

    Raises:
        InsufficientDataError: Fewer than rsi_period + 1 bars.
        ValueError: Missing, NaN or non-positive closes.
    """
    config = config or IndicatorConfig()
    df = bars_to_frame(bars if isinstance(bars, pd.DataFrame) else list(bars))

    if len(df) < config.min_bars:
        raise InsufficientDataError(config.min_bars, len(df))

    closes = df['close']
    if closes.isna().any() or (closes <= 0).any():
        raise ValueError("Bar closes must be positive numbers")

    df = add_all_indicators(df, config)
    latest = df.iloc[-1]
    previous = df.iloc[-2]

    close = float(latest['close'])
    sma20 = _value(latest, 'sma20')
    sma50 = _value(latest, 'sma50')
    rsi = _value(latest, 'rsi14')
    macd = _macd_at(latest)

    sma20_history = tuple(float(v) for v in df['sma20'].dropna().tail(config.trend_lookback))
    if len(sma20_history) < config.trend_lookback:
        sma20_history = ()

    snapshot = IndicatorSnapshot(
        close=close,
        bars=len(df),
        sma20=sma20,
        sma50=sma50,
        sma200=_value(latest, 'sma200'),
        rsi14=rsi,
        macd=macd,
        momentum10=_value(latest, 'momentum10'),
        volatility=calculate_volatility(
            df,
            window=config.volatility_window,
            min_bars=config.volatility_min_bars,
            default=config.default_volatility,
        ),
        volume_ratio=_value(latest, 'volume_ratio'),
        trend=classify_trend(close, sma20_history, sma50, config.sideways_band),
        signals=tag_signals(
            rsi, sma20, sma50, macd,
            previous_macd=_macd_at(previous),
            oversold=config.rsi_oversold,
            overbought=config.rsi_overbought,
        ),
        sma20_history=sma20_history,
    )

    log.debug(f"Indicators over {len(df)} bars: rsi={rsi} sma20={sma20} trend={snapshot.trend.value}")
    return snapshot
