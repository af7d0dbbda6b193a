"""
Strategy Configuration Module

Every threshold the engines use lives here as a named, overridable field.
Configs are validated once at startup; a bad value raises ConfigurationError
before any evaluation happens.
"""
import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

log = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when configuration values are malformed."""
    pass


# camelCase keys used by older config files
_ALIASES = {
    'stopLossPercent': 'stop_loss_percent',
    'profitTargetPercent': 'profit_target_percent',
    'trailingStopPercent': 'trailing_stop_percent',
    'rsiOversold': 'rsi_oversold',
    'rsiOverbought': 'rsi_overbought',
    'cooldownMinutes': 'cooldown_minutes',
    'minVolumeThreshold': 'min_volume_threshold',
    'maxPositionSize': 'max_position_size',
    'minPositionValue': 'min_position_value',
    'minPositionQuantity': 'min_position_quantity',
    'entryScoreThreshold': 'entry_score_threshold',
    'exitScoreThreshold': 'exit_score_threshold',
    'minConfidence': 'min_confidence',
}


def _normalise_keys(data: Dict[str, Any], allowed: set, section: str) -> Dict[str, Any]:
    out = {}
    for key, value in data.items():
        name = _ALIASES.get(key, key)
        if name not in allowed:
            log.warning(f"Ignoring unknown {section} option: {key}")
            continue
        out[name] = value
    return out


@dataclass(frozen=True)
class IndicatorConfig:
    """Window lengths and bands for the indicator engine."""
    sma_periods: Tuple[int, int, int] = (20, 50, 200)
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    momentum_period: int = 10
    volatility_window: int = 20
    volatility_min_bars: int = 10
    default_volatility: float = 0.02
    volume_window: int = 20
    trend_lookback: int = 3
    sideways_band: float = 0.01
    rsi_oversold: float = 30
    rsi_overbought: float = 70

    @property
    def min_bars(self) -> int:
        """Bars needed before any snapshot can be produced (RSI deltas)."""
        return self.rsi_period + 1

    def validate(self) -> 'IndicatorConfig':
        if len(self.sma_periods) != 3 or any(p < 1 for p in self.sma_periods):
            raise ConfigurationError(f"sma_periods must be three positive ints: {self.sma_periods}")
        for name in ('rsi_period', 'macd_fast', 'macd_slow', 'macd_signal',
                     'momentum_period', 'volatility_window', 'volume_window'):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        if self.macd_fast >= self.macd_slow:
            raise ConfigurationError(
                f"macd_fast ({self.macd_fast}) must be shorter than macd_slow ({self.macd_slow})"
            )
        if self.trend_lookback < 2:
            raise ConfigurationError("trend_lookback must be >= 2")
        if self.default_volatility <= 0 or self.sideways_band < 0:
            raise ConfigurationError("default_volatility must be > 0 and sideways_band >= 0")
        if not 0 <= self.rsi_oversold < self.rsi_overbought <= 100:
            raise ConfigurationError(
                f"RSI bands must satisfy 0 <= oversold < overbought <= 100 "
                f"(got {self.rsi_oversold}/{self.rsi_overbought})"
            )
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> 'IndicatorConfig':
        names = {f.name for f in fields(cls)}
        values = _normalise_keys(data or {}, names, 'indicator')
        if 'sma_periods' in values:
            values['sma_periods'] = tuple(int(p) for p in values['sma_periods'])
        try:
            return cls(**values).validate()
        except TypeError as e:
            raise ConfigurationError(str(e)) from e


@dataclass(frozen=True)
class StrategyConfig:
    """
    Thresholds for entry scoring, exits, risk gates and sizing.

    Percentages are expressed in percent (2.0 == 2%). Scores are on a 0-10
    scale. Confidence values are on a 0-1 scale.
    """
    # Exits
    stop_loss_percent: float = 2.0
    profit_target_percent: float = 3.0
    trailing_stop_percent: float = 1.0
    small_loss_band_percent: float = 1.0
    warning_zone_percent: float = 1.5

    # RSI bands
    rsi_oversold: float = 30
    rsi_overbought: float = 70
    rsi_band: float = 10

    # Scores
    entry_score_threshold: float = 7
    exit_score_threshold: float = 8

    # Market conditions
    min_volume_threshold: float = 1000
    cooldown_minutes: float = 15

    # Sizing
    max_position_size: float = 0.03
    min_position_size: float = 0.01
    volatility_multiplier: float = 1.2
    price_tiers: Tuple[Tuple[float, float], ...] = ((4000.0, 0.8), (3000.0, 0.9))

    # Ghost position filter
    min_position_value: float = 10.0
    min_position_quantity: float = 0.001

    # Risk gates
    max_daily_trades: int = 10
    max_consecutive_losses: int = 3
    max_drawdown_percent: float = 5.0
    loss_size_reduction: float = 0.8

    # Caller-side auto-trade gate
    min_confidence: float = 0.6

    def __post_init__(self):
        # Highest tier first so the first match wins, however the tiers were given
        tiers = tuple(sorted(((float(t), float(f)) for t, f in self.price_tiers), reverse=True))
        object.__setattr__(self, 'price_tiers', tiers)

    def validate(self) -> 'StrategyConfig':
        for name in ('stop_loss_percent', 'profit_target_percent', 'trailing_stop_percent'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive (got {getattr(self, name)})")
        for name in ('small_loss_band_percent', 'warning_zone_percent', 'min_volume_threshold',
                     'cooldown_minutes', 'min_position_value', 'min_position_quantity',
                     'max_drawdown_percent', 'rsi_band'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative (got {getattr(self, name)})")
        if not 0 <= self.rsi_oversold < self.rsi_overbought <= 100:
            raise ConfigurationError(
                f"RSI bands must satisfy 0 <= oversold < overbought <= 100 "
                f"(got {self.rsi_oversold}/{self.rsi_overbought})"
            )
        for name in ('entry_score_threshold', 'exit_score_threshold'):
            if not 0 <= getattr(self, name) <= 10:
                raise ConfigurationError(f"{name} must be within 0-10")
        if self.min_position_size <= 0 or self.min_position_size > self.max_position_size:
            raise ConfigurationError(
                f"Need 0 < min_position_size <= max_position_size "
                f"(got {self.min_position_size}/{self.max_position_size})"
            )
        if self.volatility_multiplier <= 0:
            raise ConfigurationError("volatility_multiplier must be positive")
        for threshold, factor in self.price_tiers:
            if threshold < 0 or factor <= 0:
                raise ConfigurationError(f"Invalid price tier: ({threshold}, {factor})")
        if self.max_daily_trades < 1 or self.max_consecutive_losses < 1:
            raise ConfigurationError("max_daily_trades and max_consecutive_losses must be >= 1")
        if not 0 < self.loss_size_reduction <= 1:
            raise ConfigurationError("loss_size_reduction must be within (0, 1]")
        if not 0 <= self.min_confidence <= 1:
            raise ConfigurationError("min_confidence must be within 0-1")
        return self

    def override(self, **changes) -> 'StrategyConfig':
        """Copy with some fields replaced, validated."""
        try:
            config = replace(self, **changes)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid strategy config: {e}") from e
        return config.validate()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> 'StrategyConfig':
        names = {f.name for f in fields(cls)}
        values = _normalise_keys(data or {}, names, 'strategy')
        try:
            config = cls(**values)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid strategy config: {e}") from e
        return config.validate()


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Read a JSON config file.

    Args:
        path: Location of the file.

    Returns:
        Parsed dict, or an empty dict when the file does not exist.

    Raises:
        ConfigurationError: If the file is not valid JSON.
    """
    if not path.exists():
        log.info(f"No config file at {path}, using defaults")
        return {}
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Malformed config file {path}: {e}") from e
