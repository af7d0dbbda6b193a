"""Decision engine: technical indicators and the rule-based strategy."""
from .config import ConfigurationError, IndicatorConfig, StrategyConfig
from .indicators import (
    InsufficientDataError,
    calculate_sma,
    calculate_ema,
    calculate_rsi,
    calculate_macd,
    calculate_momentum,
    calculate_volatility,
    add_all_indicators,
    compute_indicators
)
from .models import (
    Action,
    Decision,
    IndicatorSnapshot,
    Position,
    PriceBar,
    Trade,
    TradeContext,
    Trend,
    Urgency
)
from .risk import InvalidPositionError
from .signals import StrategyEngine, decide

__all__ = [
    'ConfigurationError',
    'IndicatorConfig',
    'StrategyConfig',
    'InsufficientDataError',
    'InvalidPositionError',
    'calculate_sma',
    'calculate_ema',
    'calculate_rsi',
    'calculate_macd',
    'calculate_momentum',
    'calculate_volatility',
    'add_all_indicators',
    'compute_indicators',
    'Action',
    'Decision',
    'IndicatorSnapshot',
    'Position',
    'PriceBar',
    'Trade',
    'TradeContext',
    'Trend',
    'Urgency',
    'StrategyEngine',
    'decide'
]
