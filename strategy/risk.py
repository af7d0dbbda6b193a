"""
Risk Management Module

Position validation, risk gating and position sizing for the strategy
engine. Everything here is computed from the inputs of a single call; trade
history and account state come in through TradeContext.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from .config import StrategyConfig
from .models import AccountInfo, Position, Trade, TradeContext

log = logging.getLogger(__name__)


class InvalidPositionError(ValueError):
    """Raised when a recorded position is too small (or malformed) to manage."""
    pass


@dataclass(frozen=True)
class RiskAssessment:
    """Outcome of the pre-entry risk gates."""
    should_pause: bool = False
    pause_reasons: List[str] = field(default_factory=list)
    position_size_multiplier: float = 1.0
    risk_level: str = 'LOW'
    consecutive_losses: int = 0
    trades_today: int = 0
    drawdown_percent: float = 0.0


def validate_position(
    position: Optional[Position],
    current_price: float,
    config: StrategyConfig
) -> Position:
    """
    Check that a recorded position is worth managing.

    Dust left over after partial fills ("ghost" positions) is rejected so the
    engine evaluates entries instead of trying to manage it.

    Args:
        position: Position from the store, or None.
        current_price: Latest price used to value the position.
        config: Minimum quantity/value thresholds.

    Returns:
        The same position when valid.

    Raises:
        InvalidPositionError: If absent, below minimum quantity or value, or
            carrying a non-positive average price.
    """
    if position is None:
        raise InvalidPositionError("No position")

    quantity = position.quantity or 0.0
    value = quantity * current_price

    if quantity < config.min_position_quantity:
        raise InvalidPositionError(
            f"Quantity {quantity} below minimum {config.min_position_quantity}"
        )
    if value < config.min_position_value:
        raise InvalidPositionError(
            f"Position value ${value:.2f} below minimum ${config.min_position_value:.2f}"
        )
    if position.average_price <= 0:
        raise InvalidPositionError(f"Average price must be positive (got {position.average_price})")

    return position


def count_consecutive_losses(trades: Iterable[Trade]) -> int:
    """
    Count losing exits at the end of the trade history.

    Only trades with realised P&L (exits) are considered; the streak stops at
    the most recent exit that did not lose money.
    """
    losses = 0
    for trade in reversed(list(trades)):
        if trade.pnl is None:
            continue
        if trade.pnl < 0:
            losses += 1
        else:
            break
    return losses


def count_trades_on(trades: Iterable[Trade], day: datetime) -> int:
    """Trades executed on the UTC calendar day of `day`."""
    target = _as_utc(day).date()
    return sum(1 for t in trades if _as_utc(t.executed_at).date() == target)


def drawdown_percent(account: Optional[AccountInfo]) -> float:
    """Drop from peak equity in percent; 0 when the peak is unknown."""
    if account is None or not account.peak_equity or account.peak_equity <= 0:
        return 0.0
    return max(0.0, (account.peak_equity - account.equity) / account.peak_equity * 100)


def assess_risk(context: Optional[TradeContext], config: StrategyConfig) -> RiskAssessment:
    """
    Evaluate the pre-entry gates: consecutive losses, daily trade count and
    account drawdown.

    Args:
        context: Recent trades, account info and evaluation time.
        config: Gate limits.

    Returns:
        RiskAssessment. Losing streaks below the pause limit shrink the size
        multiplier instead of pausing.
    """
    context = context or TradeContext()
    trades = list(context.recent_trades)
    if not trades and context.last_trade is not None:
        trades = [context.last_trade]

    reasons = []
    level = 'LOW'

    losses = count_consecutive_losses(trades)
    if losses >= config.max_consecutive_losses:
        reasons.append(f"{losses} consecutive losses (max {config.max_consecutive_losses}) - pausing to reassess")
        level = 'HIGH'

    today = 0
    if context.as_of is not None:
        today = count_trades_on(trades, context.as_of)
        if today >= config.max_daily_trades:
            reasons.append(f"Daily trade limit reached: {today}/{config.max_daily_trades}")
            level = 'HIGH'

    drawdown = drawdown_percent(context.account_info)
    if drawdown >= config.max_drawdown_percent:
        reasons.append(f"Drawdown {drawdown:.2f}% exceeds max {config.max_drawdown_percent:.2f}%")
        level = 'CRITICAL'

    multiplier = config.loss_size_reduction ** losses
    if not reasons and losses:
        level = 'MEDIUM'

    if reasons:
        log.debug(f"Entries paused ({level}): {'; '.join(reasons)}")

    return RiskAssessment(
        should_pause=bool(reasons),
        pause_reasons=reasons,
        position_size_multiplier=multiplier,
        risk_level=level,
        consecutive_losses=losses,
        trades_today=today,
        drawdown_percent=drawdown,
    )


def volatility_adjustment(volatility: float, config: StrategyConfig) -> float:
    """Inverse-volatility multiplier clamped to [0.5, 1.5]."""
    if volatility <= 0:
        return 1.5
    return max(0.5, min(1.5, 1 / (volatility * config.volatility_multiplier)))


def price_tier_factor(price: float, config: StrategyConfig) -> float:
    for threshold, factor in config.price_tiers:
        if price > threshold:
            return factor
    return 1.0


def calculate_position_size(
    current_price: float,
    volatility: float,
    config: StrategyConfig,
    risk_multiplier: float = 1.0
) -> float:
    """
    Size a new entry.

    Args:
        current_price: Expected entry price.
        volatility: Recent return volatility (stdev of daily returns).
        config: Size limits and damping parameters.
        risk_multiplier: Extra scaling from the risk assessment.

    Returns:
        Quantity in units, within [min_position_size, max_position_size].
        The price tier is applied after the cap so expensive instruments
        size down even when low volatility pushes the raw size past it.
    """
    size = config.max_position_size
    size *= volatility_adjustment(volatility, config)
    size *= risk_multiplier

    size = min(config.max_position_size, size)
    size *= price_tier_factor(current_price, config)
    size = max(config.min_position_size, size)
    return round(size, 6)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def cooldown_remaining(
    last_trade: Optional[Trade],
    now: datetime,
    cooldown_minutes: float
) -> timedelta:
    """
    Time left before another trade may be initiated.

    Returns:
        Zero timedelta when no cooldown is active.
    """
    if last_trade is None or cooldown_minutes <= 0:
        return timedelta(0)

    ends = _as_utc(last_trade.executed_at) + timedelta(minutes=cooldown_minutes)
    remaining = ends - _as_utc(now)
    return remaining if remaining > timedelta(0) else timedelta(0)
