"""
Strategy Engine Module

Turns an indicator snapshot, the live price/volume and the current position
into a BUY/SELL/HOLD Decision.

Two modes, picked by whether a valid position is held:
    FLAT    - risk/volume pre-checks, then a bounded buy score.
    HOLDING - stop loss, take profit, trailing stop, technical sell, hold;
              first match wins.

The engine keeps no state between calls. Cooldown is the caller's concern.
"""
import logging
from typing import Iterable, Optional, Union

import pandas as pd

from .config import IndicatorConfig, StrategyConfig
from .indicators import InsufficientDataError, compute_indicators
from .models import (
    Action,
    Decision,
    IndicatorSnapshot,
    Position,
    PriceBar,
    TradeContext,
    Urgency,
    hold,
)
from .risk import (
    InvalidPositionError,
    RiskAssessment,
    assess_risk,
    calculate_position_size,
    validate_position,
)
from .scoring import buy_score, sell_score, sma_distance

log = logging.getLogger(__name__)


class StrategyEngine:
    """
    Rule-based decision engine for a single symbol.

    Thresholds come from StrategyConfig; nothing is hard-coded.
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        indicator_config: Optional[IndicatorConfig] = None
    ):
        """
        Args:
            config: Strategy thresholds (validated here).
            indicator_config: Windows used by evaluate().
        """
        self.config = (config or StrategyConfig()).validate()
        self.indicator_config = (indicator_config or IndicatorConfig()).validate()

    def evaluate(
        self,
        bars: Union[pd.DataFrame, Iterable[PriceBar]],
        current_price: float,
        volume: float,
        position: Optional[Position] = None,
        context: Optional[TradeContext] = None
    ) -> Decision:
        """
        Compute indicators from bars and decide.

        Too little history is not an error for the caller: it yields HOLD
        with zero confidence.
        """
        try:
            indicators = compute_indicators(bars, self.indicator_config)
        except InsufficientDataError as e:
            return hold(0.0, f"Insufficient data: {e}")

        return self.decide(indicators, current_price, volume, position, context)

    def decide(
        self,
        indicators: IndicatorSnapshot,
        current_price: float,
        volume: float,
        position: Optional[Position] = None,
        context: Optional[TradeContext] = None
    ) -> Decision:
        """
        Choose an action.

        Args:
            indicators: Snapshot from compute_indicators().
            current_price: Live price.
            volume: Live volume.
            position: Current position, if any (read-only).
            context: Recent trades/account info for risk gating.

        Returns:
            Decision with an ordered reasoning trail.
        """
        if current_price <= 0:
            return hold(0.0, f"Invalid current price: {current_price}")

        notes = []
        if position is not None:
            try:
                valid = validate_position(position, current_price, self.config)
            except InvalidPositionError as e:
                notes.append(f"Ignoring recorded position: {e}")
                log.debug(f"Position treated as flat: {e}")
            else:
                return self._manage_position(valid, indicators, current_price)

        decision = self._evaluate_entry(indicators, current_price, volume, context)
        if notes:
            return Decision(
                action=decision.action,
                quantity=decision.quantity,
                confidence=decision.confidence,
                urgency=decision.urgency,
                reasoning=tuple(notes) + decision.reasoning,
            )
        return decision

    # -- FLAT ----------------------------------------------------------------

    def _evaluate_entry(
        self,
        indicators: IndicatorSnapshot,
        current_price: float,
        volume: float,
        context: Optional[TradeContext]
    ) -> Decision:
        cfg = self.config
        risk = assess_risk(context, cfg)

        if risk.should_pause:
            return hold(0.0, *risk.pause_reasons)

        if volume < cfg.min_volume_threshold:
            return hold(
                0.0,
                f"Insufficient trading volume: {volume:,.0f} < {cfg.min_volume_threshold:,.0f}",
            )

        card = buy_score(indicators, current_price, volume, cfg)

        if card.score >= cfg.entry_score_threshold:
            return self._buy(card.score, card.lines(), indicators, current_price, risk)

        return hold(
            0.3,
            f"WAITING FOR CLEAR ENTRY SIGNAL: Buy score {card.score:g}/10 "
            f"(need {cfg.entry_score_threshold:g}+, short by {cfg.entry_score_threshold - card.score:g})",
            f"Current price: ${current_price:.4f}",
            *card.lines(),
        )

    def _buy(
        self,
        score: float,
        score_lines,
        indicators: IndicatorSnapshot,
        current_price: float,
        risk: RiskAssessment
    ) -> Decision:
        cfg = self.config
        size = calculate_position_size(
            current_price, indicators.volatility, cfg, risk.position_size_multiplier
        )

        reasoning = [
            f"STRONG BUY SIGNAL: Score {score:g}/10",
            f"Entry price: ${current_price:.4f}",
            f"Position size: {size:g} (~${size * current_price:.2f}), volatility {indicators.volatility:.4f}",
            *score_lines,
        ]
        if risk.consecutive_losses:
            reasoning.append(
                f"Size reduced x{risk.position_size_multiplier:.2f} after {risk.consecutive_losses} losing trade(s)"
            )
        reasoning += [
            f"Stop loss will be set at {cfg.stop_loss_percent:g}% "
            f"(${current_price * (1 - cfg.stop_loss_percent / 100):.4f})",
            f"Profit target at {cfg.profit_target_percent:g}% "
            f"(${current_price * (1 + cfg.profit_target_percent / 100):.4f})",
        ]

        return Decision(
            action=Action.BUY,
            quantity=size,
            confidence=min(0.95, score / 10),
            urgency=Urgency.HIGH if score >= 9 else Urgency.MEDIUM,
            reasoning=tuple(reasoning),
        )

    # -- HOLDING -------------------------------------------------------------

    def _manage_position(
        self,
        position: Position,
        indicators: IndicatorSnapshot,
        current_price: float
    ) -> Decision:
        cfg = self.config
        pnl_pct = position.pnl_percent(current_price)
        unrealized = position.unrealized_pnl(current_price)
        value = position.value_at(current_price)

        # 1. Stop loss
        if pnl_pct <= -cfg.stop_loss_percent:
            return self._sell(
                position, 0.98, Urgency.IMMEDIATE,
                f"STOP LOSS TRIGGERED: {pnl_pct:.2f}% loss",
                f"Stop loss threshold: -{cfg.stop_loss_percent:g}%",
                f"Position value: ${value:.2f}",
                f"Unrealized P&L: ${unrealized:.2f}",
            )

        # 2. Take profit
        if pnl_pct >= cfg.profit_target_percent:
            return self._sell(
                position, 0.95, Urgency.HIGH,
                f"PROFIT TARGET REACHED: {pnl_pct:.2f}% profit",
                f"Target: {cfg.profit_target_percent:g}%",
                f"Position value: ${value:.2f}",
                f"Unrealized P&L: ${unrealized:.2f}",
            )

        # 3. Trailing stop, only while the stop level still locks in a gain
        hwm = position.high_water_mark
        if hwm is not None and hwm > position.average_price:
            stop_price = hwm * (1 - cfg.trailing_stop_percent / 100)
            locked_pct = (stop_price - position.average_price) / position.average_price * 100
            if current_price <= stop_price and locked_pct > 0:
                return self._sell(
                    position, 0.90, Urgency.HIGH,
                    "TRAILING STOP ACTIVATED: Price fell below trailing stop",
                    f"High water mark: ${hwm:.4f}",
                    f"Trailing stop price: ${stop_price:.4f}",
                    f"Current price: ${current_price:.4f}",
                    f"Protecting accumulated gains of {locked_pct:.2f}%",
                )

        # 4. Technical sell
        card = sell_score(indicators, current_price, cfg)
        if card.score >= cfg.exit_score_threshold and pnl_pct > -cfg.small_loss_band_percent:
            return self._sell(
                position, min(0.85, card.score / 10), Urgency.MEDIUM,
                f"STRONG TECHNICAL SELL SIGNAL: Score {card.score:g}/10",
                *card.lines(),
                f"Current P&L: {pnl_pct:.2f}%",
            )

        # 5. Hold
        reasoning = [
            f"HOLDING POSITION: {position.quantity:g} @ ${position.average_price:.4f}",
            f"Current value: ${value:.2f}",
            f"Current P&L: {pnl_pct:.2f}% (${unrealized:.2f})",
            f"Stop loss at -{cfg.stop_loss_percent:g}% ({pnl_pct + cfg.stop_loss_percent:.2f}% buffer)",
            f"Profit target at {cfg.profit_target_percent:g}% ({cfg.profit_target_percent - pnl_pct:.2f}% to go)",
            f"Technical sell score: {card.score:g}/10 (need {cfg.exit_score_threshold:g}+ for sell)",
        ]
        if card.score >= cfg.exit_score_threshold:
            reasoning.append(
                f"Technical sell suppressed inside the -{cfg.small_loss_band_percent:g}% loss band"
            )
        if -cfg.stop_loss_percent < pnl_pct <= -cfg.warning_zone_percent:
            reasoning.append(f"WARNING: position within {pnl_pct + cfg.stop_loss_percent:.2f}% of stop loss")

        distance = sma_distance(current_price, indicators.sma20)
        if distance is not None:
            reasoning.append(f"Price vs SMA20: {distance * 100:+.2f}%, trend {indicators.trend.value}")

        return hold(0.6, *reasoning)

    def _sell(self, position: Position, confidence: float, urgency: Urgency, *reasoning: str) -> Decision:
        return Decision(
            action=Action.SELL,
            quantity=position.quantity,
            confidence=confidence,
            urgency=urgency,
            reasoning=tuple(reasoning),
        )


def decide(
    indicators: IndicatorSnapshot,
    current_price: float,
    volume: float,
    position: Optional[Position] = None,
    context: Optional[TradeContext] = None,
    config: Optional[StrategyConfig] = None
) -> Decision:
    """Functional entry point: StrategyEngine(config).decide(...)."""
    return StrategyEngine(config).decide(indicators, current_price, volume, position, context)
