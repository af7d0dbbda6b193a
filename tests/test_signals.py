"""Tests for the strategy engine."""
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd
import pytest

from strategy import StrategyConfig, StrategyEngine, decide
from strategy.models import (
    AccountInfo,
    Action,
    IndicatorSnapshot,
    Position,
    Trade,
    TradeContext,
    Trend,
    Urgency,
    MACD_BEARISH,
    MACD_BULLISH,
    RSI_OVERBOUGHT,
    RSI_OVERSOLD,
    SMA_BEARISH,
    SMA_BULLISH,
)


def make_snapshot(**overrides):
    values = dict(
        close=100.0,
        bars=60,
        sma20=100.0,
        sma50=100.0,
        sma200=None,
        rsi14=55.0,
        macd=None,
        momentum10=0.0,
        volatility=0.02,
        volume_ratio=1.0,
        trend=Trend.NEUTRAL,
        signals=(),
        sma20_history=(),
    )
    values.update(overrides)
    return IndicatorSnapshot(**values)


@pytest.fixture
def engine():
    return StrategyEngine()


@pytest.fixture
def strong_buy():
    """Every buy sub-score maxed out at price 103."""
    return make_snapshot(
        rsi14=25.0,
        trend=Trend.UPTREND,
        signals=(RSI_OVERSOLD, SMA_BULLISH, MACD_BULLISH),
    )


@pytest.fixture
def strong_sell():
    """Every sell sub-score maxed out at price 96."""
    return make_snapshot(
        rsi14=85.0,
        trend=Trend.DOWNTREND,
        signals=(RSI_OVERBOUGHT, SMA_BEARISH, MACD_BEARISH),
    )


def losing_sells(n, start=None):
    start = start or datetime(2024, 3, 1, tzinfo=timezone.utc)
    return tuple(
        Trade(
            id=f"t{i}",
            timestamp=(start + timedelta(hours=i)).isoformat(),
            symbol='ETHUSD',
            action='SELL',
            quantity=0.02,
            price=100.0,
            pnl=-1.0,
        )
        for i in range(n)
    )


class TestHoldingExits:

    def test_stop_loss(self):
        engine = StrategyEngine(StrategyConfig(stop_loss_percent=2.5))
        position = Position('ETHUSD', 1.0, 100.0, high_water_mark=100.0)

        decision = engine.decide(make_snapshot(), 97.5, 5000, position)

        assert decision.action == Action.SELL
        assert decision.quantity == 1.0
        assert decision.urgency == Urgency.IMMEDIATE
        assert decision.confidence == pytest.approx(0.98)
        assert decision.reasoning[0].startswith('STOP LOSS TRIGGERED')

    def test_take_profit(self):
        engine = StrategyEngine(StrategyConfig(profit_target_percent=4.0))
        position = Position('ETHUSD', 1.0, 100.0, high_water_mark=100.0)

        decision = engine.decide(make_snapshot(), 104.0, 5000, position)

        assert decision.action == Action.SELL
        assert decision.quantity == 1.0
        assert decision.urgency == Urgency.HIGH
        assert decision.confidence == pytest.approx(0.95)

    def test_trailing_stop_protects_gain(self, engine):
        position = Position('ETHUSD', 1.0, 100.0, high_water_mark=103.0)

        decision = engine.decide(make_snapshot(), 101.5, 5000, position)

        assert decision.action == Action.SELL
        assert decision.urgency == Urgency.HIGH
        assert decision.confidence == pytest.approx(0.90)
        assert decision.reasoning[0].startswith('TRAILING STOP')

    def test_trailing_stop_needs_gain_to_lock_in(self, engine):
        # Stop level 99.495 sits below the entry price
        position = Position('ETHUSD', 1.0, 100.0, high_water_mark=100.5)

        decision = engine.decide(make_snapshot(), 99.4, 5000, position)

        assert decision.action == Action.HOLD
        assert decision.confidence == pytest.approx(0.6)

    def test_technical_sell(self, engine, strong_sell):
        position = Position('ETHUSD', 0.5, 96.5)

        decision = engine.decide(strong_sell, 96.0, 5000, position)

        assert decision.action == Action.SELL
        assert decision.quantity == 0.5
        assert decision.urgency == Urgency.MEDIUM
        assert decision.confidence == pytest.approx(0.85)

    def test_technical_sell_blocked_inside_small_loss_band(self, engine, strong_sell):
        position = Position('ETHUSD', 0.5, 97.5)

        decision = engine.decide(strong_sell, 96.0, 5000, position)

        assert decision.action == Action.HOLD
        assert decision.confidence == pytest.approx(0.6)
        assert any('suppressed' in line for line in decision.reasoning)
        assert any(line.startswith('WARNING') for line in decision.reasoning)

    def test_hold_reports_distances(self, engine):
        position = Position('ETHUSD', 1.0, 100.0, high_water_mark=100.0)

        decision = engine.decide(make_snapshot(), 100.5, 5000, position)

        assert decision.action == Action.HOLD
        assert decision.quantity == 0
        assert decision.reasoning[0].startswith('HOLDING POSITION')
        assert any('Profit target' in line for line in decision.reasoning)

    def test_exit_ignores_risk_pause(self, engine):
        position = Position('ETHUSD', 1.0, 100.0)
        context = TradeContext(recent_trades=losing_sells(5))

        decision = engine.decide(make_snapshot(), 97.0, 5000, position, context)

        assert decision.action == Action.SELL


class TestFlatEntries:

    def test_low_score_waits(self, engine):
        decision = engine.decide(make_snapshot(), 100.0, 1000)

        assert decision.action == Action.HOLD
        assert decision.quantity == 0
        assert decision.confidence == pytest.approx(0.3)
        assert 'Buy score 1/10' in decision.reasoning[0]

    def test_strong_buy(self, engine, strong_buy):
        decision = engine.decide(strong_buy, 103.0, 5000)

        assert decision.action == Action.BUY
        assert decision.urgency == Urgency.HIGH
        assert decision.confidence == pytest.approx(0.95)
        assert decision.quantity == pytest.approx(0.03)

    def test_buy_at_threshold(self, engine):
        snapshot = make_snapshot(rsi14=35.0, trend=Trend.UPTREND, signals=(SMA_BULLISH,))

        decision = engine.decide(snapshot, 101.0, 2500)

        assert decision.action == Action.BUY
        assert decision.urgency == Urgency.MEDIUM
        assert decision.confidence == pytest.approx(0.7)

    def test_low_volume_blocks_entry(self, engine, strong_buy):
        decision = engine.decide(strong_buy, 103.0, 500)

        assert decision.action == Action.HOLD
        assert decision.confidence == 0
        assert decision.reasoning[0].startswith('Insufficient trading volume')

    def test_ghost_position_takes_flat_path(self, engine):
        position = Position('ETHUSD', 0.0001, 50.0)

        decision = engine.decide(make_snapshot(), 100.0, 1000, position)

        assert decision.action == Action.HOLD
        assert decision.confidence == pytest.approx(0.3)
        assert decision.reasoning[0].startswith('Ignoring recorded position')

    def test_ghost_position_can_still_buy(self, engine, strong_buy):
        position = Position('ETHUSD', 0.05, 103.0)  # ~$5

        decision = engine.decide(strong_buy, 103.0, 5000, position)

        assert decision.action == Action.BUY

    def test_non_positive_price_holds(self, engine, strong_buy):
        decision = engine.decide(strong_buy, 0.0, 5000)

        assert decision.action == Action.HOLD
        assert decision.confidence == 0

    def test_idempotent(self, engine, strong_buy):
        position = Position('ETHUSD', 1.0, 100.0, high_water_mark=102.0)
        context = TradeContext(recent_trades=losing_sells(1))

        assert engine.decide(strong_buy, 103.0, 5000) == engine.decide(strong_buy, 103.0, 5000)
        assert (engine.decide(strong_buy, 101.0, 5000, position, context)
                == engine.decide(strong_buy, 101.0, 5000, position, context))


class TestRiskGates:

    def test_consecutive_losses_pause(self, engine, strong_buy):
        context = TradeContext(recent_trades=losing_sells(3))

        decision = engine.decide(strong_buy, 103.0, 5000, context=context)

        assert decision.action == Action.HOLD
        assert decision.confidence == 0
        assert 'consecutive losses' in decision.reasoning[0]

    def test_losses_shrink_size(self, engine, strong_buy):
        context = TradeContext(recent_trades=losing_sells(2))

        decision = engine.decide(strong_buy, 103.0, 5000, context=context)

        # 0.03 * 1.5 * 0.8 ** 2
        assert decision.action == Action.BUY
        assert decision.quantity == pytest.approx(0.0288)

    def test_daily_trade_limit(self, engine, strong_buy):
        day = datetime(2024, 3, 1, tzinfo=timezone.utc)
        trades = tuple(
            Trade(f"t{i}", (day + timedelta(minutes=30 * i)).isoformat(), 'ETHUSD', 'BUY', 0.01, 100.0)
            for i in range(10)
        )
        context = TradeContext(recent_trades=trades, as_of=day + timedelta(hours=12))

        decision = engine.decide(strong_buy, 103.0, 5000, context=context)

        assert decision.action == Action.HOLD
        assert 'Daily trade limit' in decision.reasoning[0]

    def test_daily_limit_resets_next_day(self, engine, strong_buy):
        day = datetime(2024, 3, 1, tzinfo=timezone.utc)
        trades = tuple(
            Trade(f"t{i}", (day + timedelta(minutes=30 * i)).isoformat(), 'ETHUSD', 'BUY', 0.01, 100.0)
            for i in range(10)
        )
        context = TradeContext(recent_trades=trades, as_of=day + timedelta(days=1))

        assert engine.decide(strong_buy, 103.0, 5000, context=context).action == Action.BUY

    def test_drawdown_pause(self, engine, strong_buy):
        context = TradeContext(account_info=AccountInfo(equity=94.0, peak_equity=100.0))

        decision = engine.decide(strong_buy, 103.0, 5000, context=context)

        assert decision.action == Action.HOLD
        assert 'Drawdown' in decision.reasoning[0]


def test_evaluate_with_short_history(engine):
    bars = pd.DataFrame({
        'open': np.full(10, 100.0),
        'high': np.full(10, 101.0),
        'low': np.full(10, 99.0),
        'close': np.full(10, 100.0),
        'volume': np.full(10, 5000.0),
    })

    decision = engine.evaluate(bars, 100.0, 5000)

    assert decision.action == Action.HOLD
    assert decision.confidence == 0
    assert decision.reasoning[0].startswith('Insufficient data')


def test_module_level_decide(strong_buy):
    config = StrategyConfig(entry_score_threshold=10.0)
    assert decide(strong_buy, 103.0, 5000, config=config).action == Action.BUY

    config = config.override(min_volume_threshold=10_000)
    assert decide(strong_buy, 103.0, 5000, config=config).action == Action.HOLD
