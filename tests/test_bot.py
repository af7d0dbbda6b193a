"""Tests for the orchestrator cycle (paper mode, fake market data)."""
import json

import numpy as np
import pandas as pd
import pytest

import bot as bot_module
from strategy.models import AccountInfo, Action, Decision


class FakeData:

    def __init__(self, price=3000.0, volume=50000.0, bars=60):
        self.price = price
        self.volume = volume
        self.bars = bars
        self.calls = 0

    def get_quote(self, ticker):
        self.calls += 1
        return {'ticker': ticker, 'price': self.price, 'volume': self.volume}

    def get_history(self, ticker, period='1y'):
        closes = 3000 + np.sin(np.arange(self.bars)) * 20
        return pd.DataFrame({
            'open': closes,
            'high': closes + 5,
            'low': closes - 5,
            'close': closes,
            'volume': np.full(self.bars, 40000.0),
        })


class FakeBroker:

    def __init__(self, qty=None, error=None):
        self.qty = qty
        self.error = error

    def get_position(self, symbol):
        if self.error:
            raise self.error
        if self.qty is None:
            return None
        return {'symbol': symbol, 'qty': self.qty}

    def get_account_info(self, peak_equity=None):
        return AccountInfo(equity=10000.0, peak_equity=peak_equity or 10000.0)


@pytest.fixture
def trading_bot(tmp_path, monkeypatch):
    for name in ('TRADING_TICKER', 'TRADING_SYMBOL', 'COOLDOWN_MINUTES'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(bot_module, 'BASE_DIR', tmp_path)

    config_file = tmp_path / 'bot_config.json'
    config_file.write_text(json.dumps({
        'ticker': 'ETH-USD',
        'symbol': 'ETHUSD',
        'strategy': {'cooldown_minutes': 15}
    }))

    instance = bot_module.TradingBot(config_path=str(config_file), paper=True)
    instance.data = FakeData()
    return instance


def force_decision(monkeypatch, instance, action, quantity=0.02, confidence=0.9):
    decision = Decision(action=action, quantity=quantity, confidence=confidence)
    monkeypatch.setattr(instance.engine, 'decide', lambda *args, **kwargs: decision)
    return decision


def test_paper_buy_is_recorded(trading_bot, monkeypatch):
    force_decision(monkeypatch, trading_bot, Action.BUY)

    decision = trading_bot._cycle()

    assert decision.action == Action.BUY
    position = trading_bot.state.get_position('ETHUSD')
    assert position.quantity == pytest.approx(0.02)
    assert position.average_price == 3000.0
    assert trading_bot.state.get_last_decision()['symbol'] == 'ETHUSD'


def test_low_confidence_not_executed(trading_bot, monkeypatch):
    force_decision(monkeypatch, trading_bot, Action.BUY, confidence=0.4)

    trading_bot._cycle()

    assert trading_bot.state.get_position('ETHUSD') is None


def test_flat_cooldown_skips_cycle(trading_bot):
    trading_bot.state.record_trade('ETHUSD', 'BUY', 0.02, 3000.0)
    trading_bot.state.record_trade('ETHUSD', 'SELL', 0.02, 3010.0)

    assert trading_bot._cycle() is None
    assert trading_bot.data.calls == 0


def test_force_ignores_cooldown(trading_bot, monkeypatch):
    trading_bot.state.record_trade('ETHUSD', 'BUY', 0.02, 3000.0)
    trading_bot.state.record_trade('ETHUSD', 'SELL', 0.02, 3010.0)
    force_decision(monkeypatch, trading_bot, Action.BUY)

    assert trading_bot._cycle(force=True).action == Action.BUY
    assert trading_bot.state.get_position('ETHUSD') is not None


def test_cooldown_suppresses_buy_while_holding(trading_bot, monkeypatch):
    trading_bot.state.record_trade('ETHUSD', 'BUY', 0.02, 3000.0)
    force_decision(monkeypatch, trading_bot, Action.BUY)

    trading_bot._cycle()

    assert trading_bot.state.get_position('ETHUSD').quantity == pytest.approx(0.02)
    assert trading_bot.state.totals['total_trades'] == 1


def test_cooldown_allows_exit(trading_bot, monkeypatch):
    trading_bot.state.record_trade('ETHUSD', 'BUY', 0.02, 3000.0)
    force_decision(monkeypatch, trading_bot, Action.SELL)

    trading_bot._cycle()

    assert trading_bot.state.get_position('ETHUSD') is None


def test_high_water_mark_updated_before_deciding(trading_bot, monkeypatch):
    trading_bot.state.record_trade('ETHUSD', 'BUY', 0.02, 2900.0, timestamp='2024-01-01T00:00:00+00:00')
    seen = []
    monkeypatch.setattr(
        trading_bot.engine, 'decide',
        lambda indicators, price, volume, position, context: seen.append(position) or Decision(Action.HOLD)
    )
    trading_bot.data.price = 3100.0

    trading_bot._cycle()

    assert seen[0].high_water_mark == 3100.0
    assert trading_bot.state.get_position('ETHUSD').high_water_mark == 3100.0


def test_real_engine_holds_on_choppy_history(trading_bot):
    decision = trading_bot._cycle()

    assert decision.action in (Action.HOLD, Action.BUY)
    assert trading_bot.state.get_last_decision()['indicators']['bars'] == 60


def test_short_history_skips(trading_bot):
    trading_bot.data = FakeData(bars=5)
    assert trading_bot._cycle() is None


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setattr(bot_module, 'BASE_DIR', tmp_path)
    monkeypatch.setenv('TRADING_TICKER', 'BTC-USD')
    monkeypatch.setenv('TRADING_SYMBOL', 'BTCUSD')
    monkeypatch.setenv('COOLDOWN_MINUTES', '45')

    instance = bot_module.TradingBot(config_path=str(tmp_path / 'missing.json'), paper=True)

    assert instance.ticker == 'BTC-USD'
    assert instance.symbol == 'BTCUSD'
    assert instance.strategy_config.cooldown_minutes == 45.0


def test_broker_position_mismatch_logged(trading_bot, monkeypatch, caplog):
    trading_bot.state.record_trade('ETHUSD', 'BUY', 0.02, 3000.0, timestamp='2024-01-01T00:00:00+00:00')
    trading_bot.client = FakeBroker(qty='0.05')
    force_decision(monkeypatch, trading_bot, Action.HOLD)

    with caplog.at_level('WARNING', logger='bot'):
        trading_bot._cycle()

    assert 'Position mismatch for ETHUSD' in caplog.text
    assert trading_bot._reconcile_position(trading_bot.state.get_position('ETHUSD')) == pytest.approx(0.05)


def test_matching_broker_position_is_quiet(trading_bot, monkeypatch, caplog):
    trading_bot.state.record_trade('ETHUSD', 'BUY', 0.02, 3000.0, timestamp='2024-01-01T00:00:00+00:00')
    trading_bot.client = FakeBroker(qty='0.02')
    force_decision(monkeypatch, trading_bot, Action.HOLD)

    with caplog.at_level('WARNING', logger='bot'):
        trading_bot._cycle()

    assert 'mismatch' not in caplog.text


def test_unreachable_broker_does_not_stop_cycle(trading_bot, monkeypatch):
    trading_bot.client = FakeBroker(error=ConnectionError('timeout'))
    force_decision(monkeypatch, trading_bot, Action.HOLD)

    assert trading_bot._cycle().action == Action.HOLD
    assert trading_bot._reconcile_position(None) is None


def test_partial_fill_recorded(trading_bot, monkeypatch):
    from core.executor import ExecutionResult

    force_decision(monkeypatch, trading_bot, Action.BUY, quantity=0.02)
    partial = ExecutionResult(success=True, status='partially_filled', side='buy',
                              order_id='order-1', filled_size=0.01, filled_price=3005.0)
    monkeypatch.setattr(trading_bot.executor, 'execute', lambda *args, **kwargs: partial)

    trading_bot._cycle()

    position = trading_bot.state.get_position('ETHUSD')
    assert position.quantity == pytest.approx(0.01)
    assert position.average_price == 3005.0
    assert trading_bot.state.get_last_trade('ETHUSD').order_id == 'order-1'
