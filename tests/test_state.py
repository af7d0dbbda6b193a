"""Tests for the persistent state store."""
import json
from datetime import datetime, timedelta, timezone

import pytest

from core.state import StateManager


@pytest.fixture
def state(tmp_path):
    return StateManager(
        state_file=str(tmp_path / 'state.json'),
        backup_dir=str(tmp_path / 'backups')
    )


def test_buys_average_in(state):
    state.record_trade('ETHUSD', 'BUY', 1.0, 100.0)
    state.record_trade('ETHUSD', 'BUY', 1.0, 110.0)

    position = state.get_position('ETHUSD')
    assert position.quantity == pytest.approx(2.0)
    assert position.average_price == pytest.approx(105.0)
    assert position.high_water_mark == 110.0


def test_sell_realises_pnl(state):
    state.record_trade('ETHUSD', 'BUY', 2.0, 100.0)
    trade = state.record_trade('ETHUSD', 'SELL', 1.0, 120.0)

    assert trade.pnl == pytest.approx(20.0)
    assert state.get_position('ETHUSD').quantity == pytest.approx(1.0)
    assert state.realized_pnl == pytest.approx(20.0)
    assert state.win_rate == 1.0

    state.record_trade('ETHUSD', 'SELL', 1.0, 90.0)
    assert state.get_position('ETHUSD') is None
    assert state.totals['losses'] == 1
    assert state.totals['total_trades'] == 3


def test_dust_removed_after_partial_sell(state):
    state.record_trade('ETHUSD', 'BUY', 0.1, 200.0)
    state.record_trade('ETHUSD', 'SELL', 0.095, 200.0)

    assert state.get_position('ETHUSD') is None
    assert state.get_all_positions() == {}


def test_sell_without_position(state):
    trade = state.record_trade('ETHUSD', 'SELL', 1.0, 100.0)

    assert trade.pnl is None
    assert state.totals['wins'] == 0 and state.totals['losses'] == 0


@pytest.mark.parametrize('action,quantity,price', [
    ('HOLD', 1.0, 100.0),
    ('BUY', 0.0, 100.0),
    ('BUY', 1.0, -5.0),
])
def test_rejects_bad_trades(state, action, quantity, price):
    with pytest.raises(ValueError):
        state.record_trade('ETHUSD', action, quantity, price)


def test_state_persists(state, tmp_path):
    state.record_trade('ETHUSD', 'BUY', 0.5, 3000.0, order_id='abc')

    reloaded = StateManager(state_file=str(tmp_path / 'state.json'))
    position = reloaded.get_position('ETHUSD')
    assert position.quantity == 0.5
    assert reloaded.get_last_trade().order_id == 'abc'

    raw = json.loads((tmp_path / 'state.json').read_text())
    assert raw['totals']['total_trades'] == 1


def test_corrupt_state_starts_fresh(tmp_path):
    path = tmp_path / 'state.json'
    path.write_text('{not json')

    assert StateManager(state_file=str(path)).get_all_positions() == {}


def test_high_water_mark_only_rises(state):
    assert state.update_high_water_mark('ETHUSD', 100.0) is None

    state.record_trade('ETHUSD', 'BUY', 1.0, 100.0)
    assert state.update_high_water_mark('ETHUSD', 105.0) == 105.0
    assert state.update_high_water_mark('ETHUSD', 101.0) == 105.0
    assert state.get_position('ETHUSD').high_water_mark == 105.0


def test_recent_trades_oldest_first(state):
    state.record_trade('ETHUSD', 'BUY', 1.0, 100.0)
    state.record_trade('BTCUSD', 'BUY', 0.01, 60000.0)
    state.record_trade('ETHUSD', 'SELL', 1.0, 101.0)

    recent = state.get_recent_trades(limit=2)
    assert [t.symbol for t in recent] == ['BTCUSD', 'ETHUSD']
    assert [t.action for t in state.get_recent_trades(symbol='ETHUSD')] == ['BUY', 'SELL']
    assert state.get_last_trade('BTCUSD').price == 60000.0


def test_cooldown(state):
    traded_at = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
    state.record_trade('ETHUSD', 'BUY', 1.0, 100.0, timestamp=traded_at.isoformat())

    assert state.is_in_cooldown(15, now=traded_at + timedelta(minutes=5))
    assert state.cooldown_remaining(15, now=traded_at + timedelta(minutes=5)) == timedelta(minutes=10)
    assert not state.is_in_cooldown(15, now=traded_at + timedelta(minutes=16))


def test_equity_peak(state):
    assert state.peak_equity is None
    assert state.update_equity_peak(1000.0) == 1000.0
    assert state.update_equity_peak(900.0) == 1000.0
    assert state.peak_equity == 1000.0


def test_last_decision_and_backup(state, tmp_path):
    state.set_last_decision({'action': 'HOLD', 'confidence': 0.3})
    assert state.get_last_decision()['action'] == 'HOLD'

    backup = state.backup('test')
    assert backup.parent == tmp_path / 'backups'
    assert json.loads(backup.read_text())['tracking']['last_decision']['confidence'] == 0.3
