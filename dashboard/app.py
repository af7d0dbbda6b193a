"""
Streamlit monitor for the daily-bar trading bot.

Reads the bot's JSON state file; never talks to the broker.
Run with: streamlit run dashboard/app.py
"""
import json
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

import streamlit as st
import pandas as pd

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from strategy.config import StrategyConfig, load_config_file  # noqa: E402

ROOT = Path(__file__).parent.parent
STATE_PATH = ROOT / "state.json"
CONFIG_PATH = ROOT / "config" / "bot_config.json"
HEARTBEAT_PATH = ROOT / ".heartbeat"

TRADE_COLUMNS = ['timestamp', 'symbol', 'action', 'quantity', 'price', 'pnl', 'order_id']


def read_state(path: Path = STATE_PATH) -> Optional[dict]:
    if not path.exists():
        return None
    return json.loads(path.read_text())


def heartbeat_status(path: Path, interval_seconds: float, now: Optional[datetime] = None) -> str:
    """Running while the last beat is younger than two cycle intervals."""
    if not path.exists():
        return "🔴 Offline"
    beat = datetime.fromisoformat(path.read_text().strip())
    if beat.tzinfo is None:
        beat = beat.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return "🟢 Running" if (now - beat).total_seconds() < interval_seconds * 2 else "🟡 Stale"


def position_rows(positions: dict, last_decision: Optional[dict], strategy: StrategyConfig) -> pd.DataFrame:
    """One row per open position with distance to the exit thresholds."""
    rows = []
    for symbol, pos in positions.items():
        price = None
        if last_decision and last_decision.get('symbol') == symbol:
            price = last_decision.get('price')

        row = {
            'symbol': symbol,
            'quantity': pos['quantity'],
            'average_price': pos['average_price'],
            'high_water_mark': pos.get('high_water_mark'),
            'last_price': price,
        }
        if price and pos['average_price'] > 0:
            pnl_pct = (price - pos['average_price']) * 100 / pos['average_price']
            row['pnl_%'] = round(pnl_pct, 2)
            row['to_stop_%'] = round(pnl_pct + strategy.stop_loss_percent, 2)
            row['to_target_%'] = round(strategy.profit_target_percent - pnl_pct, 2)
        rows.append(row)
    return pd.DataFrame(rows)


def trade_table(trades: list) -> pd.DataFrame:
    """Trade history, newest first, with P&L formatted for display."""
    table = pd.DataFrame(trades, columns=TRADE_COLUMNS)
    table['timestamp'] = pd.to_datetime(table['timestamp'], utc=True).dt.strftime('%Y-%m-%d %H:%M')
    table['pnl'] = table['pnl'].map(lambda v: "-" if pd.isna(v) else f"${v:+.2f}")
    return table.iloc[::-1].reset_index(drop=True)


def render_summary(totals: dict, interval_seconds: float):
    wins, losses = totals.get('wins', 0), totals.get('losses', 0)
    closed = wins + losses

    pnl_col, rate_col, count_col, status_col = st.columns(4)
    pnl_col.metric("Realized P&L", f"${totals.get('realized_pnl', 0):.2f}")
    rate_col.metric("Win Rate", f"{(wins / closed * 100) if closed else 0:.1f}%", f"{wins}W / {losses}L")
    count_col.metric("Total Trades", totals.get('total_trades', 0))
    status_col.metric("Status", heartbeat_status(HEARTBEAT_PATH, interval_seconds))


def render_decision(decision: dict):
    st.header("Last Decision")
    st.markdown(
        f"**{decision['action']}** {decision.get('quantity', 0):g} "
        f"@ ${decision.get('price', 0):.4f}, confidence "
        f"{decision.get('confidence', 0):.2f}, urgency {decision.get('urgency')}"
    )
    for line in decision.get('reasoning', []):
        st.text(line)
    with st.expander("Indicators"):
        st.json(decision.get('indicators', {}))


def main():
    st.set_page_config(page_title="Trading Bot Dashboard", page_icon="📊", layout="wide")
    st.title("📊 Daily-Bar Trading Bot")

    config = load_config_file(CONFIG_PATH)
    strategy = StrategyConfig.from_dict(config.get('strategy'))
    state = read_state()

    with st.sidebar:
        st.header("Configuration")
        st.json(config)

    if not state:
        st.warning("No state file found. Is the bot running?")
        return

    render_summary(state.get('totals', {}), config.get('interval_seconds', 3600))
    st.divider()

    last_decision = state.get('tracking', {}).get('last_decision')

    st.header("Open Positions")
    positions = state.get('positions', {})
    if positions:
        st.dataframe(position_rows(positions, last_decision, strategy),
                     use_container_width=True, hide_index=True)
    else:
        st.info("Flat - no open positions")

    if last_decision:
        render_decision(last_decision)

    st.header("Trade History")
    trades = state.get('trades', [])
    if trades:
        st.dataframe(trade_table(trades), use_container_width=True, hide_index=True)
    else:
        st.info("No trades yet")


if __name__ == "__main__":
    main()
