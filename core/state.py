"""
State Management Module

Persistent store for positions, trades, P&L and bot metadata.
Uses JSON for simplicity and human-readability. This is the only component
that mutates positions: weighted-average cost on BUY, reduction on SELL.
"""
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, Tuple
from datetime import datetime, timezone, timedelta
from uuid import uuid4

from strategy.models import Position, Trade
from strategy.risk import cooldown_remaining

log = logging.getLogger(__name__)


class StateManager:
    """
    Manages persistent bot state.

    Features:
    - Atomic saves (write to temp, then rename)
    - Backups on demand
    - Per-symbol positions with high water mark
    - Trade history with realised P&L
    - Ghost position cleanup after partial sells
    """

    def __init__(
        self,
        state_file: str = 'state.json',
        backup_dir: str = 'backups',
        min_position_quantity: float = 0.001,
        min_position_value: float = 10.0
    ):
        self.state_file = Path(state_file)
        self.backup_dir = Path(backup_dir)
        self.min_position_quantity = min_position_quantity
        self.min_position_value = min_position_value

        self._state = self._load()

    def _default_state(self) -> Dict:
        """Default state structure."""
        return {
            'version': 1,
            'created': datetime.now(timezone.utc).isoformat(),
            'positions': {},
            'trades': [],
            'totals': {
                'realized_pnl': 0.0,
                'wins': 0,
                'losses': 0,
                'total_trades': 0
            },
            'tracking': {
                'last_trade_time': None,
                'peak_equity': None,
                'last_decision': None
            }
        }

    def _load(self) -> Dict:
        """Load state from file or create default."""
        if self.state_file.exists():
            try:
                with open(self.state_file) as f:
                    state = json.load(f)
                log.info(f"Loaded state: {state['totals']['total_trades']} trades")
                return state
            except (json.JSONDecodeError, KeyError) as e:
                log.warning(f"State file corrupted, starting fresh: {e}")

        return self._default_state()

    def save(self):
        """Save state atomically."""
        self._state['last_saved'] = datetime.now(timezone.utc).isoformat()

        # Write to temp file first
        temp_file = self.state_file.with_suffix('.tmp')
        with open(temp_file, 'w') as f:
            json.dump(self._state, f, indent=2, default=str)

        # Atomic rename
        temp_file.replace(self.state_file)
        log.debug("State saved")

    def backup(self, reason: str = 'manual') -> Path:
        """Create a backup of current state."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        backup_file = self.backup_dir / f"state_{timestamp}_{reason}.json"

        with open(backup_file, 'w') as f:
            json.dump(self._state, f, indent=2, default=str)

        log.info(f"Backup created: {backup_file}")
        return backup_file

    # -- positions -----------------------------------------------------------

    def get_position(self, symbol: str) -> Optional[Position]:
        """Current position for a symbol, or None."""
        raw = self._state['positions'].get(symbol)
        if not raw or raw.get('quantity', 0) <= 0:
            return None
        return Position(
            symbol=symbol,
            quantity=float(raw['quantity']),
            average_price=float(raw['average_price']),
            high_water_mark=raw.get('high_water_mark'),
            last_updated=raw.get('last_updated')
        )

    def get_all_positions(self) -> Dict[str, Position]:
        positions = {}
        for symbol in self._state['positions']:
            position = self.get_position(symbol)
            if position is not None:
                positions[symbol] = position
        return positions

    def _is_dust(self, quantity: float, price: float) -> bool:
        return quantity < self.min_position_quantity or quantity * price < self.min_position_value

    def update_high_water_mark(self, symbol: str, price: float) -> Optional[float]:
        """
        Raise the high water mark of an open position to `price` if higher.

        Returns:
            The (possibly unchanged) high water mark, or None when flat.
        """
        raw = self._state['positions'].get(symbol)
        if not raw:
            return None

        current = raw.get('high_water_mark') or raw['average_price']
        if price > current:
            raw['high_water_mark'] = price
            raw['last_updated'] = datetime.now(timezone.utc).isoformat()
            self.save()
            log.debug(f"{symbol} high water mark raised to {price:.4f}")
            return price
        return current

    # -- trades --------------------------------------------------------------

    def record_trade(
        self,
        symbol: str,
        action: str,
        quantity: float,
        price: float,
        order_id: Optional[str] = None,
        timestamp: Optional[str] = None
    ) -> Trade:
        """
        Record a fill and apply it to the position.

        BUY fills update the weighted-average cost. SELL fills realise P&L
        against the average cost and close the position when the remainder
        is dust.

        Args:
            symbol: Broker symbol.
            action: 'BUY' or 'SELL'.
            quantity: Filled quantity.
            price: Fill price.
            order_id: Broker order ID.
            timestamp: Fill time (ISO format); defaults to now.

        Returns:
            The recorded Trade.
        """
        action = action.upper()
        if action not in ('BUY', 'SELL'):
            raise ValueError(f"Unknown trade action: {action}")
        if quantity <= 0 or price <= 0:
            raise ValueError(f"Trade needs positive quantity and price (got {quantity} @ {price})")

        now = timestamp or datetime.now(timezone.utc).isoformat()
        positions = self._state['positions']
        raw = positions.get(symbol)
        pnl = None

        if action == 'BUY':
            if raw:
                prev_qty = float(raw['quantity'])
                prev_avg = float(raw['average_price'])
                new_qty = prev_qty + quantity
                new_avg = (prev_qty * prev_avg + quantity * price) / new_qty
                hwm = max(raw.get('high_water_mark') or prev_avg, price)
            else:
                new_qty, new_avg, hwm = quantity, price, price

            positions[symbol] = {
                'symbol': symbol,
                'quantity': new_qty,
                'average_price': round(new_avg, 8),
                'high_water_mark': hwm,
                'last_updated': now
            }

        else:
            if not raw:
                log.warning(f"SELL recorded for {symbol} without an open position")
            else:
                prev_qty = float(raw['quantity'])
                prev_avg = float(raw['average_price'])
                sold = min(quantity, prev_qty)
                pnl = round((price - prev_avg) * sold, 8)

                remaining = max(0.0, prev_qty - quantity)
                if remaining <= 0 or self._is_dust(remaining, price):
                    if remaining > 0:
                        log.info(f"Dropping {remaining:g} {symbol} dust after sell")
                    del positions[symbol]
                else:
                    raw['quantity'] = remaining
                    raw['last_updated'] = now

                totals = self._state['totals']
                totals['realized_pnl'] += pnl
                if pnl >= 0:
                    totals['wins'] += 1
                else:
                    totals['losses'] += 1

        trade = Trade(
            id=f"trade_{uuid4().hex[:12]}",
            timestamp=now,
            symbol=symbol,
            action=action,
            quantity=quantity,
            price=price,
            pnl=pnl,
            order_id=order_id
        )

        self._state['trades'].append({
            'id': trade.id,
            'timestamp': trade.timestamp,
            'symbol': trade.symbol,
            'action': trade.action,
            'quantity': trade.quantity,
            'price': trade.price,
            'pnl': trade.pnl,
            'order_id': trade.order_id
        })
        self._state['totals']['total_trades'] += 1
        self._state['tracking']['last_trade_time'] = now
        self.save()

        log.info(f"Trade recorded: {action} {quantity:g} {symbol} @ {price:.4f}"
                 + (f" (pnl {pnl:+.2f})" if pnl is not None else ""))
        return trade

    def get_recent_trades(self, limit: int = 50, symbol: Optional[str] = None) -> Tuple[Trade, ...]:
        """Most recent trades, oldest first."""
        trades = self._state['trades']
        if symbol is not None:
            trades = [t for t in trades if t['symbol'] == symbol]
        return tuple(Trade.from_dict(t) for t in trades[-limit:])

    def get_last_trade(self, symbol: Optional[str] = None) -> Optional[Trade]:
        recent = self.get_recent_trades(limit=1, symbol=symbol)
        return recent[-1] if recent else None

    def cooldown_remaining(self, cooldown_minutes: float, now: Optional[datetime] = None) -> timedelta:
        """Time left on the post-trade cooldown (across all symbols)."""
        now = now or datetime.now(timezone.utc)
        return cooldown_remaining(self.get_last_trade(), now, cooldown_minutes)

    def is_in_cooldown(self, cooldown_minutes: float, now: Optional[datetime] = None) -> bool:
        remaining = self.cooldown_remaining(cooldown_minutes, now)
        if remaining:
            log.info(f"System in cooldown: {remaining.total_seconds() / 60:.1f} minutes remaining")
        return bool(remaining)

    # -- tracking ------------------------------------------------------------

    def update_equity_peak(self, equity: float) -> float:
        """Track the highest account equity seen; returns the peak."""
        peak = self._state['tracking'].get('peak_equity') or 0.0
        if equity > peak:
            self._state['tracking']['peak_equity'] = equity
            self.save()
            return equity
        return peak

    @property
    def peak_equity(self) -> Optional[float]:
        return self._state['tracking'].get('peak_equity')

    def set_last_decision(self, decision: Dict[str, Any]):
        """Store the last decision for the dashboard."""
        self._state['tracking']['last_decision'] = {
            **decision,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
        self.save()

    def get_last_decision(self) -> Optional[Dict[str, Any]]:
        return self._state['tracking'].get('last_decision')

    @property
    def totals(self) -> Dict:
        return self._state['totals']

    @property
    def realized_pnl(self) -> float:
        return self._state['totals']['realized_pnl']

    @property
    def win_rate(self) -> float:
        wins = self._state['totals']['wins']
        losses = self._state['totals']['losses']
        total = wins + losses
        return wins / total if total > 0 else 0

