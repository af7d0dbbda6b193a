#!/usr/bin/env python3
"""
Daily-Bar Trading Bot - Main Orchestrator

This is the entry point that ties all modules together.
Run with: python bot.py --help
"""
import os
import sys
import time
import atexit
import signal
import logging
import argparse
from pathlib import Path
from datetime import datetime, timezone

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('bot.log')
    ]
)
log = logging.getLogger(__name__)

# Base directory
BASE_DIR = Path(__file__).parent.resolve()

# ============================================================
# SINGLETON LOCK - Prevent duplicate instances
# ============================================================

PIDFILE = BASE_DIR / "bot.pid"


def acquire_lock():
    """Ensure only one bot instance runs at a time."""
    if PIDFILE.exists():
        try:
            old_pid = int(PIDFILE.read_text().strip())
            os.kill(old_pid, 0)  # Check if process exists
            log.error(f"Bot already running (PID {old_pid})")
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            pass  # Stale PID file

    PIDFILE.write_text(str(os.getpid()))
    atexit.register(release_lock)


def release_lock():
    """Clean up PID file on exit."""
    try:
        if PIDFILE.exists() and PIDFILE.read_text().strip() == str(os.getpid()):
            PIDFILE.unlink()
    except OSError as e:
        log.warning(f"Could not remove PID file: {e}")


def handle_shutdown(signum, frame):
    """Graceful shutdown handler."""
    log.info("Shutdown signal received")
    release_lock()
    sys.exit(0)


# ============================================================
# BOT CLASS
# ============================================================

DEFAULT_CONFIG = {
    'interval_seconds': 3600,
    'ticker': 'ETH-USD',
    'symbol': 'ETHUSD',
    'history_period': '1y',
    'auto_trade': True,
    'strategy': {},
    'indicators': {},
    'execution': {}
}


class TradingBot:
    """
    Main trading bot orchestrator.

    Coordinates:
    - Cooldown checks
    - Data fetching
    - Indicator computation and decisions
    - Order execution
    - State management
    """

    def __init__(
        self,
        config_path: str = 'config/bot_config.json',
        paper: bool = False,
        confirm: bool = False
    ):
        """
        Initialize the bot.

        Args:
            config_path: Path to configuration file.
            paper: Paper trading mode (simulated fills recorded in state).
            confirm: Place real orders. Without it live mode is a dry run.

        Raises:
            ConfigurationError: If any threshold is malformed.
        """
        self.paper_mode = paper
        self.confirm = confirm
        self.config = self._load_config(config_path)
        self.running = False

        # Initialize components
        self._init_components()

        log.info(f"Bot initialized (paper={paper}, confirm={confirm}, "
                 f"ticker={self.ticker}, symbol={self.symbol})")

    def _load_config(self, path: str) -> dict:
        """Load configuration from JSON file, then apply environment overrides."""
        from strategy.config import load_config_file

        config = {**DEFAULT_CONFIG, **load_config_file(BASE_DIR / path)}

        if os.environ.get('TRADING_TICKER'):
            config['ticker'] = os.environ['TRADING_TICKER']
        if os.environ.get('TRADING_SYMBOL'):
            config['symbol'] = os.environ['TRADING_SYMBOL']
        if os.environ.get('COOLDOWN_MINUTES'):
            config['strategy'] = {
                **config.get('strategy', {}),
                'cooldown_minutes': float(os.environ['COOLDOWN_MINUTES'])
            }

        return config

    def _init_components(self):
        """Initialize all bot components."""
        from core import AlpacaClient, DataFetcher, OrderExecutor, StateManager
        from strategy import IndicatorConfig, StrategyConfig, StrategyEngine

        self.ticker = self.config['ticker']
        self.symbol = self.config['symbol']

        # Strategy (validates thresholds - fatal on bad config)
        self.strategy_config = StrategyConfig.from_dict(self.config.get('strategy'))
        self.indicator_config = IndicatorConfig.from_dict(self.config.get('indicators'))
        self.engine = StrategyEngine(self.strategy_config, self.indicator_config)

        # Data fetcher
        self.data = DataFetcher()

        # State manager
        self.state = StateManager(
            state_file=str(BASE_DIR / 'state.json'),
            backup_dir=str(BASE_DIR / 'backups'),
            min_position_quantity=self.strategy_config.min_position_quantity,
            min_position_value=self.strategy_config.min_position_value
        )

        # Broker client only outside paper mode
        if not self.paper_mode:
            self.client = AlpacaClient()
            log.info(f"Alpaca client ready ({'paper' if self.client.paper else 'LIVE'} endpoint)")
        else:
            self.client = None
            log.info("Paper trading mode - no real orders will be placed")

        self.executor = OrderExecutor(self.client, self.config.get('execution'))

    def run(self):
        """Main bot loop."""
        self.running = True
        interval = self.config.get('interval_seconds', 3600)

        log.info(f"Starting bot loop (interval={interval}s)")

        while self.running:
            try:
                self._cycle()
            except KeyboardInterrupt:
                log.info("Keyboard interrupt")
                break
            except Exception as e:
                log.error(f"Cycle error: {e}", exc_info=True)

            # Update heartbeat
            self._heartbeat()

            # Sleep until next cycle
            time.sleep(interval)

        log.info("Bot stopped")

    def _cycle(self, force: bool = False):
        """
        Single trading cycle.

        Args:
            force: Ignore the post-trade cooldown.

        Returns:
            The Decision taken, or None when the cycle was skipped.
        """
        from strategy import InsufficientDataError, compute_indicators

        log.debug("Starting cycle")

        # 1. Cooldown
        in_cooldown = self.state.is_in_cooldown(self.strategy_config.cooldown_minutes)
        position = self.state.get_position(self.symbol)
        if in_cooldown and not force and position is None:
            log.info("Cooldown active and flat - skipping entry evaluation")
            return None

        if self.client is not None:
            self._reconcile_position(position)

        # 2. Fetch data
        quote = self.data.get_quote(self.ticker)
        price, volume = quote['price'], quote['volume']

        if position is not None:
            self.state.update_high_water_mark(self.symbol, price)
            position = self.state.get_position(self.symbol)

        bars = self.data.get_history(self.ticker, self.config.get('history_period', '1y'))

        # 3. Indicators
        try:
            indicators = compute_indicators(bars, self.indicator_config)
        except InsufficientDataError as e:
            log.warning(f"Holding - {e}")
            return None

        log.debug(f"Indicators: {indicators.to_dict()}")

        # 4. Decision
        decision = self.engine.decide(indicators, price, volume, position, self._trade_context())
        self._log_decision(decision, price)
        self.state.set_last_decision({
            **decision.to_dict(),
            'symbol': self.symbol,
            'price': price,
            'volume': volume,
            'indicators': indicators.to_dict()
        })

        if in_cooldown and not force and decision.action.value == 'BUY':
            log.info("Cooldown active - BUY suppressed")
            return decision

        # 5. Execute
        if decision.is_trade:
            self._handle_decision(decision, price)

        log.debug("Cycle complete")
        return decision

    def _reconcile_position(self, position):
        """
        Compare the stored position with the broker's.

        The store stays authoritative for decisions; a mismatch is logged so
        an operator can repair it.

        Returns:
            Broker quantity, or None when the broker could not be reached.
        """
        try:
            broker = self.client.get_position(self.symbol)
        except Exception as e:
            log.warning(f"Broker position unavailable: {e}")
            return None

        broker_qty = float(broker.get('qty') or 0) if broker else 0.0
        stored_qty = position.quantity if position is not None else 0.0
        if abs(broker_qty - stored_qty) >= self.strategy_config.min_position_quantity:
            log.warning(
                f"Position mismatch for {self.symbol}: store {stored_qty:g}, broker {broker_qty:g}"
            )
        return broker_qty

    def _trade_context(self):
        """Assemble recent trades and account info for risk gating."""
        from strategy import TradeContext

        account = None
        if self.client is not None:
            try:
                account = self.client.get_account_info(peak_equity=self.state.peak_equity)
                self.state.update_equity_peak(account.equity)
            except Exception as e:
                log.warning(f"Account info unavailable, drawdown gate disabled: {e}")

        return TradeContext(
            last_trade=self.state.get_last_trade(self.symbol),
            account_info=account,
            recent_trades=self.state.get_recent_trades(limit=50),
            as_of=datetime.now(timezone.utc)
        )

    def _log_decision(self, decision, price: float):
        log.info(
            f"Decision: {decision.action.value} qty={decision.quantity:g} "
            f"confidence={decision.confidence:.2f} urgency={decision.urgency.value} @ ${price:.4f}"
        )
        for line in decision.reasoning:
            log.info(f"  - {line}")

    def _handle_decision(self, decision, price: float):
        """Execute a BUY/SELL decision and record the fill."""
        if not self.config.get('auto_trade', True):
            log.info("Auto-trade disabled - not executing")
            return

        if decision.confidence < self.strategy_config.min_confidence:
            log.info(f"Confidence {decision.confidence:.2f} below "
                     f"{self.strategy_config.min_confidence:.2f} - not executing")
            return

        result = self.executor.execute(self.symbol, decision, price, confirm=self.confirm)

        if not result.success:
            log.error(f"Trade failed: {result.error}")
            return

        if result.simulated and not self.paper_mode:
            log.info("Dry run - pass --confirm to place real orders")
            return

        trade = self.state.record_trade(
            symbol=self.symbol,
            action=decision.action.value,
            quantity=result.filled_size or decision.quantity,
            price=result.filled_price or price,
            order_id=result.order_id
        )
        log.info(f"Trade executed: {trade.id}")

    def _heartbeat(self):
        """Update heartbeat file for monitoring."""
        heartbeat_file = BASE_DIR / '.heartbeat'
        heartbeat_file.write_text(datetime.now(timezone.utc).isoformat())

    def stop(self):
        """Stop the bot."""
        self.running = False


# ============================================================
# CLI
# ============================================================

def main():
    from strategy import ConfigurationError

    parser = argparse.ArgumentParser(description='Daily-Bar Trading Bot')
    parser.add_argument('--paper', action='store_true', help='Paper trading mode')
    parser.add_argument('--confirm', action='store_true', help='Place real orders (live mode)')
    parser.add_argument('--config', default='config/bot_config.json', help='Config file path')
    parser.add_argument('--interval', type=int, help='Override cycle interval (seconds)')
    parser.add_argument('--once', action='store_true', help='Run single cycle and exit')
    parser.add_argument('--force', action='store_true', help='Ignore the post-trade cooldown (with --once)')

    args = parser.parse_args()

    # Setup signal handlers
    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    # Acquire lock
    acquire_lock()

    # Initialize bot
    try:
        bot = TradingBot(config_path=args.config, paper=args.paper, confirm=args.confirm)
    except ConfigurationError as e:
        log.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if args.interval:
        bot.config['interval_seconds'] = args.interval

    if args.once:
        bot._cycle(force=args.force)
        bot._heartbeat()
    else:
        bot.run()


if __name__ == '__main__':
    main()
