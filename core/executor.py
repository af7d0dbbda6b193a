"""
Order Execution Module

Turns a strategy Decision into a broker order. Unconfirmed orders are
simulated at the reference price; confirmed ones are submitted with retries
and polled until the broker reports a terminal status.
"""
import time
import logging
from typing import Optional, Dict
from dataclasses import dataclass

from strategy.models import Action, Decision

log = logging.getLogger(__name__)

# Alpaca order statuses that will never fill
DEAD_STATUSES = frozenset({'canceled', 'expired', 'rejected', 'suspended'})


@dataclass
class ExecutionResult:
    """Outcome of one execute() call."""
    success: bool
    status: str = 'failed'
    side: Optional[str] = None
    order_id: Optional[str] = None
    filled_size: float = 0
    filled_price: float = 0
    attempts: int = 0
    error: Optional[str] = None
    metadata: Optional[Dict] = None

    @property
    def simulated(self) -> bool:
        return self.status == 'simulated'


class OrderExecutor:
    """
    Places the order a Decision asks for.

    - BUY/SELL with a positive quantity only
    - Simulated fill unless confirmed (or no broker client)
    - Submission retried with exponential backoff until an order ID exists
    - Fill polled until filled or dead; on timeout the order is cancelled
      and any partial fill is kept
    """

    def __init__(self, client, config: Optional[Dict] = None):
        """
        Args:
            client: AlpacaClient, or None to allow simulated fills only.
            config: 'execution' section of the bot config.
        """
        self.client = client
        settings = config or {}

        self.max_retries = max(1, int(settings.get('max_retries', 3)))
        self.retry_delay = settings.get('retry_delay', 2)
        self.verify_timeout = settings.get('verify_timeout', 30)
        self.poll_interval = settings.get('poll_interval', 2)
        self.order_type = settings.get('order_type', 'market')
        self.time_in_force = settings.get('time_in_force', 'gtc')

    def execute(
        self,
        symbol: str,
        decision: Decision,
        reference_price: float,
        confirm: bool = False
    ) -> ExecutionResult:
        """
        Execute the order a decision recommends.

        Args:
            symbol: Broker symbol.
            decision: BUY or SELL decision.
            reference_price: Price used for simulated fills.
            confirm: Place a real order. Without it the fill is simulated.

        Returns:
            ExecutionResult. Failures are reported here, never raised.
        """
        if not decision.is_trade:
            return ExecutionResult(success=False, error=f"Nothing to execute for {decision.action.value}")
        if decision.quantity <= 0:
            return ExecutionResult(success=False, error=f"Invalid quantity: {decision.quantity}")

        side = 'buy' if decision.action == Action.BUY else 'sell'

        if not confirm or self.client is None:
            log.info(f"SIMULATED {side}: {decision.quantity:g} {symbol} @ ~${reference_price:.4f}")
            return ExecutionResult(
                success=True,
                status='simulated',
                side=side,
                filled_size=decision.quantity,
                filled_price=reference_price
            )

        log.info(f"Submitting {side} {decision.quantity:g} {symbol} ({self.order_type}/{self.time_in_force})")
        order_id, attempts, error = self._submit(symbol, decision.quantity, side)
        if order_id is None:
            return ExecutionResult(
                success=False,
                side=side,
                attempts=attempts,
                error=f"Order not accepted after {attempts} attempt(s): {error}"
            )

        # Accepted orders are only polled, never resubmitted
        result = self._await_fill(order_id)
        result.side = side
        result.attempts = attempts
        return result

    def _submit(self, symbol: str, qty: float, side: str):
        """Submit with backoff. Returns (order_id or None, attempts, last error)."""
        error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                order = self.client.submit_order(
                    symbol=symbol,
                    side=side,
                    qty=qty,
                    order_type=self.order_type,
                    time_in_force=self.time_in_force
                )
                if order.get('id'):
                    return order['id'], attempt, None
                error = f"no order id in response {order}"
            except Exception as e:
                error = str(e)

            log.warning(f"Submit attempt {attempt}/{self.max_retries} failed: {error}")
            if attempt < self.max_retries:
                delay = self.retry_delay * 2 ** (attempt - 1)
                log.info(f"Retrying in {delay}s")
                time.sleep(delay)

        return None, self.max_retries, error

    def _await_fill(self, order_id: str) -> ExecutionResult:
        """Poll the broker until the order reaches a terminal status."""
        deadline = time.time() + self.verify_timeout

        while True:
            try:
                order = self.client.get_order(order_id)
            except Exception as e:
                log.warning(f"Order {order_id} status check failed: {e}")
            else:
                status = (order.get('status') or '').lower()
                if status == 'filled':
                    return ExecutionResult(
                        success=True,
                        status=status,
                        order_id=order_id,
                        filled_size=float(order.get('filled_qty') or 0),
                        filled_price=float(order.get('filled_avg_price') or 0),
                        metadata=order
                    )
                if status in DEAD_STATUSES:
                    return ExecutionResult(success=False, status=status, order_id=order_id,
                                           error=f"Order {status}", metadata=order)

            if time.time() >= deadline:
                break
            time.sleep(self.poll_interval)

        return self._cancel_unfilled(order_id)

    def _cancel_unfilled(self, order_id: str) -> ExecutionResult:
        """
        Cancel an order that outlived verify_timeout and keep what filled.

        Whatever quantity the broker filled before the cancel is reported as a
        successful partial fill so the caller can record it.
        """
        log.warning(f"Order {order_id} not filled within {self.verify_timeout}s, cancelling")
        cancelled = self.client.cancel_order(order_id)
        if not cancelled:
            log.error(f"Cancel failed for order {order_id}")

        try:
            order = self.client.get_order(order_id)
        except Exception as e:
            log.error(f"Order {order_id} status unknown after cancel: {e}")
            order = {}

        filled_size = float(order.get('filled_qty') or 0)
        if filled_size > 0:
            status = (order.get('status') or '').lower()
            log.warning(f"Order {order_id} partially filled: {filled_size:g}")
            return ExecutionResult(
                success=True,
                status='filled' if status == 'filled' else 'partially_filled',
                order_id=order_id,
                filled_size=filled_size,
                filled_price=float(order.get('filled_avg_price') or 0),
                metadata=order
            )

        return ExecutionResult(
            success=False,
            status='canceled' if cancelled else 'pending',
            order_id=order_id,
            error=f"Order {order_id} not filled within {self.verify_timeout}s",
            metadata=order or None
        )
