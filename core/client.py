"""
Alpaca API Client Wrapper

Handles authentication, account queries and low-level order calls against
Alpaca's REST API. Order retries and verification live in OrderExecutor.
"""
import os
import logging
from typing import Optional, Dict, Any

import requests

from strategy.models import AccountInfo

log = logging.getLogger(__name__)


class AlpacaClient:
    """
    Thin wrapper around the Alpaca trading REST API.

    Responsibilities:
    - Authentication headers and paper/live endpoint selection
    - Account and position queries
    - Low-level order creation (execution handled by OrderExecutor)
    """

    PAPER_HOST = "https://paper-api.alpaca.markets"
    LIVE_HOST = "https://api.alpaca.markets"

    def __init__(
        self,
        key_id: Optional[str] = None,
        secret_key: Optional[str] = None,
        paper: Optional[bool] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            key_id: API key ID. If None, reads ALPACA_API_KEY_ID.
            secret_key: API secret. If None, reads ALPACA_SECRET_KEY.
            paper: Use the paper endpoint. If None, reads ALPACA_PAPER.
        """
        self.key_id = key_id or os.environ.get('ALPACA_API_KEY_ID')
        self.secret_key = secret_key or os.environ.get('ALPACA_SECRET_KEY')
        if not self.key_id or not self.secret_key:
            raise ValueError("Alpaca credentials not provided (ALPACA_API_KEY_ID / ALPACA_SECRET_KEY)")

        if paper is None:
            paper = os.environ.get('ALPACA_PAPER', 'true').lower() == 'true'
        self.paper = paper
        self.host = self.PAPER_HOST if paper else self.LIVE_HOST

        self.session = session or requests.Session()
        self.session.headers.update({
            'APCA-API-KEY-ID': self.key_id,
            'APCA-API-SECRET-KEY': self.secret_key
        })

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.host}{path}"
        response = self.session.request(method, url, timeout=10, **kwargs)
        if response.status_code >= 400:
            log.error(f"Alpaca {method} {path} failed: {response.status_code} {response.text}")
        return response

    def get_account(self) -> Dict[str, Any]:
        """Fetch the raw account record."""
        response = self._request('GET', '/v2/account')
        response.raise_for_status()
        return response.json()

    def get_account_info(self, peak_equity: Optional[float] = None) -> AccountInfo:
        """
        Account snapshot for risk gating.

        Args:
            peak_equity: Highest equity seen so far (tracked by the store).
        """
        account = self.get_account()
        equity = float(account.get('equity') or 0)
        return AccountInfo(
            equity=equity,
            peak_equity=max(peak_equity or 0.0, equity) or None,
            cash=float(account.get('cash') or 0),
            buying_power=float(account.get('buying_power') or 0)
        )

    def get_position(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Broker-side position, or None when flat."""
        response = self._request('GET', f'/v2/positions/{symbol}')
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def submit_order(
        self,
        symbol: str,
        side: str,
        qty: float,
        order_type: str = 'market',
        time_in_force: str = 'gtc'
    ) -> Dict[str, Any]:
        """
        Create and post an order.

        Args:
            symbol: Broker symbol (e.g., 'ETHUSD').
            side: 'buy' or 'sell'.
            qty: Quantity in units.
            order_type: 'market' or 'limit'.
            time_in_force: 'gtc', 'day', 'ioc'...

        Returns:
            Order response from API.
        """
        account = self.get_account()
        if account.get('trading_blocked'):
            raise RuntimeError("Trading is blocked for this account")

        response = self._request('POST', '/v2/orders', json={
            'symbol': symbol,
            'qty': str(qty),
            'side': side.lower(),
            'type': order_type,
            'time_in_force': time_in_force
        })
        response.raise_for_status()
        return response.json()

    def get_order(self, order_id: str) -> Dict[str, Any]:
        """Fetch order status by ID."""
        response = self._request('GET', f'/v2/orders/{order_id}')
        response.raise_for_status()
        return response.json()

    def cancel_order(self, order_id: str) -> bool:
        """Cancel an open order."""
        try:
            self._request('DELETE', f'/v2/orders/{order_id}').raise_for_status()
            return True
        except requests.RequestException as e:
            log.warning(f"Cancel failed: {e}")
            return False
