"""
Data Fetching Module

Handles price data retrieval from Yahoo Finance's chart API.
Designed to be swappable - you can add new data sources easily.
"""
import logging
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
import pandas as pd
import requests

from strategy.models import PriceBar

log = logging.getLogger(__name__)


class DataFetcher:
    """
    Fetches daily OHLCV bars and live quotes.

    Currently supports:
    - Yahoo Finance (default)

    Easily extendable - add new methods for other sources.
    """

    YAHOO_CHART_API = "https://query1.finance.yahoo.com/v8/finance/chart"
    HEADERS = {'User-Agent': 'Mozilla/5.0 (trading-bot)'}

    def __init__(self, default_source: str = 'yahoo', session: Optional[requests.Session] = None):
        self.default_source = default_source
        self.session = session or requests.Session()
        self.session.headers.update(self.HEADERS)

    def get_history(
        self,
        ticker: str = 'ETH-USD',
        period: str = '1y',
        source: Optional[str] = None
    ) -> pd.DataFrame:
        """
        Fetch daily OHLCV candles.

        Args:
            ticker: Symbol as the source knows it (e.g., 'ETH-USD').
            period: Lookback range (e.g., '1mo', '6mo', '1y').
            source: Data source (defaults to self.default_source).

        Returns:
            DataFrame indexed by date with columns: open, high, low, close, volume.
            Rows are date-ascending and deduplicated.
        """
        source = source or self.default_source

        if source == 'yahoo':
            return self._fetch_yahoo(ticker, period)
        else:
            raise ValueError(f"Unknown data source: {source}")

    def get_bars(self, ticker: str = 'ETH-USD', period: str = '1y') -> List[PriceBar]:
        """Fetch history as PriceBar records."""
        df = self.get_history(ticker, period)
        return [
            PriceBar(
                date=str(idx.date()) if hasattr(idx, 'date') else str(idx),
                open=row.open,
                high=row.high,
                low=row.low,
                close=row.close,
                volume=row.volume
            )
            for idx, row in df.iterrows()
        ]

    def _chart(self, ticker: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.YAHOO_CHART_API}/{ticker}"
        response = self.session.get(url, params=params, timeout=10)
        response.raise_for_status()
        payload = response.json()

        chart = payload.get('chart') or {}
        if chart.get('error'):
            raise ValueError(f"Yahoo chart error for {ticker}: {chart['error']}")

        results = chart.get('result') or []
        if not results:
            raise ValueError(f"No chart data found for {ticker}")
        return results[0]

    def _fetch_yahoo(self, ticker: str, period: str) -> pd.DataFrame:
        """Fetch daily candles from Yahoo Finance."""
        try:
            result = self._chart(ticker, {'range': period, 'interval': '1d'})

            timestamps = result.get('timestamp') or []
            quote = (result.get('indicators', {}).get('quote') or [{}])[0]

            df = pd.DataFrame({
                'timestamp': timestamps,
                'open': quote.get('open', []),
                'high': quote.get('high', []),
                'low': quote.get('low', []),
                'close': quote.get('close', []),
                'volume': quote.get('volume', [])
            })

            if df.empty:
                raise ValueError(f"No historical data found for {ticker}")

            # Convert types
            df['timestamp'] = pd.to_datetime(df['timestamp'], unit='s', utc=True).dt.normalize()
            for col in ['open', 'high', 'low', 'close', 'volume']:
                df[col] = pd.to_numeric(df[col], errors='coerce').astype(float)

            # Yahoo emits null rows for halted sessions and repeats the live bar
            df = df.dropna(subset=['close'])
            df['volume'] = df['volume'].fillna(0.0)
            df = df.drop_duplicates(subset='timestamp', keep='last')

            # Set timestamp as index
            df = df.set_index('timestamp').sort_index()
            df.index.name = 'date'

            log.debug(f"Fetched {len(df)} daily candles for {ticker}")
            return df

        except Exception as e:
            log.error(f"Yahoo history fetch failed for {ticker}: {e}")
            raise

    def get_quote(self, ticker: str = 'ETH-USD') -> Dict[str, Any]:
        """
        Get the live quote for a symbol.

        Returns:
            Dict with ticker, price, volume, currency, change, change_percent, timestamp.
        """
        try:
            meta = self._chart(ticker, {'range': '1d', 'interval': '1d'}).get('meta', {})
        except Exception as e:
            log.error(f"Yahoo quote fetch failed for {ticker}: {e}")
            raise

        price = meta.get('regularMarketPrice')
        if not price:
            raise ValueError(f"No price data found for ticker {ticker}")

        previous = meta.get('chartPreviousClose') or meta.get('previousClose')
        change = price - previous if previous else 0.0

        return {
            'ticker': ticker,
            'price': float(price),
            'volume': float(meta.get('regularMarketVolume') or 0),
            'currency': meta.get('currency', 'USD'),
            'change': change,
            'change_percent': (change / previous * 100) if previous else 0.0,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
