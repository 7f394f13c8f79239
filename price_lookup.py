"""
Market price lookup backed by Yahoo Finance.

PriceLookup wraps a quote provider with a short-lived in-memory cache and a
bounded worker pool. Every call is best-effort: provider errors, missing
symbols, malformed prices and slow responses all come back as None.
"""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date, timedelta

import pandas as pd
import requests
import yfinance as yf

logger = logging.getLogger('portfolio_tracker.prices')

HISTORY_PERIODS = {
    '1m': '1mo',
    '3m': '3mo',
    '6m': '6mo',
    '1y': '1y',
    '2y': '2y',
    '5y': '5y',
    'max': 'max',
}

SEARCH_URL = 'https://query1.finance.yahoo.com/v1/finance/search'

# How often a caller re-checks whether its queued lookup has started
QUEUE_POLL_INTERVAL = 0.05


class YahooFinanceProvider:
    """Thin adapter over yfinance and the Yahoo search endpoint."""

    def __init__(self, search_timeout=5):
        self.search_timeout = search_timeout

    def last_price(self, symbol):
        hist = yf.Ticker(symbol).history(period='5d')
        if hist.empty:
            return None
        return float(hist['Close'].iloc[-1])

    def quote(self, symbol):
        ticker = yf.Ticker(symbol)
        hist = ticker.history(period='5d')
        if hist.empty:
            return None

        current_price = float(hist['Close'].iloc[-1])
        previous_close = float(hist['Close'].iloc[-2]) if len(hist) >= 2 else current_price
        change = current_price - previous_close
        change_percent = (change / previous_close * 100) if previous_close > 0 else 0

        info = ticker.info or {}
        return {
            'symbol': symbol,
            'name': info.get('shortName') or info.get('longName') or symbol,
            'price': round(current_price, 2),
            'change': round(change, 2),
            'changePercent': round(change_percent, 2),
            'currency': info.get('currency', 'USD'),
        }

    def history(self, symbol, period):
        hist = yf.Ticker(symbol).history(period=period, interval='1d')
        if hist.empty:
            return []

        points = []
        for timestamp, close in hist['Close'].items():
            if pd.isna(close):
                continue
            points.append((pd.Timestamp(timestamp).date(), float(close)))
        return points

    def search(self, query):
        params = {
            'q': query,
            'quotesCount': 8,
            'newsCount': 0,
            'enableFuzzyQuery': True,
            'quotesQueryId': 'tss_match_phrase_query'
        }
        headers = {
            'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
        }

        response = requests.get(SEARCH_URL, params=params, headers=headers, timeout=self.search_timeout)
        response.raise_for_status()
        data = response.json()

        results = []
        for quote in data.get('quotes', []):
            # Filter to stocks and ETFs only
            quote_type = quote.get('quoteType', '')
            if quote_type in ['EQUITY', 'ETF']:
                results.append({
                    'symbol': quote.get('symbol', ''),
                    'name': quote.get('shortname') or quote.get('longname', ''),
                    'type': quote_type,
                    'exchange': quote.get('exchange', '')
                })
        return results


def _valid_price(value):
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def _change_block(current_price, reference_price):
    if not reference_price or not current_price:
        return None
    change = current_price - reference_price
    return {
        'price': reference_price,
        'change': round(change, 4),
        'changePercent': round(change / reference_price * 100, 4),
    }


class PriceLookup:
    """
    Cached, time-bounded price lookups.

    Only successful prices are cached, keyed by uppercased symbol, for `ttl`
    seconds. Lookups run on a pool of `max_workers` threads and each is
    abandoned once it has run for `timeout` seconds. Time a batch lookup
    spends queued behind the rest of its batch does not count, up to the
    time those earlier lookups could take.
    """

    def __init__(self, provider=None, ttl=60.0, timeout=5.0, max_workers=4, clock=time.monotonic):
        self.provider = provider or YahooFinanceProvider()
        self.ttl = ttl
        self.timeout = timeout
        self.max_workers = max(1, int(max_workers))
        self.clock = clock
        self._cache = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='price-lookup')

    # -- cache -----------------------------------------------------------------

    def _cached(self, symbol):
        with self._lock:
            entry = self._cache.get(symbol)
            if entry is None:
                return None
            price, stored_at = entry
            if self.clock() - stored_at >= self.ttl:
                del self._cache[symbol]
                return None
            return price

    def _store(self, symbol, price):
        with self._lock:
            self._cache[symbol] = (price, self.clock())

    def clear_cache(self):
        with self._lock:
            self._cache.clear()

    # -- provider calls ----------------------------------------------------------

    def _fetch_price(self, symbol):
        return _valid_price(self.provider.last_price(symbol))

    def _submit(self, fn, *args, ahead=0):
        """
        Queue fn on the pool and return a call handle for _wait.

        `ahead` is how many calls from the same batch were queued before
        this one. The call may wait in the queue for as long as those calls
        could run, and is then given its own `timeout` once a worker starts it.
        """
        queue_deadline = time.monotonic() + self.timeout * (ahead // self.max_workers + 1)
        started = {}

        def run():
            started['at'] = time.monotonic()
            return fn(*args)

        return self._executor.submit(run), started, queue_deadline

    def _result(self, future, started, queue_deadline):
        while 'at' not in started:
            if time.monotonic() >= queue_deadline:
                raise FutureTimeoutError()
            try:
                return future.result(timeout=QUEUE_POLL_INTERVAL)
            except FutureTimeoutError:
                continue
        remaining = started['at'] + self.timeout - time.monotonic()
        return future.result(timeout=max(0.0, remaining))

    def _wait(self, call, symbol, what):
        future = call[0]
        try:
            return self._result(*call)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Timed out fetching %s for %s after %.1fs", what, symbol, self.timeout)
        except Exception as e:
            logger.warning("Failed to fetch %s for %s: %s", what, symbol, e)
        return None

    def get_price(self, symbol):
        """Return the latest price for symbol, or None if unavailable."""
        if not symbol:
            return None
        symbol = symbol.strip().upper()

        cached = self._cached(symbol)
        if cached is not None:
            return cached

        price = self._wait(self._submit(self._fetch_price, symbol), symbol, 'price')
        if price is not None:
            self._store(symbol, price)
        return price

    def get_prices(self, symbols):
        """
        Look up several symbols concurrently.

        Returns {symbol: price or None} for every distinct uppercased symbol.
        A failure for one symbol never affects the others.
        """
        results = {}
        pending = {}

        for symbol in symbols:
            if not symbol:
                continue
            symbol = symbol.strip().upper()
            if symbol in results or symbol in pending:
                continue
            cached = self._cached(symbol)
            if cached is not None:
                results[symbol] = cached
            else:
                pending[symbol] = self._submit(self._fetch_price, symbol, ahead=len(pending))

        for symbol, call in pending.items():
            price = self._wait(call, symbol, 'price')
            if price is not None:
                self._store(symbol, price)
            results[symbol] = price

        return results

    def get_quote(self, symbol):
        """Return a quote dict (price, change, name...) or None. Not cached."""
        if not symbol:
            return None
        symbol = symbol.strip().upper()
        return self._wait(self._submit(self.provider.quote, symbol), symbol, 'quote')

    def get_history(self, symbol, period='1y'):
        """Daily closes as [(date, price)], oldest first. Empty on failure."""
        if period not in HISTORY_PERIODS:
            raise ValueError(f'Unsupported period: {period}')
        symbol = symbol.strip().upper()
        call = self._submit(self.provider.history, symbol, HISTORY_PERIODS[period])
        return self._wait(call, symbol, 'history') or []

    def temporal_changes(self, symbol, current_price, purchase_price=None, today=None):
        """
        Price change over the last month, the last year and since purchase.

        Each block is {price, change, changePercent} or None when there is
        no reference price.
        """
        if not current_price:
            return None

        today = today or date.today()
        history = self.get_history(symbol, '1y')

        one_month_ago = today - timedelta(days=30)
        one_year_ago = today - timedelta(days=365)
        one_month_price = None
        one_year_price = None

        # Closest close on or before each target date
        for point_date, price in history:
            if point_date <= one_year_ago:
                one_year_price = price
            if point_date <= one_month_ago:
                one_month_price = price

        return {
            'oneMonth': _change_block(current_price, one_month_price),
            'oneYear': _change_block(current_price, one_year_price),
            'sinceCreation': _change_block(current_price, purchase_price),
        }

    def search(self, query):
        """Symbol search; returns an empty list when the provider fails."""
        query = (query or '').strip()
        if not query:
            return []
        return self._wait(self._submit(self.provider.search, query), query, 'search results') or []

    def shutdown(self):
        self._executor.shutdown(wait=False)
