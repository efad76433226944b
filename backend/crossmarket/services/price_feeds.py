"""
Price feed adapters and ingestion.

Driver prices come from CoinGecko, target session bars from Yahoo Finance.
Every adapter fails closed: a timeout, HTTP error or unusable payload yields
an empty result and a log line, never an exception into the batch. Ingestion
degrades per symbol, so one bad symbol does not stop the others.
"""

import math
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

import pandas as pd
import requests
import yfinance as yf
from sqlalchemy.orm import Session
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from crossmarket.config import settings
from crossmarket.db.repositories import PriceRepository
from crossmarket.db.session import transaction_scope
from crossmarket.domain.market import PricePoint, TargetSessionPrice
from crossmarket.services.session_calendar import SessionCalendar
from crossmarket.utils.circuit_breaker import CircuitBreaker
from crossmarket.utils.datetime import parse_timestamp, utc_now
from crossmarket.utils.errors import CrossMarketError

# CoinGecko coin ids for the driver symbols we track
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
}

# Observations this close to a session edge are flagged as edge prices
SESSION_EDGE_TOLERANCE = timedelta(minutes=30)


class CoinGeckoDriverFeed:
    """Spot and hourly history for continuously traded driver assets."""

    source = "coingecko"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or settings.coingecko_base_url).rstrip("/")
        self.timeout = timeout or settings.feed_timeout_seconds
        self.breaker = CircuitBreaker(name=self.source)
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": "crossmarket-radar/0.1"})

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        stop=stop_after_attempt(settings.feed_retry_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _call(self, path: str, params: Dict[str, Any]) -> Any:
        """Breaker-guarded request; returns None on any failure."""
        if not self.breaker.can_execute():
            logger.warning(f"CoinGecko breaker open; skipping {path}")
            return None
        try:
            data = self._get_json(path, params)
        except (requests.RequestException, ValueError) as e:
            self.breaker.record_failure(e)
            logger.warning(f"CoinGecko request {path} failed: {e}")
            return None
        self.breaker.record_success()
        return data

    def fetch_latest(self, symbols: Iterable[str]) -> List[PricePoint]:
        """Current USD price per symbol from /coins/markets. Unknown symbols are skipped."""
        wanted = {}
        for symbol in symbols:
            coin_id = COINGECKO_IDS.get(symbol.upper())
            if coin_id is None:
                logger.warning(f"No CoinGecko id for driver symbol {symbol}")
                continue
            wanted[coin_id] = symbol.upper()
        if not wanted:
            return []

        data = self._call("/coins/markets", {"vs_currency": "usd", "ids": ",".join(sorted(wanted))})
        if not isinstance(data, list):
            return []

        points = []
        for row in data:
            symbol = wanted.get(row.get("id")) if isinstance(row, dict) else None
            price = row.get("current_price") if symbol else None
            if not symbol or not isinstance(price, (int, float)) or price <= 0:
                continue
            timestamp = parse_timestamp(row.get("last_updated")) or utc_now()
            points.append(PricePoint(symbol=symbol, timestamp=timestamp.replace(microsecond=0), price=float(price)))

        missing = set(wanted.values()) - {p.symbol for p in points}
        for symbol in sorted(missing):
            logger.warning(f"CoinGecko returned no usable price for {symbol}")
        return points

    def fetch_history(self, symbol: str, days: int = 90) -> List[PricePoint]:
        """Hourly history from /coins/{id}/market_chart (hourly granularity up to 90 days)."""
        coin_id = COINGECKO_IDS.get(symbol.upper())
        if coin_id is None:
            logger.warning(f"No CoinGecko id for driver symbol {symbol}")
            return []

        data = self._call(f"/coins/{coin_id}/market_chart", {"vs_currency": "usd", "days": min(days, 90)})
        prices = data.get("prices") if isinstance(data, dict) else None
        if not isinstance(prices, list):
            return []

        points = []
        for entry in prices:
            try:
                ts, price = entry[0], float(entry[1])
            except (TypeError, ValueError, IndexError):
                continue
            timestamp = parse_timestamp(ts)
            if timestamp is None or price <= 0 or math.isnan(price):
                continue
            points.append(PricePoint(symbol=symbol, timestamp=timestamp.replace(microsecond=0), price=price))
        return points


class YFinanceTargetFeed:
    """Daily session bars for target tickers via yfinance."""

    source = "yahoo"

    def __init__(self):
        self.breaker = CircuitBreaker(name=self.source)

    def fetch_sessions(self, symbol: str, start: date, end: date) -> List[TargetSessionPrice]:
        """
        Session bars with start <= session_date <= end.

        `prior_close` comes from the preceding bar, so a week of lead-in is
        requested and then dropped.
        """
        if not self.breaker.can_execute():
            logger.warning(f"Yahoo breaker open; skipping {symbol}")
            return []
        try:
            df = yf.Ticker(symbol).history(
                start=start - timedelta(days=7),
                end=end + timedelta(days=1),
                interval="1d",
                auto_adjust=False,
            )
        except Exception as e:
            # yfinance surfaces transport and parsing failures as assorted exception types
            self.breaker.record_failure(e)
            logger.warning(f"Yahoo Finance fetch failed for {symbol}: {e}")
            return []
        self.breaker.record_success()

        if df is None or df.empty:
            logger.warning(f"No session bars from Yahoo Finance for {symbol}")
            return []

        sessions = []
        prior_close = None
        for idx, row in df.iterrows():
            session_date = idx.date()
            if pd.isna(row["Open"]) or float(row["Open"]) <= 0:
                prior_close = None
                continue
            open_price = float(row["Open"])
            close_value = None if pd.isna(row["Close"]) else float(row["Close"])
            if start <= session_date <= end:
                sessions.append(TargetSessionPrice(
                    symbol=symbol,
                    session_date=session_date,
                    open=open_price,
                    close=close_value,
                    prior_close=prior_close,
                ))
            prior_close = close_value
        return sessions


def _flag_edges(points: List[PricePoint], calendar: SessionCalendar) -> List[PricePoint]:
    flagged = []
    for point in points:
        day = point.timestamp.date()
        is_open = is_close = False
        for candidate in (day - timedelta(days=1), day, day + timedelta(days=1)):
            if not calendar.is_trading_day(candidate):
                continue
            session = calendar.session_for(candidate)
            is_open = is_open or abs(point.timestamp - session.open_at) <= SESSION_EDGE_TOLERANCE
            is_close = is_close or abs(point.timestamp - session.close_at) <= SESSION_EDGE_TOLERANCE
        flagged.append(point.model_copy(update={"is_session_open": is_open, "is_session_close": is_close}))
    return flagged


def _store_driver_points(
    points_by_symbol: Dict[str, List[PricePoint]],
    source: str,
    session_factory: Optional[Callable[[], Session]],
    stats: Dict[str, Any],
) -> None:
    for symbol, points in points_by_symbol.items():
        try:
            with transaction_scope(session_factory) as db:
                stats["inserted"] += PriceRepository(db).add_driver_prices(points, source=source)
            stats["symbols_ok"].append(symbol)
        except CrossMarketError as e:
            logger.error(f"Storing driver prices for {symbol} failed: {e.message}")
            stats["symbols_failed"].append(symbol)


def ingest_driver_prices(
    symbols: Optional[List[str]] = None,
    feed: Optional[CoinGeckoDriverFeed] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    calendar: Optional[SessionCalendar] = None,
    history_days: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Fetch and store driver observations.

    Args:
        symbols: Driver symbols (defaults to configured drivers)
        feed: Driver feed adapter
        session_factory: Session factory for per-symbol transactions
        calendar: Calendar used to flag session-edge observations
        history_days: Backfill hourly history instead of taking a spot price

    Returns:
        Statistics: inserted rows, symbols stored, symbols that failed
    """
    symbols = [s.upper() for s in (symbols or settings.driver_symbols)]
    feed = feed or CoinGeckoDriverFeed()
    calendar = calendar or SessionCalendar()
    stats: Dict[str, Any] = {"inserted": 0, "symbols_ok": [], "symbols_failed": []}

    if history_days:
        fetched = {symbol: feed.fetch_history(symbol, history_days) for symbol in symbols}
    else:
        fetched = {symbol: [] for symbol in symbols}
        for point in feed.fetch_latest(symbols):
            fetched.setdefault(point.symbol, []).append(point)

    ready = {}
    for symbol, points in fetched.items():
        if not points:
            stats["symbols_failed"].append(symbol)
            continue
        ready[symbol] = _flag_edges(points, calendar)

    _store_driver_points(ready, feed.source, session_factory, stats)
    logger.info(
        f"Driver ingestion: {stats['inserted']} new observations, "
        f"ok={stats['symbols_ok']}, failed={stats['symbols_failed']}"
    )
    return stats


def default_target_symbols() -> List[str]:
    symbols = {settings.benchmark_symbol.upper()}
    for tickers in settings.target_baskets.values():
        symbols.update(t.upper() for t in tickers)
    return sorted(symbols)


def ingest_target_prices(
    symbols: Optional[List[str]] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    feed: Optional[YFinanceTargetFeed] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> Dict[str, Any]:
    """
    Fetch and upsert target session bars, one transaction per symbol.

    Returns:
        Statistics: rows written, symbols stored, symbols that failed
    """
    symbols = symbols or default_target_symbols()
    end = end or utc_now().date()
    start = start or end - timedelta(days=10)
    feed = feed or YFinanceTargetFeed()
    stats: Dict[str, Any] = {"written": 0, "symbols_ok": [], "symbols_failed": []}

    for symbol in symbols:
        sessions = feed.fetch_sessions(symbol, start, end)
        if not sessions:
            stats["symbols_failed"].append(symbol)
            continue
        try:
            with transaction_scope(session_factory) as db:
                stats["written"] += PriceRepository(db).upsert_target_prices(sessions, source=feed.source)
            stats["symbols_ok"].append(symbol)
        except CrossMarketError as e:
            logger.error(f"Storing target prices for {symbol} failed: {e.message}")
            stats["symbols_failed"].append(symbol)

    logger.info(
        f"Target ingestion {start}..{end}: {stats['written']} rows, "
        f"{len(stats['symbols_ok'])} ok, failed={stats['symbols_failed']}"
    )
    return stats
