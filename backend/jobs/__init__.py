"""
Background jobs for CrossMarket Radar.

Jobs:
- ingest_prices: Hourly driver prices from CoinGecko, daily target sessions from Yahoo Finance
- run_detection: Align, evaluate, admit patterns and publish a new prediction generation
- validate_predictions: Validate resolved predictions and expire stale ones
- maintenance: Stuck-job watchdog and prediction generation garbage collection
- scheduler_worker: Run every job on its schedule in one process
"""
