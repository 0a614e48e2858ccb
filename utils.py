# utils.py
import json
import logging
import secrets
import requests
import time
from datetime import datetime

import pandas as pd

from config import BITCOIN_PRICE_TIMEOUT, BITCOIN_PRICE_URL
from powerlaw import HistoricalPoint

_secure_random = secrets.SystemRandom()

DEFAULT_MAX_ATTEMPTS = 3


def get_bitcoin_price(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = 2,
    fallback_price: float | None = None,
    jitter: float = 0,
    quick_fail: bool = False,
    currency: str = "USD",
):
    """Fetch the current Bitcoin price from the mempool.space API with retry logic.

    Args:
        max_attempts (int): Maximum number of attempts to fetch the price.
        base_delay (int | float): Base delay in seconds used for exponential
            backoff between retry attempts.
        fallback_price (float | None): Price to return if all attempts fail.
            Defaults to ``None`` so that callers run without a live anchor.
        jitter (float): Maximum additional random delay in seconds added to the
            backoff. Set to ``0`` to disable jitter.
        quick_fail (bool): If ``True``, call the API only once and return the
            fallback price immediately on any exception without sleeping.
        currency (str): Currency key in the API response, e.g. ``"USD"``.

    Returns:
        tuple: (price, warnings) where price is the current Bitcoin price or
            the fallback if all attempts fail, and warnings is a list of
            warning messages generated during the process.
    """
    warnings = []

    with requests.Session() as session:
        attempts = 1 if quick_fail else max_attempts
        for attempt in range(attempts):
            try:
                response = session.get(BITCOIN_PRICE_URL, timeout=BITCOIN_PRICE_TIMEOUT)
                response.raise_for_status()

                data = response.json()
                current_price = float(data[currency])
                if current_price <= 0:
                    raise KeyError(f"{currency} price not found or invalid")

                return current_price, warnings

            except (
                requests.exceptions.RequestException,
                ValueError,
                KeyError,
                json.JSONDecodeError,
            ) as e:
                timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                message = (
                    f"[{timestamp}] Attempt {attempt + 1} failed to get Bitcoin price: {str(e)}"
                )
                logging.warning(message)
                warnings.append(message)
                if quick_fail:
                    break
                if attempt < attempts - 1:
                    # Wait before retrying with exponential backoff and optional jitter
                    delay = base_delay * (2 ** attempt)
                    if jitter:
                        delay += _secure_random.uniform(0, jitter)
                    time.sleep(delay)

    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    if fallback_price is None:
        message = (
            f"[{timestamp}] Failed to fetch current Bitcoin price after {attempts} attempts. "
            "Continuing without a live price"
        )
    else:
        message = (
            f"[{timestamp}] Failed to fetch current Bitcoin price after {attempts} attempts. "
            f"Using fallback price of {fallback_price:,}"
        )
    logging.warning(message)
    warnings.append(message)
    return fallback_price, warnings


def load_historical_series(source, date_column: str = "date", price_column: str = "price"):
    """Load a historical price series from a JSON or CSV file.

    JSON is expected as a list of ``{"date": ..., "price": ...}`` records;
    anything not ending in ``.json`` is read as CSV. Rows with a missing date
    or price are dropped and the result is sorted by date. Gaps are allowed.

    Returns:
        list[HistoricalPoint]: Points with ``datetime.date`` dates.
    """
    path = str(source)
    if path.lower().endswith(".json"):
        df = pd.read_json(source, orient="records", convert_dates=False)
    else:
        df = pd.read_csv(source)

    missing = {date_column, price_column} - set(df.columns)
    if missing:
        raise ValueError(f"Historical series is missing columns: {sorted(missing)}")

    df = df[[date_column, price_column]].dropna()
    df[date_column] = pd.to_datetime(df[date_column], utc=True)
    df = df.sort_values(date_column)
    return [
        HistoricalPoint(date=ts.date(), price=float(price))
        for ts, price in zip(df[date_column], df[price_column])
    ]
