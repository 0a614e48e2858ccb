"""Power-law trend model for the Bitcoin price.

The trend is ``10**log_a * t**beta`` where ``t`` is the time since the
genesis block, in days or years depending on the model. Volatility around
the trend is measured in log10 space and expressed as multiples of
``sigma`` ("sigma-k").
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping, Optional, Sequence, Union

import numpy as np

from config import DAYS_PER_YEAR, GENESIS_ISO, VALUATION_BREAKPOINTS, VALUATION_TOP_LABEL

GENESIS = datetime.fromisoformat(GENESIS_ISO)

DateLike = Union[date, datetime, str]


class UnknownModelError(ValueError):
    """Raised when a model key is not present in :data:`MODELS`."""


@dataclass(frozen=True)
class ModelParameters:
    """Immutable parameters of a named power-law model."""

    name: str
    beta: float
    log_a: float
    sigma: float
    use_years: bool = False


@dataclass(frozen=True)
class HistoricalPoint:
    date: DateLike
    price: float


@dataclass(frozen=True)
class SigmaEstimate:
    """Population statistics of log10 residuals from trend."""

    sigma: float
    mean: float
    count: int


MODELS = {
    "santostasi": ModelParameters(
        name="Santostasi", beta=5.688, log_a=-16.493, sigma=0.2, use_years=False
    ),
}


def get_model(model: Union[str, ModelParameters]) -> ModelParameters:
    """Return the parameters for ``model``.

    ``model`` is normally a key of :data:`MODELS`; a :class:`ModelParameters`
    instance is passed through unchanged.

    Raises:
        UnknownModelError: If the key is not registered.
    """
    if isinstance(model, ModelParameters):
        return model
    try:
        return MODELS[model]
    except KeyError:
        raise UnknownModelError(f"Unknown model: {model}") from None


def as_utc_datetime(when: Optional[DateLike]) -> datetime:
    """Normalise ``when`` to an aware UTC datetime.

    Plain dates are taken as midnight UTC and naive datetimes as UTC.
    """
    if when is None:
        return datetime.now(timezone.utc)
    if isinstance(when, str):
        text = when.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        when = datetime.fromisoformat(text)
    if isinstance(when, datetime):
        if when.tzinfo is None:
            return when.replace(tzinfo=timezone.utc)
        return when
    return datetime(when.year, when.month, when.day, tzinfo=timezone.utc)


def days_since_genesis(when: Optional[DateLike] = None) -> float:
    return (as_utc_datetime(when) - GENESIS).total_seconds() / 86400.0


def years_since_genesis(when: Optional[DateLike] = None) -> float:
    return days_since_genesis(when) / DAYS_PER_YEAR


def model_time(params: ModelParameters, when: Optional[DateLike]) -> float:
    if params.use_years:
        return years_since_genesis(when)
    return days_since_genesis(when)


def model_sigma(model) -> float:
    """Return the canonical log10 volatility of ``model``."""
    return get_model(model).sigma


def trend_price(model, when: Optional[DateLike] = None) -> float:
    """Return the power-law trend price of ``model`` at ``when``.

    Raises:
        UnknownModelError: For an unregistered model key.
        ValueError: If ``when`` is at or before the genesis block.
    """
    params = get_model(model)
    t = model_time(params, when)
    if t <= 0:
        raise ValueError("trend price is undefined at or before genesis")
    return 10 ** params.log_a * t ** params.beta


def trend_prices(model, dates: Iterable[DateLike]) -> np.ndarray:
    """Vectorised :func:`trend_price` over a sequence of dates."""
    params = get_model(model)
    t = np.array([model_time(params, d) for d in dates], dtype=np.float64)
    if np.any(t <= 0):
        raise ValueError("trend price is undefined at or before genesis")
    return np.power(10.0, params.log_a) * np.power(t, params.beta)


def band_price(model, sigma: float, k: float, when: Optional[DateLike] = None) -> float:
    """Return the price ``k`` sigmas away from trend: ``trend * 10**(k*sigma)``."""
    return trend_price(model, when) * 10 ** (k * sigma)


def scenario_price(model, when: Optional[DateLike], sigma: float, sigma_k: float) -> float:
    """Price used by the simulators for a scenario's sigma-k at ``when``."""
    return band_price(model, sigma, sigma_k, when)


def multiplier(price: float, model, when: Optional[DateLike] = None) -> float:
    """Return ``price / trend``."""
    return price / trend_price(model, when)


def valuation_label(ratio: float) -> str:
    for upper, label in VALUATION_BREAKPOINTS:
        if ratio < upper:
            return label
    return VALUATION_TOP_LABEL


def milestone_date_for_price(target_price: float, model) -> datetime:
    """Return the UTC datetime at which the trend reaches ``target_price``.

    This is the closed-form inverse ``t = (target / 10**log_a) ** (1/beta)``.
    """
    if target_price <= 0:
        raise ValueError("target_price must be positive")
    params = get_model(model)
    t = (target_price / 10 ** params.log_a) ** (1 / params.beta)
    days = t * DAYS_PER_YEAR if params.use_years else t
    return GENESIS + timedelta(days=days)


def _point_fields(point) -> tuple:
    if isinstance(point, Mapping):
        return point["date"], point["price"]
    return point.date, point.price


def calculate_sigma(history: Iterable, model) -> SigmaEstimate:
    """Estimate the volatility of log10 residuals from trend.

    Points where either the price or the trend is non-positive are skipped
    and not counted. Returns the population mean and standard deviation of
    the remaining residuals.
    """
    params = get_model(model)
    residuals = []
    skipped = 0
    for point in history:
        when, price = _point_fields(point)
        t = model_time(params, when)
        if t <= 0 or price is None or price <= 0:
            skipped += 1
            continue
        trend = 10 ** params.log_a * t ** params.beta
        if trend <= 0:
            skipped += 1
            continue
        residuals.append(math.log10(price) - math.log10(trend))

    if skipped:
        logging.debug("calculate_sigma skipped %d degenerate points", skipped)
    if not residuals:
        return SigmaEstimate(sigma=0.0, mean=0.0, count=0)

    arr = np.asarray(residuals, dtype=np.float64)
    return SigmaEstimate(
        sigma=float(np.std(arr)), mean=float(np.mean(arr)), count=len(residuals)
    )


def current_sigma_k(
    model, sigma: float, live_price: Optional[float], when: Optional[DateLike] = None
) -> Optional[float]:
    """Return how many sigmas ``live_price`` sits from trend.

    ``None`` when no live price is available. Degenerate inputs (non-positive
    price, trend or sigma) give a neutral ``0.0``.
    """
    if live_price is None:
        return None
    if live_price <= 0 or sigma <= 0:
        return 0.0
    trend = trend_price(model, when)
    if trend <= 0:
        return 0.0
    return (math.log10(live_price) - math.log10(trend)) / sigma


def _model_key(model) -> str:
    return get_model(model).name


@dataclass(frozen=True)
class CalibrationContext:
    """Historical series plus the sigma estimates derived from it.

    Estimates are computed on first use for each model and cached for the
    lifetime of the context. Build a new context for a new series.
    """

    history: Sequence
    _cache: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    def sigma(self, model) -> SigmaEstimate:
        key = _model_key(model)
        if key not in self._cache:
            self._cache[key] = calculate_sigma(self.history, model)
        return self._cache[key]

    def effective_sigma(self, model) -> float:
        """Calibrated sigma, or the model's canonical sigma if uncalibrated."""
        estimate = self.sigma(model)
        if estimate.count == 0 or estimate.sigma <= 0:
            return model_sigma(model)
        return estimate.sigma

    def current_sigma_k(
        self, model, live_price: Optional[float], when: Optional[DateLike] = None
    ) -> Optional[float]:
        return current_sigma_k(model, self.effective_sigma(model), live_price, when)
