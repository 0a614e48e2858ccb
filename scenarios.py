"""Scenario engine: sigma-k paths for each named scenario.

Static scenarios hold the price at a constant number of sigmas from trend.
Cyclical scenarios follow a log-periodic oscillator in Bitcoin's age, so
successive cycles lengthen by a constant ratio. Peaks shrink as Bitcoin
matures while troughs keep a constant depth.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from config import (
    CYCLE_BEAR_BIAS,
    CYCLE_BLEND_YEARS,
    CYCLE_LAMBDA,
    CYCLE_PEAK_ALPHA,
    CYCLE_PEAK_K0,
    CYCLE_TROUGH_AGE,
    CYCLE_TROUGH_DEPTH,
    SIGMA_K_MAX,
    SIGMA_K_MIN,
)
from powerlaw import years_since_genesis


class ScenarioMode(str, Enum):
    FLAT_TREND = "flat_trend"
    FLAT_BEAR = "flat_bear"
    FLAT_DEEP_BEAR = "flat_deep_bear"
    CYCLICAL = "cyclical"
    CYCLICAL_BEAR = "cyclical_bear"


SCENARIO_LABELS = {
    ScenarioMode.FLAT_TREND: "Trend (0σ)",
    ScenarioMode.FLAT_BEAR: "Bear (−1σ)",
    ScenarioMode.FLAT_DEEP_BEAR: "Deep bear (−2σ)",
    ScenarioMode.CYCLICAL: "Cyclical",
    ScenarioMode.CYCLICAL_BEAR: "Cyclical, bear bias",
}

# Fixed order used wherever all scenarios are compared side by side
SCENARIO_MODES = tuple(ScenarioMode)

_STATIC_K = {
    ScenarioMode.FLAT_TREND: 0.0,
    ScenarioMode.FLAT_BEAR: -1.0,
    ScenarioMode.FLAT_DEEP_BEAR: -2.0,
}


@dataclass(frozen=True)
class CycleConfig:
    """Parameters of the log-periodic cycle model."""

    lambda_ratio: float = CYCLE_LAMBDA
    trough_age: float = CYCLE_TROUGH_AGE
    peak_k0: float = CYCLE_PEAK_K0
    alpha: float = CYCLE_PEAK_ALPHA
    trough_depth: float = CYCLE_TROUGH_DEPTH
    amplitude: float = 1.0
    bear_bias: float = CYCLE_BEAR_BIAS
    blend_years: float = CYCLE_BLEND_YEARS
    k_min: float = SIGMA_K_MIN
    k_max: float = SIGMA_K_MAX

    def __post_init__(self):
        if self.lambda_ratio <= 1:
            raise ValueError("lambda_ratio must be greater than 1")
        if self.trough_age <= 0:
            raise ValueError("trough_age must be positive")
        if self.k_min > self.k_max:
            raise ValueError("k_min must not exceed k_max")

    @property
    def phase_shift(self) -> float:
        """Phase offset placing ``trough_age`` at ``sin(phase) == -1``."""
        return -math.pi / 2 - 2 * math.pi * math.log(self.trough_age) / math.log(
            self.lambda_ratio
        )


DEFAULT_CYCLE = CycleConfig()


def _clamp(x: float, lo: float, hi: float) -> float:
    """Return ``x`` bounded to the inclusive range ``[lo, hi]``."""

    return max(lo, min(x, hi))


def _coerce_mode(mode: Union[ScenarioMode, str]) -> Optional[ScenarioMode]:
    try:
        return ScenarioMode(mode)
    except ValueError:
        return None


def scenario_label(mode) -> str:
    scenario = _coerce_mode(mode)
    if scenario is None:
        return str(mode)
    return SCENARIO_LABELS[scenario]


def static_sigma_k(mode) -> float:
    return _STATIC_K[ScenarioMode(mode)]


def log_periodic_phase(age: float, cycle: CycleConfig = DEFAULT_CYCLE) -> float:
    """Return ``2*pi*ln(age)/ln(lambda) + phase_shift``."""
    return 2 * math.pi * math.log(age) / math.log(cycle.lambda_ratio) + cycle.phase_shift


def cycle_wave(age: float, cycle: CycleConfig = DEFAULT_CYCLE) -> float:
    """Unbiased sigma-k of the cycle model at Bitcoin age ``age`` (years).

    The envelope is asymmetric: above trend the amplitude decays as
    ``peak_k0 * age**-alpha``; below trend it stays at ``trough_depth``.
    """
    if age <= 0:
        return 0.0
    s = math.sin(log_periodic_phase(age, cycle))
    if s >= 0:
        envelope = cycle.peak_k0 * age ** (-cycle.alpha)
    else:
        envelope = cycle.trough_depth
    return cycle.amplitude * envelope * s


def cyclical_sigma_k(
    year_offset: float,
    start_age: float,
    initial_k: Optional[float] = None,
    bear_bias: float = 0.0,
    cycle: CycleConfig = DEFAULT_CYCLE,
) -> float:
    """Sigma-k of the cyclical scenario ``year_offset`` years into a run.

    When ``initial_k`` is given the path starts at it and blends linearly
    into the unbiased cycle wave over ``cycle.blend_years``. ``bear_bias``
    is subtracted in full from the blended value, so a biased path is the
    unbiased one shifted down.
    """
    k = cycle_wave(start_age + year_offset, cycle)
    if initial_k is not None:
        if cycle.blend_years > 0:
            w = _clamp(year_offset / cycle.blend_years, 0.0, 1.0)
        else:
            w = 1.0
        k = (1 - w) * initial_k + w * k
    return _clamp(k - bear_bias, cycle.k_min, cycle.k_max)


def resolve_scenario_k(
    mode,
    year_offset: float,
    initial_k: Optional[float] = None,
    *,
    start_age: Optional[float] = None,
    cycle: CycleConfig = DEFAULT_CYCLE,
) -> float:
    """Return the sigma-k for ``mode`` at ``year_offset``.

    ``start_age`` is Bitcoin's age in years when the run starts and defaults
    to its age today. Unknown modes are treated as the trend.
    """
    scenario = _coerce_mode(mode)
    if scenario is None:
        logging.warning("Unknown scenario mode %r, using trend", mode)
        return 0.0
    if scenario in _STATIC_K:
        return _STATIC_K[scenario]

    if start_age is None:
        start_age = years_since_genesis()
    bias = cycle.bear_bias if scenario is ScenarioMode.CYCLICAL_BEAR else 0.0
    return cyclical_sigma_k(
        year_offset, start_age, initial_k=initial_k, bear_bias=bias, cycle=cycle
    )
