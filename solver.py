"""Bisection solvers over the withdrawal simulator.

Both searches assume survival is monotone in the searched scalar: more BTC
never hurts, and more spending never helps. They stop after
``SEARCH_MAX_ITERATIONS`` steps or once the interval is within tolerance.
"""

import logging
import math
from dataclasses import dataclass, replace

from config import (
    SEARCH_MAX_ITERATIONS,
    SPEND_SEARCH_FLOOR,
    SPEND_SEARCH_TOLERANCE,
    STACK_SEARCH_CEILING,
    STACK_SEARCH_ESCALATED_CEILING,
    STACK_SEARCH_FLOOR,
    STACK_SEARCH_TOLERANCE,
)
from simulation import SimulationParams, simulate


@dataclass(frozen=True)
class StackSearch:
    """Result of :func:`find_minimum_stack`. ``min_stack`` is ``inf`` if unreachable."""

    min_stack: float
    iterations: int


@dataclass(frozen=True)
class SpendSearch:
    max_spend: float
    iterations: int
    already_safe: bool


def _survives(params: SimulationParams, use_loans: bool, **changes) -> bool:
    return simulate(replace(params, **changes), use_loans).survived


def find_minimum_stack(base_params: SimulationParams, use_loans: bool = False) -> StackSearch:
    """Find the smallest starting stack that survives the full horizon.

    Searches ``[STACK_SEARCH_FLOOR, STACK_SEARCH_CEILING]`` and widens the
    ceiling once to ``STACK_SEARCH_ESCALATED_CEILING``. Returns
    ``min_stack=inf`` when even that is not enough.
    """
    lo = STACK_SEARCH_FLOOR
    hi = STACK_SEARCH_CEILING

    if _survives(base_params, use_loans, btc_holdings=lo):
        return StackSearch(min_stack=lo, iterations=0)

    if not _survives(base_params, use_loans, btc_holdings=hi):
        logging.info("No survival at %s BTC, widening search to %s BTC", hi, STACK_SEARCH_ESCALATED_CEILING)
        hi = STACK_SEARCH_ESCALATED_CEILING
        if not _survives(base_params, use_loans, btc_holdings=hi):
            logging.info(
                "Scenario %s ruins even %s BTC", base_params.scenario_mode, hi
            )
            return StackSearch(min_stack=math.inf, iterations=0)

    iterations = 0
    while hi - lo > STACK_SEARCH_TOLERANCE and iterations < SEARCH_MAX_ITERATIONS:
        mid = (lo + hi) / 2
        if _survives(base_params, use_loans, btc_holdings=mid):
            hi = mid
        else:
            lo = mid
        iterations += 1

    logging.debug("find_minimum_stack converged to %.6f BTC in %d steps", hi, iterations)
    return StackSearch(min_stack=hi, iterations=iterations)


def find_max_spend(base_params: SimulationParams, use_loans: bool = False) -> SpendSearch:
    """Find the highest annual spend the given stack can sustain.

    If the requested spend already survives it is returned unchanged with
    ``already_safe=True``. If even ``SPEND_SEARCH_FLOOR`` ruins the stack the
    result is ``0.0``.
    """
    hi = base_params.annual_spend
    if _survives(base_params, use_loans):
        return SpendSearch(max_spend=hi, iterations=0, already_safe=True)

    lo = SPEND_SEARCH_FLOOR
    if lo >= hi or not _survives(base_params, use_loans, annual_spend=lo):
        return SpendSearch(max_spend=0.0, iterations=0, already_safe=False)

    iterations = 0
    while hi - lo > SPEND_SEARCH_TOLERANCE and iterations < SEARCH_MAX_ITERATIONS:
        mid = (lo + hi) / 2
        if _survives(base_params, use_loans, annual_spend=mid):
            lo = mid
        else:
            hi = mid
        iterations += 1

    return SpendSearch(max_spend=lo, iterations=iterations, already_safe=False)
