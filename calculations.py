"""Derived statistics for the power-law model and simulation results."""

from dataclasses import dataclass
from datetime import date
from typing import Optional

import numpy as np

from powerlaw import DateLike, as_utc_datetime, model_time, get_model, trend_price
from simulation import SimulationResult, YearStatus


@dataclass
class CagrRow:
    """One row of :func:`cagr_decay_table`."""

    year: int
    date: date
    trend_price: float
    cagr: float


@dataclass
class SimulationSummary:
    """Results returned from :func:`simulation_summary`."""

    years_before_ruin: int
    total_btc_sold: float
    total_spent: float
    avg_swr_pct: float
    final_stack: float
    final_value: float
    borrow_years: int
    total_interest_paid: float


def cagr_between(model, start: DateLike, end: DateLike) -> float:
    """Compound annual growth rate of the trend between two dates.

    Returns ``0`` for an empty or reversed interval.
    """
    start_dt = as_utc_datetime(start)
    end_dt = as_utc_datetime(end)
    years = (end_dt - start_dt).total_seconds() / (365.25 * 86400)
    p1 = trend_price(model, start_dt)
    if years <= 0 or p1 <= 0:
        return 0.0
    p2 = trend_price(model, end_dt)
    return (p2 / p1) ** (1 / years) - 1


def instantaneous_cagr(model, when: Optional[DateLike] = None) -> float:
    """One-year-forward growth of the trend, ``((t + 1y) / t) ** beta - 1``."""
    params = get_model(model)
    t = model_time(params, when)
    if t <= 0:
        raise ValueError("growth is undefined at or before genesis")
    dt = 1.0 if params.use_years else 365.25
    return ((t + dt) / t) ** params.beta - 1


def cagr_decay_table(model, start_year: int, years: int) -> list[CagrRow]:
    """Year-by-year trend growth from January 1st of ``start_year``.

    The power law's growth rate falls every year; this table makes the
    decay explicit.
    """
    table = []
    for i in range(years):
        current = date(start_year + i, 1, 1)
        following = date(start_year + i + 1, 1, 1)
        table.append(
            CagrRow(
                year=start_year + i,
                date=current,
                trend_price=trend_price(model, current),
                cagr=cagr_between(model, current, following),
            )
        )
    return table


def simulation_summary(result: SimulationResult) -> Optional[SimulationSummary]:
    """Aggregate the non-ruined years of ``result``.

    Returns ``None`` when the very first year is already ruin.
    """
    alive = [r for r in result.records if r.status is not YearStatus.RUIN]
    if not alive:
        return None

    swr = np.array([r.swr_pct for r in alive], dtype=np.float64)
    borrow_years = sum(
        1
        for r in alive
        if r.status in (YearStatus.BORROWING, YearStatus.PARTIAL_BORROW)
    )
    return SimulationSummary(
        years_before_ruin=len(alive),
        total_btc_sold=float(np.sum([r.btc_sold for r in alive])),
        total_spent=float(np.sum([r.annual_spend for r in alive])),
        avg_swr_pct=float(np.mean(swr)),
        final_stack=alive[-1].stack_after,
        final_value=alive[-1].portfolio_value,
        borrow_years=borrow_years,
        total_interest_paid=result.total_interest_paid,
    )
