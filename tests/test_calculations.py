import os
import sys
from dataclasses import replace
from datetime import date

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from calculations import (
    cagr_between,
    cagr_decay_table,
    instantaneous_cagr,
    simulation_summary,
)
from powerlaw import days_since_genesis, trend_price
from simulation import SimulationParams, simulate_sell_only, simulate_with_loans

MODEL = "santostasi"


def test_cagr_between_matches_trend_growth():
    start, end = date(2030, 1, 1), date(2035, 1, 1)
    cagr = cagr_between(MODEL, start, end)
    years = (end - start).days / 365.25
    expected = (trend_price(MODEL, end) / trend_price(MODEL, start)) ** (1 / years) - 1
    assert cagr == pytest.approx(expected)


def test_cagr_between_empty_interval_is_zero():
    assert cagr_between(MODEL, date(2030, 1, 1), date(2030, 1, 1)) == 0.0
    assert cagr_between(MODEL, date(2031, 1, 1), date(2030, 1, 1)) == 0.0


def test_instantaneous_cagr():
    when = date(2030, 7, 1)
    t = days_since_genesis(when)
    assert instantaneous_cagr(MODEL, when) == pytest.approx(((t + 365.25) / t) ** 5.688 - 1)


def test_cagr_decay_table_declines_every_year():
    table = cagr_decay_table(MODEL, 2025, 10)
    assert [row.year for row in table] == list(range(2025, 2035))
    rates = [row.cagr for row in table]
    assert all(b < a for a, b in zip(rates, rates[1:]))
    assert table[0].trend_price == pytest.approx(trend_price(MODEL, date(2025, 1, 1)))


def test_simulation_summary_for_surviving_run():
    params = SimulationParams(scenario_mode="flat_trend", horizon_years=5)
    result = simulate_sell_only(params)
    summary = simulation_summary(result)

    assert summary.years_before_ruin == 5
    assert summary.total_btc_sold == pytest.approx(sum(r.btc_sold for r in result.records))
    assert summary.total_spent == pytest.approx(sum(r.annual_spend for r in result.records))
    assert summary.final_stack == result.records[-1].stack_after
    assert summary.borrow_years == 0
    assert summary.total_interest_paid == 0.0


def test_simulation_summary_counts_borrow_years():
    params = SimulationParams(scenario_mode="flat_bear", btc_holdings=10.0, horizon_years=4)
    summary = simulation_summary(simulate_with_loans(params))
    assert summary.borrow_years == 4
    assert summary.total_interest_paid > 0


def test_simulation_summary_none_when_ruined_immediately():
    params = SimulationParams(scenario_mode="flat_trend", btc_holdings=0.001, annual_spend=1e9)
    assert simulation_summary(simulate_sell_only(params)) is None
    assert simulation_summary(simulate_sell_only(replace(params, horizon_years=1))) is None
