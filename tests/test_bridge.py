import math
import os
import sys
from dataclasses import replace
from datetime import date

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from bridge import (
    BridgeParams,
    BridgeStatus,
    bridge_summary,
    compare_bridge_scenarios,
    dynamic_swr,
    find_max_burn,
    find_minimum_total,
    find_optimal_split,
    forever_swr,
    monte_carlo_survival,
    optimize_plan,
    simulate_bridge,
    simulate_forever,
    storm_period,
)
from config import BRIDGE_SPLIT_GRID, SPEND_SEARCH_FLOOR
from powerlaw import years_since_genesis
from scenarios import SCENARIO_MODES

BASE = BridgeParams(
    total_btc=10.0,
    annual_burn=50000.0,
    retirement_year=2030,
    spend_growth_rate=0.065,
    sigma=0.2,
    scenario_mode="flat_trend",
)


def _assert_ruined(year):
    assert year.status is BridgeStatus.RUIN
    assert year.price == 0.0
    assert year.btc_sold == 0.0
    assert year.bridge_btc == 0.0
    assert year.debt == 0.0


def test_forever_swr_is_quarter_of_expected_return():
    t = years_since_genesis(date(2030, 7, 1))
    assert forever_swr(2030) == pytest.approx(0.25 * 5.688 / (t * math.log(10)))
    assert forever_swr(2030) == pytest.approx(0.0287, abs=1e-4)
    assert forever_swr(2040) < forever_swr(2030)
    assert forever_swr(2008) == 0.03


@pytest.mark.parametrize(
    "multiple, expected",
    [(3.0, 0.06), (2.0, 0.06), (1.5, 0.05), (1.0, 0.04), (0.75, 0.025), (0.5, 0.01), (0.3, 0.01)],
)
def test_dynamic_swr_zones(multiple, expected):
    assert dynamic_swr(multiple * 100.0, 100.0, BASE) == pytest.approx(expected)


def test_dynamic_swr_without_trend_uses_normal_rate():
    assert dynamic_swr(100.0, 0.0, BASE) == 0.04


def test_storm_ends_when_forever_half_becomes_inexhaustible():
    params = replace(BASE, total_btc=1.0)
    storm = storm_period(params)
    forever = simulate_forever(params)

    assert storm.end_year == forever.inexhaustible_year
    assert storm.years == storm.end_year - 2030
    assert storm.ratio < storm.swr
    before = [y for y in forever.years if y.year < storm.end_year]
    assert before and not any(y.inexhaustible for y in before)


def test_all_bridge_means_endless_storm():
    storm = storm_period(replace(BASE, bridge_split=1.0))
    assert math.isinf(storm.years)
    assert storm.end_year is None


def test_bridge_sells_at_normal_rate_on_trend():
    result = simulate_bridge(BASE)
    first = result.years[0]

    assert first.status is BridgeStatus.SELLING
    assert first.multiple == pytest.approx(1.0)
    assert first.swr_rate == pytest.approx(0.04)
    assert first.btc_sold == pytest.approx(5.0 * 0.04)
    assert first.withdrawal == pytest.approx(first.btc_sold * first.price)
    assert first.bridge_btc == pytest.approx(4.8)
    assert result.ruin_year is None
    assert result.survives_storm


def test_bridge_borrows_below_trend():
    result = simulate_bridge(replace(BASE, scenario_mode="flat_bear"))
    first, second = result.years[:2]

    assert first.status is BridgeStatus.BORROW
    assert first.bridge_btc == 5.0
    assert first.debt == 50000.0
    assert first.borrowed == 50000.0
    assert first.btc_sold == 0.0
    assert second.status is BridgeStatus.BORROW
    assert second.debt == pytest.approx(50000.0 * 1.05 + 50000.0 * 1.065)


def test_liquidation_seizes_the_bridge_and_pads_the_run():
    params = replace(BASE, total_btc=0.8, scenario_mode="flat_bear", loan_interest_rate=1.0)
    result = simulate_bridge(params)
    first, second = result.years[:2]

    assert first.status is BridgeStatus.BORROW
    assert second.status is BridgeStatus.RUIN
    assert second.btc_sold == pytest.approx(0.4)
    assert second.debt == pytest.approx(100000.0)
    assert result.ruin_year == 2031
    assert len(result.years) >= 30
    for year in result.years[2:]:
        _assert_ruined(year)
    assert [y.year_index for y in result.years] == list(range(len(result.years)))


def test_forced_sale_that_empties_the_bridge_is_ruin():
    params = replace(BASE, total_btc=0.2, scenario_mode="flat_deep_bear")
    result = simulate_bridge(params)
    first = result.years[0]

    assert first.status is BridgeStatus.RUIN
    assert first.btc_sold == pytest.approx(0.1)
    assert result.ruin_year == 2030
    assert not result.survives_storm
    for year in result.years[1:]:
        _assert_ruined(year)
    assert bridge_summary(result) is None


def test_bridge_summary_totals_funded_years():
    result = simulate_bridge(BASE)
    summary = bridge_summary(result)

    assert summary["years_before_ruin"] == len(result.years)
    assert summary["total_btc_sold"] == pytest.approx(sum(y.btc_sold for y in result.years))
    assert summary["final_bridge_btc"] == result.years[-1].bridge_btc
    assert summary["survives_storm"] is True
    assert 0.01 <= summary["avg_swr"] <= 0.06


def test_find_minimum_total_survives_at_result():
    params = replace(BASE, total_btc=1.0, scenario_mode="flat_bear")
    search = find_minimum_total(params)

    assert math.isfinite(search.min_total)
    assert simulate_bridge(replace(params, total_btc=search.min_total)).survives_storm
    assert search.min_bridge == pytest.approx(search.min_total * 0.5)
    assert search.min_forever == pytest.approx(search.min_total * 0.5)


def test_find_minimum_total_unreachable():
    search = find_minimum_total(replace(BASE, annual_burn=1e12))
    assert search.min_total == math.inf
    assert search.min_bridge == math.inf
    assert search.min_forever == math.inf


def test_find_max_burn():
    safe = find_max_burn(replace(BASE, total_btc=100.0))
    assert safe.already_safe
    assert safe.max_burn == 50000.0

    params = replace(BASE, total_btc=0.2, scenario_mode="flat_deep_bear")
    search = find_max_burn(params)
    assert not search.already_safe
    assert SPEND_SEARCH_FLOOR <= search.max_burn < 50000.0
    if search.max_burn > SPEND_SEARCH_FLOOR:
        assert simulate_bridge(replace(params, annual_burn=search.max_burn)).survives_storm


def test_find_optimal_split_prefers_shortest_surviving_storm():
    search = find_optimal_split(BASE)

    assert [c.split for c in search.candidates] == list(BRIDGE_SPLIT_GRID)
    surviving = [c for c in search.candidates if c.survives]
    assert surviving
    best = min(surviving, key=lambda c: c.storm_years)
    assert search.best_split == best.split
    assert search.best_storm_years == best.storm_years


def test_optimize_plan_success():
    plan = optimize_plan(BASE)

    assert plan.ok
    assert plan.fixes is None
    assert plan.split == pytest.approx(0.1)
    assert plan.storm_years == 0
    assert plan.params.bridge_split == plan.split
    assert plan.bridge.survives_storm


def test_optimize_plan_bust_suggests_fixes():
    params = replace(BASE, total_btc=0.01, scenario_mode="flat_deep_bear")
    plan = optimize_plan(params, current_year=2030)

    assert not plan.ok
    assert plan.split == 0.5
    fixes = plan.fixes
    assert fixes.additional_btc == pytest.approx(fixes.min_total - 0.01)
    assert fixes.max_burn < 50000.0
    if fixes.earliest_year is None:
        assert fixes.year_delay is None
    else:
        assert fixes.year_delay == fixes.earliest_year - 2030


def test_compare_bridge_scenarios_covers_every_mode():
    comparisons = compare_bridge_scenarios(replace(BASE, total_btc=2.0, max_projection_years=30))

    assert [c.mode for c in comparisons] == list(SCENARIO_MODES)
    for comparison in comparisons:
        assert comparison.label
        assert comparison.min_total > 0
        if comparison.ruin_year is None:
            assert comparison.survives


def test_monte_carlo_is_reproducible_with_seed():
    params = replace(BASE, total_btc=1.0, max_projection_years=20)
    first = monte_carlo_survival(params, n_sims=100, seed=7)
    second = monte_carlo_survival(params, n_sims=100, seed=7)

    assert first == second
    assert 0.0 <= first.survival_probability <= 1.0
    assert first.survival_count == round(first.survival_probability * 100)
    assert first.years == list(range(2030, 2050))
    for p10, p50, p90 in zip(first.bands["p10"], first.bands["p50"], first.bands["p90"]):
        assert p10 <= p50 <= p90
    assert set(first.bands) == {"p10", "p25", "p50", "p75", "p90"}


def test_monte_carlo_large_stack_always_survives():
    result = monte_carlo_survival(replace(BASE, total_btc=1000.0, max_projection_years=20), n_sims=50, seed=1)
    assert result.survival_probability == 1.0
    assert result.ruin_count == 0
    assert result.median_ruin_year is None


def test_monte_carlo_dust_stack_is_ruined_immediately():
    result = monte_carlo_survival(replace(BASE, total_btc=0.01, max_projection_years=20), n_sims=50, seed=1)
    assert result.ruin_count == 50
    assert result.median_ruin_year == 2030
    assert result.survival_probability == 0.0
    assert all(v == 0.0 for v in result.bands["p90"])


def test_monte_carlo_rejects_empty_run():
    with pytest.raises(ValueError):
        monte_carlo_survival(BASE, n_sims=0)
