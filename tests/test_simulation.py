import math
import os
import sys
from dataclasses import replace

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from simulation import (
    SimulationMode,
    SimulationParams,
    YearStatus,
    liquidation_price,
    loan_step,
    simulate,
    simulate_sell_only,
    simulate_with_loans,
)

BASE = SimulationParams(
    btc_holdings=1.0,
    annual_spend=50000.0,
    start_year=2030,
    horizon_years=30,
    spend_growth_rate=0.065,
    sigma=0.2,
    scenario_mode="flat_trend",
)


def _assert_zeroed(record):
    assert record.status is YearStatus.RUIN
    assert record.price == 0.0
    assert record.annual_spend == 0.0
    assert record.btc_sold == 0.0
    assert record.btc_borrowed == 0.0
    assert record.loan_balance == 0.0
    assert record.stack_after == 0.0
    assert record.portfolio_value == 0.0


def test_spend_exceeding_stack_value_ruins_first_year():
    params = replace(BASE, btc_holdings=0.001, annual_spend=1e9, horizon_years=5)
    result = simulate_sell_only(params)

    assert result.ruin_year == 2030
    assert result.mode is SimulationMode.SELL_ONLY
    assert len(result.records) == 5
    first = result.records[0]
    assert first.status is YearStatus.RUIN
    assert first.btc_sold == 0.001
    assert first.stack_after == 0.0
    for record in result.records[1:]:
        _assert_zeroed(record)
    assert [r.year for r in result.records] == list(range(2030, 2035))


def test_sell_only_year_bookkeeping():
    result = simulate_sell_only(replace(BASE, horizon_years=2))
    first, second = result.records

    assert first.status is YearStatus.OK
    assert first.multiple == pytest.approx(1.0)
    assert first.price == pytest.approx(first.trend)
    assert first.btc_sold == pytest.approx(50000.0 / first.price)
    assert first.stack_after == pytest.approx(1.0 - first.btc_sold)
    assert first.portfolio_value == pytest.approx(first.stack_after * first.price)
    assert first.swr_pct == pytest.approx(50000.0 / first.price * 100)
    assert first.liquidation_price is None
    assert second.annual_spend == pytest.approx(50000.0 * 1.065)
    assert result.ruin_year is None
    assert result.survived


def test_ruin_is_permanent():
    result = simulate_sell_only(replace(BASE, scenario_mode="flat_deep_bear"))
    assert result.ruin_year is not None
    statuses = [r.status for r in result.records]
    first_ruin = statuses.index(YearStatus.RUIN)

    assert first_ruin > 0
    assert result.records[first_ruin].year == result.ruin_year
    for record in result.records[first_ruin + 1:]:
        _assert_zeroed(record)
    assert len(result.records) == BASE.horizon_years


def test_more_btc_never_ruins_earlier():
    previous = -math.inf
    for stack in (0.1, 0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0):
        result = simulate_sell_only(replace(BASE, scenario_mode="flat_bear", btc_holdings=stack))
        ruin = math.inf if result.ruin_year is None else result.ruin_year
        assert ruin >= previous
        previous = ruin


@pytest.mark.parametrize("use_loans", [False, True])
def test_runs_are_deterministic(use_loans):
    params = replace(BASE, scenario_mode="cyclical_bear", initial_k=-0.7, btc_holdings=3.0)
    assert simulate(params, use_loans) == simulate(params, use_loans)


def test_borrowing_below_trend_keeps_the_stack():
    params = replace(BASE, scenario_mode="flat_bear", btc_holdings=10.0, horizon_years=2)
    result = simulate_with_loans(params)
    first, second = result.records

    assert first.multiple == pytest.approx(10 ** -0.2)
    assert first.status is YearStatus.BORROWING
    assert first.stack_after == 10.0
    assert first.loan_balance == 50000.0
    assert first.btc_borrowed == pytest.approx(50000.0 / first.price)
    assert first.btc_sold == 0.0

    assert second.interest_paid == pytest.approx(4000.0)
    assert second.loan_balance == pytest.approx(50000.0 + 4000.0 + 50000.0 * 1.065)
    assert result.total_interest_paid == pytest.approx(4000.0)


def test_zero_ltv_forces_sales():
    params = replace(BASE, scenario_mode="flat_bear", loan_ltv=0.0, btc_holdings=10.0, horizon_years=3)
    result = simulate_with_loans(params)
    assert {r.status for r in result.records} == {YearStatus.FORCED_SELL}
    assert all(r.loan_balance == 0.0 for r in result.records)


def test_loans_at_trend_match_sell_only():
    sell = simulate_sell_only(BASE)
    loans = simulate_with_loans(BASE)

    assert {r.status for r in loans.records} == {YearStatus.SELL_AND_REPAY}
    for a, b in zip(sell.records, loans.records):
        assert b.stack_after == pytest.approx(a.stack_after)
        assert b.liquidation_price == 0.0
        assert b.liquidation_risk is False
    assert loans.total_interest_paid == 0.0


def test_loan_ruin_pads_remaining_years():
    params = replace(
        BASE, scenario_mode="flat_deep_bear", annual_spend=200000.0, horizon_years=6
    )
    result = simulate_with_loans(params)

    assert result.records[0].status is YearStatus.PARTIAL_BORROW
    assert result.records[1].status is YearStatus.RUIN
    assert result.ruin_year == 2031
    for record in result.records[2:]:
        _assert_zeroed(record)
        assert record.liquidation_price == 0.0
        assert record.liquidation_risk is False
        assert record.total_interest_paid == pytest.approx(result.total_interest_paid)


def test_liquidation_flag_matches_price_buffer():
    params = replace(BASE, scenario_mode="cyclical", btc_holdings=2.0, loan_ltv=0.5)
    for record in simulate_with_loans(params).records:
        if record.status is YearStatus.RUIN:
            continue
        if record.loan_balance > 0:
            expected = liquidation_price(record.loan_balance, record.stack_after, 0.5)
            assert record.liquidation_price == pytest.approx(expected)
            assert record.liquidation_risk == (record.price < expected * 1.2)
        else:
            assert record.liquidation_risk is False


def test_liquidation_price():
    assert liquidation_price(40000.0, 1.0, 0.4) == pytest.approx(100000.0)
    assert liquidation_price(0.0, 1.0, 0.4) == 0.0
    assert liquidation_price(1000.0, 0.0, 0.4) == 0.0


def test_loan_step_partial_borrow():
    step = loan_step(1.0, 35000.0, 10000.0, 100000.0, 0.5, BASE)
    assert step.status is YearStatus.PARTIAL_BORROW
    assert step.borrowed == pytest.approx(5000.0)
    assert step.btc_sold == pytest.approx(0.05)
    assert step.stack == pytest.approx(0.95)
    assert step.loan == pytest.approx(40000.0)


def test_loan_step_partial_borrow_can_ruin():
    step = loan_step(0.01, 0.0, 10000.0, 100000.0, 0.5, BASE)
    assert step.status is YearStatus.RUIN


def test_loan_step_sell_and_repay():
    step = loan_step(1.0, 20000.0, 10000.0, 100000.0, 1.2, BASE)
    assert step.status is YearStatus.SELL_AND_REPAY
    assert step.btc_sold == pytest.approx(0.3)
    assert step.stack == pytest.approx(0.7)
    assert step.loan == 0.0


def test_loan_step_partial_repay_uses_fraction_of_stack():
    step = loan_step(1.0, 95000.0, 10000.0, 100000.0, 1.2, BASE)
    assert step.status is YearStatus.PARTIAL_REPAY
    assert step.stack == pytest.approx(0.81)
    assert step.loan == pytest.approx(86000.0)
    assert step.btc_sold == pytest.approx(0.1)

    custom = loan_step(1.0, 95000.0, 10000.0, 100000.0, 1.2, replace(BASE, partial_repay_fraction=0.5))
    assert custom.loan == pytest.approx(50000.0)


def test_loan_step_above_trend_ruin():
    step = loan_step(0.05, 10000.0, 10000.0, 100000.0, 1.2, BASE)
    assert step.status is YearStatus.RUIN
