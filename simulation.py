"""Year-by-year withdrawal simulation on top of the power-law scenarios.

Two strategies share the same yearly loop:

* sell-only: sell enough BTC each year to cover inflation-adjusted spend;
* with loans: borrow against the stack while price is below the trend
  threshold and sell (repaying debt) when it is above.

Running out of BTC is an outcome, not an error. The first ruined year and
every year after it are reported with status ``RUIN``.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import NamedTuple, Optional

from config import (
    DEFAULT_ANNUAL_SPEND,
    DEFAULT_BTC_HOLDINGS,
    DEFAULT_HORIZON_YEARS,
    DEFAULT_LOAN_INTEREST_RATE,
    DEFAULT_LOAN_LTV,
    DEFAULT_LOAN_THRESHOLD,
    DEFAULT_MODEL,
    DEFAULT_PARTIAL_REPAY_FRACTION,
    DEFAULT_SCENARIO_MODE,
    DEFAULT_SIGMA,
    DEFAULT_SPEND_GROWTH_RATE,
    DEFAULT_START_YEAR,
    LIQUIDATION_BUFFER,
)
from powerlaw import scenario_price, trend_price, years_since_genesis
from scenarios import DEFAULT_CYCLE, CycleConfig, ScenarioMode, resolve_scenario_k


class YearStatus(str, Enum):
    OK = "OK"
    BORROWING = "BORROWING"
    PARTIAL_BORROW = "PARTIAL_BORROW"
    FORCED_SELL = "FORCED_SELL"
    SELL_AND_REPAY = "SELL_AND_REPAY"
    PARTIAL_REPAY = "PARTIAL_REPAY"
    RUIN = "RUIN"


class SimulationMode(str, Enum):
    SELL_ONLY = "sell_only"
    WITH_LOANS = "with_loans"


@dataclass(frozen=True)
class SimulationParams:
    """Inputs for a withdrawal simulation.

    Rates are fractions (``0.08`` is 8%). ``initial_k`` anchors the cyclical
    scenarios to the live market's sigma-k; leave it ``None`` to start on
    the idealised cycle.
    """

    btc_holdings: float = DEFAULT_BTC_HOLDINGS
    annual_spend: float = DEFAULT_ANNUAL_SPEND
    start_year: int = DEFAULT_START_YEAR
    horizon_years: int = DEFAULT_HORIZON_YEARS
    spend_growth_rate: float = DEFAULT_SPEND_GROWTH_RATE
    model: str = DEFAULT_MODEL
    sigma: float = DEFAULT_SIGMA
    scenario_mode: ScenarioMode = ScenarioMode(DEFAULT_SCENARIO_MODE)
    initial_k: Optional[float] = None
    loan_ltv: float = DEFAULT_LOAN_LTV
    loan_interest_rate: float = DEFAULT_LOAN_INTEREST_RATE
    loan_threshold: float = DEFAULT_LOAN_THRESHOLD
    partial_repay_fraction: float = DEFAULT_PARTIAL_REPAY_FRACTION
    cycle: CycleConfig = field(default=DEFAULT_CYCLE)


@dataclass(frozen=True)
class YearRecord:
    """One simulated year. Fiat amounts are in the spend currency."""

    year: int
    date: date
    price: float
    trend: float
    multiple: float
    effective_k: float
    annual_spend: float
    btc_sold: float
    btc_borrowed: float
    loan_balance: float
    interest_paid: float
    total_interest_paid: float
    stack_after: float
    portfolio_value: float
    swr_pct: float
    status: YearStatus
    liquidation_price: Optional[float] = None
    liquidation_risk: Optional[bool] = None


@dataclass(frozen=True)
class SimulationResult:
    records: tuple
    ruin_year: Optional[int]
    mode: SimulationMode
    total_interest_paid: float = 0.0

    @property
    def survived(self) -> bool:
        return self.ruin_year is None


class LoanStep(NamedTuple):
    stack: float
    loan: float
    btc_sold: float
    borrowed: float
    status: YearStatus


def year_date(year: int) -> date:
    """Mid-year evaluation date used for every simulated year."""
    return date(year, 7, 1)


def _market(params: SimulationParams, index: int, start_age: float):
    year = params.start_year + index
    when = year_date(year)
    k = resolve_scenario_k(
        params.scenario_mode,
        index,
        params.initial_k,
        start_age=start_age,
        cycle=params.cycle,
    )
    price = scenario_price(params.model, when, params.sigma, k)
    trend = trend_price(params.model, when)
    return year, when, k, price, trend, price / trend


def _pad_ruin(
    records: list,
    params: SimulationParams,
    mode: SimulationMode,
    first_index: int,
    total_interest_paid: float = 0.0,
) -> None:
    """Append zero-filled ``RUIN`` placeholders up to the horizon."""
    with_loans = mode is SimulationMode.WITH_LOANS
    for j in range(first_index, params.horizon_years):
        year = params.start_year + j
        records.append(
            YearRecord(
                year=year,
                date=year_date(year),
                price=0.0,
                trend=0.0,
                multiple=0.0,
                effective_k=0.0,
                annual_spend=0.0,
                btc_sold=0.0,
                btc_borrowed=0.0,
                loan_balance=0.0,
                interest_paid=0.0,
                total_interest_paid=total_interest_paid,
                stack_after=0.0,
                portfolio_value=0.0,
                swr_pct=0.0,
                status=YearStatus.RUIN,
                liquidation_price=0.0 if with_loans else None,
                liquidation_risk=False if with_loans else None,
            )
        )


def simulate_sell_only(params: SimulationParams) -> SimulationResult:
    """Sell BTC every year to cover spending until the horizon or ruin."""
    stack = params.btc_holdings
    spend = params.annual_spend
    start_age = years_since_genesis(year_date(params.start_year))
    records = []
    ruin_year = None

    for i in range(params.horizon_years):
        year, when, k, price, trend, multiple = _market(params, i, start_age)
        btc_to_sell = spend / price

        if btc_to_sell >= stack:
            ruin_year = year
            records.append(
                YearRecord(
                    year=year,
                    date=when,
                    price=price,
                    trend=trend,
                    multiple=multiple,
                    effective_k=k,
                    annual_spend=spend,
                    btc_sold=stack,
                    btc_borrowed=0.0,
                    loan_balance=0.0,
                    interest_paid=0.0,
                    total_interest_paid=0.0,
                    stack_after=0.0,
                    portfolio_value=0.0,
                    swr_pct=100.0,
                    status=YearStatus.RUIN,
                )
            )
            _pad_ruin(records, params, SimulationMode.SELL_ONLY, i + 1)
            break

        stack_before = stack
        stack -= btc_to_sell
        records.append(
            YearRecord(
                year=year,
                date=when,
                price=price,
                trend=trend,
                multiple=multiple,
                effective_k=k,
                annual_spend=spend,
                btc_sold=btc_to_sell,
                btc_borrowed=0.0,
                loan_balance=0.0,
                interest_paid=0.0,
                total_interest_paid=0.0,
                stack_after=stack,
                portfolio_value=stack * price,
                swr_pct=spend / (stack_before * price) * 100,
                status=YearStatus.OK,
            )
        )
        spend *= 1 + params.spend_growth_rate

    return SimulationResult(tuple(records), ruin_year, SimulationMode.SELL_ONLY)


def loan_step(
    stack: float,
    loan: float,
    spend: float,
    price: float,
    multiple: float,
    params: SimulationParams,
) -> LoanStep:
    """Cover one year's ``spend`` by borrowing or selling.

    ``loan`` must already include this year's interest. ``borrowed`` is in
    fiat. A full repayment is part of ``btc_sold``; the partial repayment
    of ``PARTIAL_REPAY`` only shows in the stack and loan.
    """
    if multiple < params.loan_threshold:
        max_borrow = stack * price * params.loan_ltv - loan
        if max_borrow >= spend:
            return LoanStep(stack, loan + spend, 0.0, spend, YearStatus.BORROWING)
        if max_borrow > 0:
            btc_sold = (spend - max_borrow) / price
            if btc_sold >= stack:
                return LoanStep(stack, loan + max_borrow, btc_sold, max_borrow, YearStatus.RUIN)
            return LoanStep(
                stack - btc_sold, loan + max_borrow, btc_sold, max_borrow, YearStatus.PARTIAL_BORROW
            )
        btc_sold = spend / price
        if btc_sold >= stack:
            return LoanStep(stack, loan, btc_sold, 0.0, YearStatus.RUIN)
        return LoanStep(stack - btc_sold, loan, btc_sold, 0.0, YearStatus.FORCED_SELL)

    btc_sold = (spend + loan) / price
    if btc_sold < stack:
        return LoanStep(stack - btc_sold, 0.0, btc_sold, 0.0, YearStatus.SELL_AND_REPAY)

    btc_sold = spend / price
    if btc_sold >= stack:
        return LoanStep(stack, loan, btc_sold, 0.0, YearStatus.RUIN)
    stack -= btc_sold
    repay = min(loan, stack * params.partial_repay_fraction * price)
    if repay > 0:
        stack -= repay / price
        loan -= repay
    return LoanStep(stack, loan, btc_sold, 0.0, YearStatus.PARTIAL_REPAY)


def liquidation_price(loan: float, stack: float, ltv: float) -> float:
    """Price at which ``loan`` breaches ``ltv`` on ``stack``; 0 when unlevered."""
    if loan <= 0 or stack <= 0 or ltv <= 0:
        return 0.0
    return loan / (stack * ltv)


def simulate_with_loans(params: SimulationParams) -> SimulationResult:
    """Borrow below the trend threshold, sell and repay above it."""
    stack = params.btc_holdings
    spend = params.annual_spend
    loan = 0.0
    total_interest = 0.0
    start_age = years_since_genesis(year_date(params.start_year))
    records = []
    ruin_year = None

    for i in range(params.horizon_years):
        year, when, k, price, trend, multiple = _market(params, i, start_age)

        interest = loan * params.loan_interest_rate
        loan += interest
        total_interest += interest

        stack_before = stack
        step = loan_step(stack, loan, spend, price, multiple, params)
        swr_pct = spend / (stack_before * price) * 100 if stack_before > 0 else 0.0

        if step.status is YearStatus.RUIN:
            ruin_year = year
            records.append(
                YearRecord(
                    year=year,
                    date=when,
                    price=price,
                    trend=trend,
                    multiple=multiple,
                    effective_k=k,
                    annual_spend=spend,
                    btc_sold=stack_before,
                    btc_borrowed=step.borrowed / price,
                    loan_balance=step.loan,
                    interest_paid=interest,
                    total_interest_paid=total_interest,
                    stack_after=0.0,
                    portfolio_value=0.0,
                    swr_pct=100.0,
                    status=YearStatus.RUIN,
                    liquidation_price=0.0,
                    liquidation_risk=False,
                )
            )
            _pad_ruin(records, params, SimulationMode.WITH_LOANS, i + 1, total_interest)
            break

        stack, loan = step.stack, step.loan
        liq = liquidation_price(loan, stack, params.loan_ltv)
        records.append(
            YearRecord(
                year=year,
                date=when,
                price=price,
                trend=trend,
                multiple=multiple,
                effective_k=k,
                annual_spend=spend,
                btc_sold=step.btc_sold,
                btc_borrowed=step.borrowed / price,
                loan_balance=loan,
                interest_paid=interest,
                total_interest_paid=total_interest,
                stack_after=stack,
                portfolio_value=stack * price - loan,
                swr_pct=swr_pct,
                status=step.status,
                liquidation_price=liq,
                liquidation_risk=liq > 0 and price < liq * LIQUIDATION_BUFFER,
            )
        )
        spend *= 1 + params.spend_growth_rate

    return SimulationResult(
        tuple(records), ruin_year, SimulationMode.WITH_LOANS, total_interest
    )


def simulate(params: SimulationParams, use_loans: bool = False) -> SimulationResult:
    if use_loans:
        return simulate_with_loans(params)
    return simulate_sell_only(params)
