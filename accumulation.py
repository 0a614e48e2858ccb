"""Month-by-month accumulation engines.

Each engine prices BTC on the 15th of every month using the same scenario
paths as the withdrawal simulator:

* dollar-cost averaging with an optional lump sum;
* buying BTC with a home-equity loan;
* allocating part of a company's profit to a BTC treasury.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Optional

import numpy as np

from config import (
    DEFAULT_ACCUMULATION_YEARS,
    DEFAULT_ALLOCATION_PCT,
    DEFAULT_ANNUAL_REVENUE,
    DEFAULT_DCA_LUMP_SUM,
    DEFAULT_DCA_MONTHLY,
    DEFAULT_EQUITY_LOAN_AMOUNT,
    DEFAULT_EQUITY_LOAN_RATE,
    DEFAULT_EQUITY_LOAN_YEARS,
    DEFAULT_HOME_VALUE,
    DEFAULT_MODEL,
    DEFAULT_MORTGAGE_BALANCE,
    DEFAULT_NET_MARGIN,
    DEFAULT_REVENUE_GROWTH,
    DEFAULT_SCENARIO_MODE,
    DEFAULT_SIGMA,
    HOME_LTV_WARNING,
    TREASURY_STRATEGIES,
)
from powerlaw import scenario_price, trend_price, years_since_genesis
from scenarios import (
    DEFAULT_CYCLE,
    SCENARIO_MODES,
    CycleConfig,
    ScenarioMode,
    resolve_scenario_k,
    scenario_label,
)


def month_date(start: date, index: int) -> date:
    """The 15th of the month ``index`` months after ``start``."""
    months = start.month - 1 + index
    return date(start.year + months // 12, months % 12 + 1, 15)


class _ScenarioPath:
    """Prices along one scenario, offsets measured in years from ``start``."""

    def __init__(self, model, sigma, mode, initial_k, cycle, start):
        self.model = model
        self.sigma = sigma
        self.mode = mode
        self.initial_k = initial_k
        self.cycle = cycle
        self.start_age = years_since_genesis(start)

    def at(self, year_offset: float, when: date) -> tuple:
        """Return ``(sigma_k, price, trend)`` at ``when``."""
        k = resolve_scenario_k(
            self.mode, year_offset, self.initial_k, start_age=self.start_age, cycle=self.cycle
        )
        return k, scenario_price(self.model, when, self.sigma, k), trend_price(self.model, when)

    def monthly(self, start: date, count: int):
        """Dates plus sigma-k, price and trend arrays for ``count`` months."""
        dates = [month_date(start, i) for i in range(count)]
        points = [self.at(i / 12, when) for i, when in enumerate(dates)]
        ks, prices, trends = (np.array(column, dtype=np.float64) for column in zip(*points))
        return dates, ks, prices, trends


# Dollar-cost averaging


@dataclass(frozen=True)
class DcaParams:
    lump_sum: float = DEFAULT_DCA_LUMP_SUM
    monthly_amount: float = DEFAULT_DCA_MONTHLY
    start: date = field(default_factory=date.today)
    horizon_years: int = DEFAULT_ACCUMULATION_YEARS
    model: str = DEFAULT_MODEL
    sigma: float = DEFAULT_SIGMA
    scenario_mode: ScenarioMode = ScenarioMode(DEFAULT_SCENARIO_MODE)
    initial_k: Optional[float] = None
    cycle: CycleConfig = DEFAULT_CYCLE


@dataclass(frozen=True)
class DcaMonth:
    index: int
    date: date
    year_offset: float
    effective_k: float
    price: float
    trend: float
    btc_bought: float
    fiat_spent: float
    cumulative_btc: float
    cumulative_invested: float
    portfolio_value: float
    roi_pct: float
    avg_cost_basis: float


@dataclass(frozen=True)
class DcaResult:
    months: tuple
    params: DcaParams


def simulate_dca(params: DcaParams) -> DcaResult:
    """Buy ``lump_sum`` in month 0 and ``monthly_amount`` every month.

    Runs ``horizon_years * 12 + 1`` months so both ends are included.
    """
    path = _ScenarioPath(
        params.model, params.sigma, params.scenario_mode, params.initial_k, params.cycle,
        month_date(params.start, 0),
    )
    count = params.horizon_years * 12 + 1
    dates, ks, prices, trends = path.monthly(params.start, count)

    fiat = np.full(count, max(params.monthly_amount, 0.0))
    if params.lump_sum > 0:
        fiat[0] += params.lump_sum
    bought = fiat / prices
    cumulative_btc = np.cumsum(bought)
    cumulative_invested = np.cumsum(fiat)
    values = cumulative_btc * prices

    months = []
    for i, when in enumerate(dates):
        invested = float(cumulative_invested[i])
        btc = float(cumulative_btc[i])
        value = float(values[i])
        months.append(
            DcaMonth(
                index=i,
                date=when,
                year_offset=i / 12,
                effective_k=float(ks[i]),
                price=float(prices[i]),
                trend=float(trends[i]),
                btc_bought=float(bought[i]),
                fiat_spent=float(fiat[i]),
                cumulative_btc=btc,
                cumulative_invested=invested,
                portfolio_value=value,
                roi_pct=(value - invested) / invested * 100 if invested > 0 else 0.0,
                avg_cost_basis=invested / btc if btc > 0 else 0.0,
            )
        )
    return DcaResult(tuple(months), params)


def compare_dca(params: DcaParams) -> dict[str, DcaResult]:
    """Lump sum only, recurring buys only, and both combined."""
    return {
        "lump_only": simulate_dca(replace(params, monthly_amount=0.0)),
        "dca_only": simulate_dca(replace(params, lump_sum=0.0)),
        "combined": simulate_dca(params),
    }


def dca_summary(result: DcaResult) -> dict:
    last = result.months[-1]
    first = result.months[0]
    return {
        "total_invested": last.cumulative_invested,
        "total_btc": last.cumulative_btc,
        "final_value": last.portfolio_value,
        "final_price": last.price,
        "roi_pct": last.roi_pct,
        "avg_cost_basis": last.avg_cost_basis,
        "gain": last.portfolio_value - last.cumulative_invested,
        "total_months": len(result.months),
        "start_date": first.date,
        "end_date": last.date,
        "cost_basis_vs_final": last.price / last.avg_cost_basis if last.avg_cost_basis > 0 else 0.0,
        "highest_price": max(m.price for m in result.months),
        "lowest_price": min(m.price for m in result.months),
    }


# Home-equity loan


@dataclass(frozen=True)
class EquityLoanParams:
    loan_amount: float = DEFAULT_EQUITY_LOAN_AMOUNT
    loan_years: int = DEFAULT_EQUITY_LOAN_YEARS
    loan_interest_rate: float = DEFAULT_EQUITY_LOAN_RATE
    interest_only: bool = False
    home_value: float = DEFAULT_HOME_VALUE
    mortgage_balance: float = DEFAULT_MORTGAGE_BALANCE
    buy_now: bool = True
    future_buy: Optional[date] = None
    start: date = field(default_factory=date.today)
    model: str = DEFAULT_MODEL
    sigma: float = DEFAULT_SIGMA
    scenario_mode: ScenarioMode = ScenarioMode(DEFAULT_SCENARIO_MODE)
    initial_k: Optional[float] = None
    cycle: CycleConfig = DEFAULT_CYCLE


@dataclass(frozen=True)
class EquityMonth:
    index: int
    date: date
    effective_k: float
    price: float
    trend: float
    payment: float
    principal_paid: float
    interest_paid: float
    cumulative_payments: float
    cumulative_interest: float
    remaining_balance: float
    btc_value: float
    net_position: float
    total_ltv: float
    roi_pct: float


@dataclass(frozen=True)
class EquityLoanResult:
    months: tuple
    break_even_month: Optional[int]
    purchase_price: float
    btc_amount: float
    monthly_payment: float
    params: EquityLoanParams


def monthly_payment(principal: float, annual_rate: float, years: int, interest_only: bool = False) -> float:
    """Monthly payment of an annuity loan, or the interest for interest-only."""
    r = annual_rate / 12
    n = years * 12
    if interest_only or r == 0:
        if r == 0 and not interest_only and n > 0:
            return principal / n
        return principal * r
    return principal * r / (1 - (1 + r) ** -n)


def equity_metrics(params: EquityLoanParams) -> dict:
    equity = params.home_value - params.mortgage_balance
    if params.home_value > 0:
        existing_ltv = params.mortgage_balance / params.home_value
        total_ltv = (params.mortgage_balance + params.loan_amount) / params.home_value
    else:
        existing_ltv = total_ltv = 0.0
    return {
        "home_equity": equity,
        "existing_ltv": existing_ltv,
        "total_ltv": total_ltv,
        "ltv_warning": total_ltv > HOME_LTV_WARNING,
    }


def simulate_equity_loan(params: EquityLoanParams, live_price: Optional[float] = None) -> EquityLoanResult:
    """Borrow against a home, buy BTC once, and repay the loan monthly.

    The purchase uses ``live_price`` when buying now, the scenario price at
    ``future_buy`` otherwise, and the trend price as a last resort.
    """
    start = month_date(params.start, 0)
    path = _ScenarioPath(
        params.model, params.sigma, params.scenario_mode, params.initial_k, params.cycle, start
    )

    if params.buy_now and live_price:
        purchase_price = live_price
    elif params.future_buy is not None:
        offset = (params.future_buy - start).days / 365.25
        _, purchase_price, _ = path.at(offset, params.future_buy)
    else:
        purchase_price = trend_price(params.model, start)
    btc_amount = params.loan_amount / purchase_price

    total_months = params.loan_years * 12
    r = params.loan_interest_rate / 12
    pmt = monthly_payment(
        params.loan_amount, params.loan_interest_rate, params.loan_years, params.interest_only
    )

    months = []
    balance = params.loan_amount
    cum_payments = 0.0
    cum_interest = 0.0
    break_even = None

    for i in range(total_months + 1):
        when = month_date(params.start, i)
        k, price, trend = path.at(i / 12, when)

        interest = principal = payment = 0.0
        if i > 0 and balance > 0:
            interest = balance * r
            if params.interest_only:
                principal = balance if i == total_months else 0.0
                payment = interest + principal
            else:
                principal = pmt - interest
                payment = pmt
            balance = max(0.0, balance - principal)
            cum_payments += payment
            cum_interest += interest

        btc_value = btc_amount * price
        if params.home_value > 0:
            total_ltv = (params.mortgage_balance + balance) / params.home_value
        else:
            total_ltv = 0.0
        if break_even is None and i > 0 and btc_value >= cum_payments:
            break_even = i

        months.append(
            EquityMonth(
                index=i,
                date=when,
                effective_k=k,
                price=price,
                trend=trend,
                payment=payment,
                principal_paid=principal,
                interest_paid=interest,
                cumulative_payments=cum_payments,
                cumulative_interest=cum_interest,
                remaining_balance=balance,
                btc_value=btc_value,
                net_position=btc_value - balance - cum_interest,
                total_ltv=total_ltv,
                roi_pct=(btc_value - cum_payments) / cum_payments * 100 if cum_payments > 0 else 0.0,
            )
        )

    return EquityLoanResult(tuple(months), break_even, purchase_price, btc_amount, pmt, params)


def equity_summary(result: EquityLoanResult) -> dict:
    last = result.months[-1]
    total_cost = last.cumulative_payments
    net = last.btc_value - total_cost
    return {
        "total_cost": total_cost,
        "total_interest": last.cumulative_interest,
        "btc_amount": result.btc_amount,
        "buy_price": result.purchase_price,
        "final_price": last.price,
        "final_btc_value": last.btc_value,
        "net_gain_loss": net,
        "roi_pct": net / total_cost * 100 if total_cost > 0 else 0.0,
        "break_even_month": result.break_even_month,
        "break_even_date": result.months[result.break_even_month].date
        if result.break_even_month is not None
        else None,
        "max_ltv": max(m.total_ltv for m in result.months),
        "final_ltv": last.total_ltv,
        "remaining_balance": last.remaining_balance,
        "monthly_payment": result.monthly_payment,
    }


@dataclass(frozen=True)
class EquityScenario:
    mode: ScenarioMode
    label: str
    summary: dict
    result: EquityLoanResult


def compare_equity_scenarios(
    params: EquityLoanParams, live_price: Optional[float] = None
) -> list[EquityScenario]:
    """Run the home-equity purchase under every scenario."""
    comparisons = []
    for mode in SCENARIO_MODES:
        result = simulate_equity_loan(replace(params, scenario_mode=mode), live_price)
        comparisons.append(
            EquityScenario(mode, scenario_label(mode), equity_summary(result), result)
        )
    return comparisons


# Corporate treasury


@dataclass(frozen=True)
class TreasuryParams:
    annual_revenue: float = DEFAULT_ANNUAL_REVENUE
    net_margin: float = DEFAULT_NET_MARGIN
    strategy: str = TREASURY_STRATEGIES[0]
    allocation_pct: float = DEFAULT_ALLOCATION_PCT
    initial_treasury: float = 0.0
    revenue_growth: float = DEFAULT_REVENUE_GROWTH
    horizon_years: int = DEFAULT_ACCUMULATION_YEARS
    start: date = field(default_factory=date.today)
    model: str = DEFAULT_MODEL
    sigma: float = DEFAULT_SIGMA
    scenario_mode: ScenarioMode = ScenarioMode(DEFAULT_SCENARIO_MODE)
    initial_k: Optional[float] = None
    cycle: CycleConfig = DEFAULT_CYCLE


@dataclass(frozen=True)
class TreasuryMonth:
    index: int
    date: date
    effective_k: float
    price: float
    trend: float
    annual_revenue: float
    annual_profit: float
    monthly_profit: float
    monthly_op_cost: float
    fiat_allocated: float
    btc_bought: float
    cumulative_btc: float
    cumulative_allocated: float
    treasury_value: float
    treasury_roi_pct: float
    effective_margin: float
    resilience_months: float


@dataclass(frozen=True)
class TreasuryResult:
    months: tuple
    params: TreasuryParams


def simulate_treasury(params: TreasuryParams, live_price: Optional[float] = None) -> TreasuryResult:
    """Convert a share of profit into BTC according to ``params.strategy``.

    Revenue grows once a year. The ``initial_plus_monthly`` strategy buys
    the initial treasury at ``live_price`` when one is known.

    Raises:
        ValueError: For an unknown allocation strategy.
    """
    if params.strategy not in TREASURY_STRATEGIES:
        raise ValueError(f"Unknown allocation strategy: {params.strategy}")

    path = _ScenarioPath(
        params.model, params.sigma, params.scenario_mode, params.initial_k, params.cycle,
        month_date(params.start, 0),
    )
    count = params.horizon_years * 12 + 1
    dates, ks, prices, trends = path.monthly(params.start, count)

    index = np.arange(count)
    revenue = params.annual_revenue * (1 + params.revenue_growth) ** (index // 12)
    annual_profit = revenue * params.net_margin
    monthly_profit = annual_profit / 12
    monthly_op_cost = revenue / 12 * (1 - params.net_margin)

    if params.strategy == "annual_lump":
        allocated = np.where(index % 12 == 0, annual_profit * params.allocation_pct, 0.0)
        bought = allocated / prices
    else:
        allocated = monthly_profit * params.allocation_pct
        bought = allocated / prices
        if params.strategy == "initial_plus_monthly" and params.initial_treasury > 0:
            allocated[0] += params.initial_treasury
            bought[0] += params.initial_treasury / (live_price or prices[0])

    cumulative_btc = np.cumsum(bought)
    cumulative_allocated = np.cumsum(allocated)
    values = cumulative_btc * prices

    months = []
    for i, when in enumerate(dates):
        year_offset = i / 12
        value = float(values[i])
        total_allocated = float(cumulative_allocated[i])
        gain = value - total_allocated
        annualized_gain = gain / year_offset if year_offset > 0 else 0.0
        opex = float(monthly_op_cost[i])
        months.append(
            TreasuryMonth(
                index=i,
                date=when,
                effective_k=float(ks[i]),
                price=float(prices[i]),
                trend=float(trends[i]),
                annual_revenue=float(revenue[i]),
                annual_profit=float(annual_profit[i]),
                monthly_profit=float(monthly_profit[i]),
                monthly_op_cost=opex,
                fiat_allocated=float(allocated[i]),
                btc_bought=float(bought[i]),
                cumulative_btc=float(cumulative_btc[i]),
                cumulative_allocated=total_allocated,
                treasury_value=value,
                treasury_roi_pct=gain / total_allocated * 100 if total_allocated > 0 else 0.0,
                effective_margin=(float(annual_profit[i]) + annualized_gain) / float(revenue[i])
                if revenue[i] > 0
                else params.net_margin,
                resilience_months=value / opex if opex > 0 else 0.0,
            )
        )
    return TreasuryResult(tuple(months), params)


def treasury_summary(result: TreasuryResult) -> dict:
    last = result.months[-1]
    first = result.months[0]
    return {
        "total_btc": last.cumulative_btc,
        "total_allocated": last.cumulative_allocated,
        "final_treasury_value": last.treasury_value,
        "treasury_gain_loss": last.treasury_value - last.cumulative_allocated,
        "treasury_roi_pct": last.treasury_roi_pct,
        "effective_margin": last.effective_margin,
        "original_margin": result.params.net_margin,
        "final_revenue": last.annual_revenue,
        "resilience_months": last.resilience_months,
        "final_price": last.price,
        "start_date": first.date,
        "end_date": last.date,
        "total_months": len(result.months) - 1,
    }


@dataclass(frozen=True)
class MarginSnapshot:
    year: int
    original_margin: float
    adjusted_margin: float
    btc_gain: float
    margin_reduction: float


@dataclass(frozen=True)
class RdBudget:
    year: int
    appreciation: float
    revenue: float
    pct_of_revenue: float


@dataclass(frozen=True)
class ResilienceSnapshot:
    year: int
    treasury_value: float
    monthly_op_cost: float
    runway_months: float


def _year_ends(result: TreasuryResult):
    """Yield ``(year, month, month a year earlier)`` for each full year."""
    months = result.months
    for year in range(1, result.params.horizon_years + 1):
        if year * 12 >= len(months):
            break
        yield year, months[year * 12], months[(year - 1) * 12]


def _appreciation(current: TreasuryMonth, previous: TreasuryMonth) -> float:
    new_allocation = current.cumulative_allocated - previous.cumulative_allocated
    return current.treasury_value - previous.treasury_value - new_allocation


def margin_impact(result: TreasuryResult) -> list[MarginSnapshot]:
    """How far the net margin could fall while BTC gains cover the difference.

    For each year the treasury's appreciation (value change net of new
    allocations) is subtracted from the profit the business must earn.
    """
    original = result.params.net_margin
    snapshots = []
    for year, current, previous in _year_ends(result):
        gain = _appreciation(current, previous)
        required = max(0.0, current.annual_profit - gain)
        if current.annual_revenue > 0:
            adjusted = max(0.0, required / current.annual_revenue)
        else:
            adjusted = original
        snapshots.append(
            MarginSnapshot(
                year=year,
                original_margin=original,
                adjusted_margin=adjusted,
                btc_gain=gain,
                margin_reduction=original - adjusted,
            )
        )
    return snapshots


def rd_budget(result: TreasuryResult) -> list[RdBudget]:
    """Yearly treasury appreciation available as an R&D budget."""
    budgets = []
    for year, current, previous in _year_ends(result):
        appreciation = max(0.0, _appreciation(current, previous))
        revenue = current.annual_revenue
        budgets.append(
            RdBudget(
                year=year,
                appreciation=appreciation,
                revenue=revenue,
                pct_of_revenue=appreciation / revenue if revenue > 0 else 0.0,
            )
        )
    return budgets


def resilience_buffer(result: TreasuryResult) -> list[ResilienceSnapshot]:
    """Months of operating cost the treasury covers at each year end."""
    return [
        ResilienceSnapshot(
            year=year,
            treasury_value=current.treasury_value,
            monthly_op_cost=current.monthly_op_cost,
            runway_months=current.resilience_months,
        )
        for year, current, _ in _year_ends(result)
    ]


@dataclass(frozen=True)
class TreasuryScenario:
    mode: ScenarioMode
    label: str
    summary: dict
    margin_impact: list
    resilience: list
    result: TreasuryResult


def compare_treasury_scenarios(
    params: TreasuryParams, live_price: Optional[float] = None
) -> list[TreasuryScenario]:
    """Run the treasury allocation under every scenario."""
    comparisons = []
    for mode in SCENARIO_MODES:
        result = simulate_treasury(replace(params, scenario_mode=mode), live_price)
        comparisons.append(
            TreasuryScenario(
                mode=mode,
                label=scenario_label(mode),
                summary=treasury_summary(result),
                margin_impact=margin_impact(result),
                resilience=resilience_buffer(result),
                result=result,
            )
        )
    return comparisons
