"""Bridge / forever split of a retirement stack.

The stack is split in two. The *bridge* is spent down through the "storm",
the years in which the annual burn is still large relative to the stack. The
*forever* half is never sold; the storm ends in the first year its value is
large enough that the burn falls under the forever safe withdrawal rate,
a quarter of the power law's expected annual return.

The bridge borrows against itself below trend and sells (repaying debt)
above it, withdrawing at a rate that rises and falls with the price/trend
multiple. A plan works when the bridge outlives the storm.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Optional

import numpy as np

from config import (
    BRIDGE_LOAN_LTV,
    BRIDGE_LOAN_RATE,
    BRIDGE_MIN_SIM_YEARS,
    BRIDGE_REPAY_CAP,
    BRIDGE_SPLIT_GRID,
    BRIDGE_STORM_PADDING,
    BURN_SEARCH_MAX_ITERATIONS,
    DEBT_DUST,
    DEFAULT_ANNUAL_SPEND,
    DEFAULT_BRIDGE_SPLIT,
    DEFAULT_BTC_HOLDINGS,
    DEFAULT_MODEL,
    DEFAULT_SCENARIO_MODE,
    DEFAULT_SIGMA,
    DEFAULT_SPEND_GROWTH_RATE,
    DEFAULT_START_YEAR,
    FOREVER_SWR_FALLBACK,
    FOREVER_SWR_SHARE,
    MAX_PROJECTION_YEARS,
    MC_DEFAULT_SIMS,
    MC_PERCENTILES,
    RETIREMENT_SEARCH_MAX_ITERATIONS,
    RETIREMENT_SEARCH_WINDOW,
    SEARCH_MAX_ITERATIONS,
    SPEND_SEARCH_FLOOR,
    SPEND_SEARCH_TOLERANCE,
    STACK_SEARCH_CEILING,
    STACK_SEARCH_ESCALATED_CEILING,
    STACK_SEARCH_FLOOR,
    STACK_SEARCH_TOLERANCE,
    SUPPORT_FLOOR_MULTIPLE,
    SWR_HIGH_MULTIPLE,
    SWR_HIGH_RATE,
    SWR_LOW_MULTIPLE,
    SWR_LOW_RATE,
    SWR_NORMAL_RATE,
)
from powerlaw import get_model, scenario_price, trend_price, years_since_genesis
from scenarios import (
    DEFAULT_CYCLE,
    SCENARIO_MODES,
    CycleConfig,
    ScenarioMode,
    resolve_scenario_k,
    scenario_label,
)
from simulation import year_date


class BridgeStatus(str, Enum):
    BORROW = "BORROW"
    FORCED_SELL = "FORCED_SELL"
    SELLING = "SELLING"
    REPAYING = "REPAYING"
    RUIN = "RUIN"


@dataclass(frozen=True)
class BridgeParams:
    """Inputs for the bridge / forever plan.

    ``bridge_split`` is the fraction of ``total_btc`` placed in the bridge.
    Withdrawal-rate thresholds are price/trend multiples.
    """

    total_btc: float = DEFAULT_BTC_HOLDINGS
    bridge_split: float = DEFAULT_BRIDGE_SPLIT
    annual_burn: float = DEFAULT_ANNUAL_SPEND
    spend_growth_rate: float = DEFAULT_SPEND_GROWTH_RATE
    retirement_year: int = DEFAULT_START_YEAR
    max_projection_years: int = MAX_PROJECTION_YEARS
    model: str = DEFAULT_MODEL
    sigma: float = DEFAULT_SIGMA
    scenario_mode: ScenarioMode = ScenarioMode(DEFAULT_SCENARIO_MODE)
    initial_k: Optional[float] = None
    swr_high_multiple: float = SWR_HIGH_MULTIPLE
    swr_low_multiple: float = SWR_LOW_MULTIPLE
    swr_normal_rate: float = SWR_NORMAL_RATE
    swr_high_rate: float = SWR_HIGH_RATE
    swr_low_rate: float = SWR_LOW_RATE
    loan_ltv: float = BRIDGE_LOAN_LTV
    loan_interest_rate: float = BRIDGE_LOAN_RATE
    support_floor_multiple: float = SUPPORT_FLOOR_MULTIPLE
    cycle: CycleConfig = field(default=DEFAULT_CYCLE)

    @property
    def bridge_btc(self) -> float:
        return self.total_btc * self.bridge_split

    @property
    def forever_btc(self) -> float:
        return self.total_btc * (1 - self.bridge_split)


@dataclass(frozen=True)
class StormPeriod:
    """When the forever half first covers the burn. ``years`` is ``inf`` if never."""

    years: float
    end_year: Optional[int]
    forever_value: float = 0.0
    burn: float = 0.0
    ratio: float = 1.0
    swr: Optional[float] = None


@dataclass(frozen=True)
class BridgeYear:
    year: int
    year_index: int
    price: float
    trend: float
    multiple: float
    effective_k: float
    swr_rate: float
    annual_burn: float
    withdrawal: float
    btc_sold: float
    bridge_btc: float
    bridge_value: float
    debt: float
    borrowed: float
    repaid: float
    status: BridgeStatus


@dataclass(frozen=True)
class BridgeResult:
    years: tuple
    ruin_year: Optional[int]
    storm: StormPeriod

    @property
    def survives_storm(self) -> bool:
        """True unless the bridge is ruined before the storm is over."""
        if self.ruin_year is None:
            return True
        end = math.inf if self.storm.end_year is None else self.storm.end_year
        return self.ruin_year > end


@dataclass(frozen=True)
class ForeverYear:
    year: int
    year_index: int
    price: float
    forever_value: float
    annual_burn: float
    burn_ratio: float
    safe_withdrawal: float
    swr_rate: float
    inexhaustible: bool


@dataclass(frozen=True)
class ForeverResult:
    years: tuple
    inexhaustible_year: Optional[int]
    forever_btc: float


def forever_swr(year: int, model=DEFAULT_MODEL) -> float:
    """Safe withdrawal rate of the forever half in ``year``.

    A quarter of the expected power-law return ``beta / (t * ln 10)``, with
    ``t`` in years since genesis at mid-year. Falls as Bitcoin ages.
    """
    t = years_since_genesis(year_date(year))
    if t <= 0:
        return FOREVER_SWR_FALLBACK
    return FOREVER_SWR_SHARE * get_model(model).beta / (t * math.log(10))


def _swr_curve(params: BridgeParams) -> tuple:
    return (
        [params.swr_low_multiple, 1.0, params.swr_high_multiple],
        [params.swr_low_rate, params.swr_normal_rate, params.swr_high_rate],
    )


def dynamic_swr(price: float, trend: float, params: BridgeParams) -> float:
    """Bridge withdrawal rate for the current price/trend multiple.

    Flat at the low rate below ``swr_low_multiple`` and at the high rate above
    ``swr_high_multiple``; linear through the normal rate at fair value.
    """
    if trend <= 0:
        return params.swr_normal_rate
    return float(np.interp(price / trend, *_swr_curve(params)))


def _market(params: BridgeParams, index: int, start_age: float):
    year = params.retirement_year + index
    when = year_date(year)
    k = resolve_scenario_k(
        params.scenario_mode, index, params.initial_k, start_age=start_age, cycle=params.cycle
    )
    price = scenario_price(params.model, when, params.sigma, k)
    return year, k, price, trend_price(params.model, when)


def _start_age(params: BridgeParams) -> float:
    return years_since_genesis(year_date(params.retirement_year))


def storm_period(params: BridgeParams) -> StormPeriod:
    """Find the first year the forever half's value makes the burn safe."""
    forever_btc = params.forever_btc
    if forever_btc <= 0:
        return StormPeriod(years=math.inf, end_year=None)

    start_age = _start_age(params)
    for i in range(params.max_projection_years + 1):
        year, _, price, _ = _market(params, i, start_age)
        value = forever_btc * price
        burn = params.annual_burn * (1 + params.spend_growth_rate) ** i
        threshold = forever_swr(year, params.model)
        ratio = burn / value
        if ratio < threshold:
            return StormPeriod(
                years=i, end_year=year, forever_value=value, burn=burn, ratio=ratio, swr=threshold
            )
    return StormPeriod(years=math.inf, end_year=None)


def _ruined_year(params: BridgeParams, index: int) -> BridgeYear:
    return BridgeYear(
        year=params.retirement_year + index,
        year_index=index,
        price=0.0,
        trend=0.0,
        multiple=0.0,
        effective_k=0.0,
        swr_rate=0.0,
        annual_burn=0.0,
        withdrawal=0.0,
        btc_sold=0.0,
        bridge_btc=0.0,
        bridge_value=0.0,
        debt=0.0,
        borrowed=0.0,
        repaid=0.0,
        status=BridgeStatus.RUIN,
    )


def simulate_bridge(params: BridgeParams) -> BridgeResult:
    """Spend the bridge year by year until the storm is over or it runs out.

    Runs ``max_projection_years`` when the storm never ends, otherwise five
    years past the storm and at least thirty. Interest accrues before each
    year's decision; a debt above ``loan_ltv`` of the bridge's value
    liquidates the whole bridge.
    """
    storm = storm_period(params)
    if math.isinf(storm.years):
        sim_years = params.max_projection_years
    else:
        sim_years = max(int(storm.years) + BRIDGE_STORM_PADDING, BRIDGE_MIN_SIM_YEARS)

    bridge = params.bridge_btc
    burn = params.annual_burn
    debt = 0.0
    start_age = _start_age(params)
    years = []
    ruin_year = None

    for i in range(sim_years):
        year, k, price, trend = _market(params, i, start_age)
        multiple = price / trend
        value = bridge * price
        swr = dynamic_swr(price, trend, params)
        debt *= 1 + params.loan_interest_rate

        sold = withdrawal = borrowed = repaid = 0.0
        if debt > value * params.loan_ltv and bridge > 0:
            sold, bridge, status = bridge, 0.0, BridgeStatus.RUIN
        elif bridge <= 0:
            status = BridgeStatus.RUIN
        elif multiple < 1.0 and burn <= value * params.loan_ltv - debt:
            debt += burn
            borrowed = withdrawal = burn
            status = BridgeStatus.BORROW
        else:
            target = max(value * swr, burn)
            needed = target / price
            if needed >= bridge:
                sold, withdrawal, bridge = bridge, value, 0.0
                status = BridgeStatus.RUIN
            else:
                sold, withdrawal = needed, target
                bridge -= needed
                if multiple < 1.0:
                    status = BridgeStatus.FORCED_SELL
                elif debt > 0:
                    repay_btc = min(debt / price, bridge * BRIDGE_REPAY_CAP)
                    repaid = repay_btc * price
                    debt -= repaid
                    if debt < DEBT_DUST:
                        debt = 0.0
                    sold += repay_btc
                    bridge -= repay_btc
                    status = BridgeStatus.REPAYING
                else:
                    status = BridgeStatus.SELLING

        years.append(
            BridgeYear(
                year=year,
                year_index=i,
                price=price,
                trend=trend,
                multiple=multiple,
                effective_k=k,
                swr_rate=swr,
                annual_burn=burn,
                withdrawal=withdrawal,
                btc_sold=sold,
                bridge_btc=bridge,
                bridge_value=bridge * price,
                debt=debt,
                borrowed=borrowed,
                repaid=repaid,
                status=status,
            )
        )
        if status is BridgeStatus.RUIN:
            ruin_year = year
            years.extend(_ruined_year(params, j) for j in range(i + 1, sim_years))
            break
        burn *= 1 + params.spend_growth_rate

    return BridgeResult(tuple(years), ruin_year, storm)


def simulate_forever(params: BridgeParams) -> ForeverResult:
    """Project the untouched forever half against the inflating burn."""
    forever_btc = params.forever_btc
    start_age = _start_age(params)
    years = []
    inexhaustible_year = None

    for i in range(params.max_projection_years + 1):
        year, _, price, _ = _market(params, i, start_age)
        value = forever_btc * price
        burn = params.annual_burn * (1 + params.spend_growth_rate) ** i
        threshold = forever_swr(year, params.model)
        ratio = burn / value if value > 0 else math.inf
        inexhaustible = ratio < threshold
        if inexhaustible and inexhaustible_year is None:
            inexhaustible_year = year
        years.append(
            ForeverYear(
                year=year,
                year_index=i,
                price=price,
                forever_value=value,
                annual_burn=burn,
                burn_ratio=ratio,
                safe_withdrawal=value * threshold,
                swr_rate=threshold,
                inexhaustible=inexhaustible,
            )
        )
    return ForeverResult(tuple(years), inexhaustible_year, forever_btc)


def bridge_summary(result: BridgeResult) -> Optional[dict]:
    """Totals over the bridge's funded years, or ``None`` if it never had one."""
    funded = [y for y in result.years if y.status is not BridgeStatus.RUIN]
    if not funded:
        return None
    last = funded[-1]
    return {
        "years_before_ruin": len(funded),
        "total_btc_sold": sum(y.btc_sold for y in funded),
        "total_withdrawn": sum(y.withdrawal for y in funded),
        "avg_swr": sum(y.swr_rate for y in funded) / len(funded),
        "final_bridge_btc": last.bridge_btc,
        "final_bridge_value": last.bridge_value,
        "survives_storm": result.survives_storm,
    }


# Searches


@dataclass(frozen=True)
class TotalSearch:
    """Smallest stack whose bridge outlives the storm; ``inf`` if unreachable."""

    min_total: float
    min_bridge: float
    min_forever: float
    iterations: int


@dataclass(frozen=True)
class BurnSearch:
    max_burn: float
    already_safe: bool
    iterations: int


@dataclass(frozen=True)
class SplitCandidate:
    split: float
    survives: bool
    storm_years: float
    ruin_year: Optional[int]


@dataclass(frozen=True)
class SplitSearch:
    best_split: Optional[float]
    best_storm_years: float
    candidates: tuple


def _survives(params: BridgeParams, **changes) -> bool:
    return simulate_bridge(replace(params, **changes)).survives_storm


def find_minimum_total(params: BridgeParams) -> TotalSearch:
    """Bisect the total stack, keeping ``bridge_split`` fixed."""
    lo = STACK_SEARCH_FLOOR
    hi = STACK_SEARCH_CEILING

    if not _survives(params, total_btc=hi):
        logging.info("Bridge fails at %s BTC, widening search to %s BTC", hi, STACK_SEARCH_ESCALATED_CEILING)
        hi = STACK_SEARCH_ESCALATED_CEILING
        if not _survives(params, total_btc=hi):
            return TotalSearch(math.inf, math.inf, math.inf, 0)

    iterations = 0
    while hi - lo > STACK_SEARCH_TOLERANCE and iterations < SEARCH_MAX_ITERATIONS:
        mid = (lo + hi) / 2
        if _survives(params, total_btc=mid):
            hi = mid
        else:
            lo = mid
        iterations += 1

    return TotalSearch(
        min_total=hi,
        min_bridge=hi * params.bridge_split,
        min_forever=hi * (1 - params.bridge_split),
        iterations=iterations,
    )


def find_max_burn(params: BridgeParams) -> BurnSearch:
    """Bisect the annual burn down from ``params.annual_burn`` in whole dollars."""
    if _survives(params):
        return BurnSearch(params.annual_burn, True, 0)

    lo = SPEND_SEARCH_FLOOR
    hi = params.annual_burn
    iterations = 0
    while hi - lo > SPEND_SEARCH_TOLERANCE and iterations < BURN_SEARCH_MAX_ITERATIONS:
        mid = float(math.floor((lo + hi) / 2 + 0.5))
        if _survives(params, annual_burn=mid):
            lo = mid
        else:
            hi = mid
        iterations += 1
    return BurnSearch(lo, False, iterations)


def find_optimal_split(params: BridgeParams) -> SplitSearch:
    """Grid-search the split for the shortest storm the bridge survives."""
    best_split = None
    best_storm = math.inf
    candidates = []
    for split in BRIDGE_SPLIT_GRID:
        result = simulate_bridge(replace(params, bridge_split=split))
        survives = result.survives_storm
        candidates.append(SplitCandidate(split, survives, result.storm.years, result.ruin_year))
        if survives and result.storm.years < best_storm:
            best_storm = result.storm.years
            best_split = split
    return SplitSearch(best_split, best_storm, tuple(candidates))


def find_earliest_retirement(params: BridgeParams, current_year: Optional[int] = None) -> Optional[int]:
    """Earliest retirement year, within the search window, at which some split works.

    Returns ``None`` when even the last year of the window fails.
    """
    lo = current_year if current_year is not None else date.today().year
    hi = lo + RETIREMENT_SEARCH_WINDOW

    def works(year: int) -> bool:
        return find_optimal_split(replace(params, retirement_year=year)).best_split is not None

    if not works(hi):
        return None
    for _ in range(RETIREMENT_SEARCH_MAX_ITERATIONS):
        if lo >= hi:
            break
        mid = (lo + hi) // 2
        if works(mid):
            hi = mid
        else:
            lo = mid + 1
    return hi


@dataclass(frozen=True)
class PlanFixes:
    """Ways to rescue a plan no split can save, each at a 50/50 split."""

    min_total: float
    additional_btc: float
    max_burn: float
    earliest_year: Optional[int]
    year_delay: Optional[int]


@dataclass(frozen=True)
class Plan:
    ok: bool
    split: float
    storm_years: float
    params: BridgeParams
    bridge: BridgeResult
    forever: ForeverResult
    candidates: tuple
    fixes: Optional[PlanFixes] = None


def optimize_plan(params: BridgeParams, current_year: Optional[int] = None) -> Plan:
    """Pick the best split, or explain how far the plan is from working."""
    optimal = find_optimal_split(params)
    if optimal.best_split is not None:
        best = replace(params, bridge_split=optimal.best_split)
        return Plan(
            ok=True,
            split=optimal.best_split,
            storm_years=optimal.best_storm_years,
            params=best,
            bridge=simulate_bridge(best),
            forever=simulate_forever(best),
            candidates=optimal.candidates,
        )

    fallback = replace(params, bridge_split=DEFAULT_BRIDGE_SPLIT)
    min_total = find_minimum_total(fallback).min_total
    earliest = find_earliest_retirement(params, current_year)
    bridge = simulate_bridge(fallback)
    return Plan(
        ok=False,
        split=DEFAULT_BRIDGE_SPLIT,
        storm_years=bridge.storm.years,
        params=fallback,
        bridge=bridge,
        forever=simulate_forever(fallback),
        candidates=optimal.candidates,
        fixes=PlanFixes(
            min_total=min_total,
            additional_btc=min_total - params.total_btc,
            max_burn=find_max_burn(fallback).max_burn,
            earliest_year=earliest,
            year_delay=earliest - params.retirement_year if earliest is not None else None,
        ),
    )


@dataclass(frozen=True)
class BridgeScenario:
    mode: ScenarioMode
    label: str
    storm_years: float
    survives: bool
    ruin_year: Optional[int]
    min_total: float
    summary: Optional[dict]


def compare_bridge_scenarios(params: BridgeParams) -> list[BridgeScenario]:
    """Storm length, survival and minimum stack under every scenario."""
    comparisons = []
    for mode in SCENARIO_MODES:
        scenario = replace(params, scenario_mode=mode)
        result = simulate_bridge(scenario)
        comparisons.append(
            BridgeScenario(
                mode=mode,
                label=scenario_label(mode),
                storm_years=result.storm.years,
                survives=result.survives_storm,
                ruin_year=result.ruin_year,
                min_total=find_minimum_total(scenario).min_total,
                summary=bridge_summary(result),
            )
        )
    return comparisons


# Monte Carlo


@dataclass(frozen=True)
class MonteCarloResult:
    n_sims: int
    survival_probability: float
    storm_years: int
    years: list
    bands: dict
    median_ruin_year: Optional[int]
    ruin_count: int
    survival_count: int


def monte_carlo_survival(
    params: BridgeParams,
    n_sims: int = MC_DEFAULT_SIMS,
    seed: Optional[int] = None,
    percentiles: tuple[int, ...] = MC_PERCENTILES,
) -> MonteCarloResult:
    """Run the bridge against random prices around the trend.

    Each year's price is ``trend * 10**(N(0, 1) * sigma)``, floored at
    ``support_floor_multiple`` times trend, drawn independently per path.
    The loan rules match :func:`simulate_bridge`. A path survives when it is
    not ruined before the end of the (deterministic) storm; bands are
    percentiles of the bridge's BTC at the end of each year.

    Raises:
        ValueError: If ``n_sims`` is not positive.
    """
    if n_sims <= 0:
        raise ValueError("n_sims must be positive")

    rng = np.random.default_rng(seed)
    n_years = params.max_projection_years
    bridge = np.full(n_sims, params.bridge_btc, dtype=np.float64)
    debt = np.zeros(n_sims, dtype=np.float64)
    ruin_year = np.zeros(n_sims, dtype=np.int64)
    holdings = np.zeros((n_sims, n_years), dtype=np.float64)
    xp, fp = _swr_curve(params)
    burn = params.annual_burn

    for i in range(n_years):
        year = params.retirement_year + i
        trend = trend_price(params.model, year_date(year))
        noise = rng.standard_normal(n_sims) * params.sigma
        price = np.maximum(trend * np.power(10.0, noise), trend * params.support_floor_multiple)
        value = bridge * price
        below = price / trend < 1.0
        swr = np.interp(price / trend, xp, fp)
        debt = debt * (1 + params.loan_interest_rate)

        live = ruin_year == 0
        liquidated = live & (bridge > 0) & (debt > value * params.loan_ltv)
        empty = live & ~liquidated & (bridge <= 0)
        active = live & ~liquidated & ~empty

        borrow = active & below & (burn <= value * params.loan_ltv - debt)
        debt = np.where(borrow, debt + burn, debt)

        selling = active & ~borrow
        needed = np.maximum(value * swr, burn) / price
        broke = selling & (needed >= bridge)
        sold = selling & ~broke
        bridge = np.where(sold, bridge - needed, bridge)

        repaying = sold & ~below & (debt > 0)
        repay_btc = np.minimum(debt / price, bridge * BRIDGE_REPAY_CAP)
        debt = np.where(repaying, debt - repay_btc * price, debt)
        debt = np.where(repaying & (debt < DEBT_DUST), 0.0, debt)
        bridge = np.where(repaying, bridge - repay_btc, bridge)

        ruined = liquidated | empty | broke
        bridge = np.where(ruined, 0.0, bridge)
        ruin_year[ruined] = year
        holdings[:, i] = bridge
        burn *= 1 + params.spend_growth_rate

    storm = storm_period(params)
    storm_years = n_years if math.isinf(storm.years) else int(storm.years)
    survived = (ruin_year == 0) | (ruin_year > params.retirement_year + storm_years)
    ruined_years = np.sort(ruin_year[ruin_year > 0])
    logging.debug("monte_carlo_survival: %d of %d paths ruined", ruined_years.size, n_sims)

    return MonteCarloResult(
        n_sims=n_sims,
        survival_probability=float(np.mean(survived)),
        storm_years=storm_years,
        years=[params.retirement_year + i for i in range(n_years)],
        bands={f"p{p}": np.percentile(holdings, p, axis=0).tolist() for p in percentiles},
        median_ruin_year=int(ruined_years[ruined_years.size // 2]) if ruined_years.size else None,
        ruin_count=int(ruined_years.size),
        survival_count=int(np.sum(survived)),
    )
