"""Side-by-side comparison of sell-only and loan-backed strategies."""

import math
from dataclasses import asdict, dataclass, replace
from typing import Optional, Sequence

import pandas as pd

from scenarios import SCENARIO_MODES, ScenarioMode, scenario_label
from simulation import (
    SimulationParams,
    SimulationResult,
    simulate_sell_only,
    simulate_with_loans,
)
from solver import find_minimum_stack


@dataclass(frozen=True)
class ScenarioComparison:
    mode: ScenarioMode
    label: str
    min_stack_sell_only: float
    min_stack_with_loans: float
    btc_saved: float
    savings_pct: float
    total_interest: float
    sell_only: Optional[SimulationResult]
    with_loans: Optional[SimulationResult]


def _savings(sell_stack: float, loan_stack: float) -> tuple[float, float]:
    """Return ``(btc_saved, savings_pct)`` handling unreachable stacks."""
    if math.isinf(sell_stack) and math.isinf(loan_stack):
        return 0.0, 0.0
    if math.isinf(sell_stack):
        return math.inf, 100.0
    saved = sell_stack - loan_stack
    pct = saved / sell_stack * 100 if sell_stack > 0 else 0.0
    return saved, pct


def compare_strategies(base_params: SimulationParams) -> list[ScenarioComparison]:
    """Solve minimum stacks for both strategies across every scenario.

    Each scenario is then simulated at its solved stack. Scenarios with no
    finite solution carry ``None`` instead of a simulation.
    """
    comparisons = []
    for mode in SCENARIO_MODES:
        params = replace(base_params, scenario_mode=mode)
        sell_min = find_minimum_stack(params, use_loans=False).min_stack
        loan_min = find_minimum_stack(params, use_loans=True).min_stack

        sell_sim = None
        if math.isfinite(sell_min):
            sell_sim = simulate_sell_only(replace(params, btc_holdings=sell_min))
        loan_sim = None
        if math.isfinite(loan_min):
            loan_sim = simulate_with_loans(replace(params, btc_holdings=loan_min))

        saved, pct = _savings(sell_min, loan_min)
        comparisons.append(
            ScenarioComparison(
                mode=mode,
                label=scenario_label(mode),
                min_stack_sell_only=sell_min,
                min_stack_with_loans=loan_min,
                btc_saved=saved,
                savings_pct=pct,
                total_interest=loan_sim.total_interest_paid if loan_sim else 0.0,
                sell_only=sell_sim,
                with_loans=loan_sim,
            )
        )
    return comparisons


def comparison_frame(comparisons: Sequence[ScenarioComparison]) -> pd.DataFrame:
    """Tabulate comparisons, one row per scenario indexed by mode."""
    rows = [
        {
            "mode": c.mode.value,
            "Scenario": c.label,
            "Min stack, sell only (₿)": c.min_stack_sell_only,
            "Min stack, with loans (₿)": c.min_stack_with_loans,
            "BTC saved (₿)": c.btc_saved,
            "Savings (%)": c.savings_pct,
            "Total interest": c.total_interest,
        }
        for c in comparisons
    ]
    return pd.DataFrame(rows).set_index("mode")


def result_frame(result: SimulationResult) -> pd.DataFrame:
    """Yearly records of ``result`` as a DataFrame indexed by year."""
    rows = []
    for record in result.records:
        row = asdict(record)
        row["status"] = record.status.value
        rows.append(row)
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.set_index("year")
