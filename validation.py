# validation.py
from config import (
    HOLDINGS_MAX,
    HORIZON_RANGE,
    RATE_MAX,
    RATE_MIN,
    SIGMA_MAX,
    START_YEAR_MIN,
)
from powerlaw import MODELS, ModelParameters
from scenarios import ScenarioMode


def validate_simulation_params(params):
    """Validate a :class:`simulation.SimulationParams` and return any errors found"""
    errors = []

    if not isinstance(params.model, ModelParameters) and params.model not in MODELS:
        errors.append(f"Unknown model: {params.model}")

    if params.btc_holdings < RATE_MIN or params.btc_holdings > HOLDINGS_MAX:
        errors.append("Bitcoin holdings must be between 0 and 21,000,000")

    if params.annual_spend < RATE_MIN:
        errors.append("Annual spend cannot be negative")

    if params.start_year < START_YEAR_MIN:
        errors.append(f"Start year must be {START_YEAR_MIN} or later")

    if not HORIZON_RANGE[0] <= params.horizon_years <= HORIZON_RANGE[1]:
        errors.append(
            f"Horizon must be between {HORIZON_RANGE[0]} and {HORIZON_RANGE[1]} years"
        )

    if params.spend_growth_rate < RATE_MIN:
        errors.append("Spend growth rate cannot be negative")

    if not RATE_MIN < params.sigma <= SIGMA_MAX:
        errors.append(f"Sigma must be greater than 0 and at most {SIGMA_MAX}")

    try:
        ScenarioMode(params.scenario_mode)
    except ValueError:
        errors.append(f"Unknown scenario mode: {params.scenario_mode}")

    if not RATE_MIN <= params.loan_ltv <= RATE_MAX:
        errors.append("Loan-to-value must be between 0 and 1")

    if params.loan_interest_rate < RATE_MIN:
        errors.append("Loan interest rate cannot be negative")

    if params.loan_threshold <= RATE_MIN:
        errors.append("Loan threshold must be positive")

    if not RATE_MIN <= params.partial_repay_fraction <= RATE_MAX:
        errors.append("Partial repayment fraction must be between 0 and 1")

    return errors
