# config.py

# Power-law model
DEFAULT_MODEL = "santostasi"
GENESIS_ISO = "2009-01-03T00:00:00+00:00"
DAYS_PER_YEAR = 365.25

# Default values
DEFAULT_BTC_HOLDINGS = 1.0
DEFAULT_ANNUAL_SPEND = 50000.0
DEFAULT_START_YEAR = 2030
DEFAULT_HORIZON_YEARS = 30
DEFAULT_SPEND_GROWTH_RATE = 0.065  # M2-style fiat inflation
DEFAULT_SIGMA = 0.2
DEFAULT_SCENARIO_MODE = "cyclical"

# Loan defaults
DEFAULT_LOAN_LTV = 0.40
DEFAULT_LOAN_INTEREST_RATE = 0.08
DEFAULT_LOAN_THRESHOLD = 1.0  # borrow when price/trend is below this
# Share of the post-sale stack value used to pay down debt when a full
# repayment does not fit
DEFAULT_PARTIAL_REPAY_FRACTION = 0.10
LIQUIDATION_BUFFER = 1.2  # flag when price is within 20% of liquidation

# Valuation breakpoints (price / trend), upper bounds are exclusive
VALUATION_BREAKPOINTS = (
    (0.5, "Extremely Undervalued"),
    (0.75, "Undervalued"),
    (1.25, "Fair Value"),
    (2.0, "Overvalued"),
    (3.0, "Highly Overvalued"),
)
VALUATION_TOP_LABEL = "Extremely Overvalued"

# Log-periodic cycle model
CYCLE_LAMBDA = 2.007        # ratio between successive cycle lengths
CYCLE_TROUGH_AGE = 13.88    # Bitcoin age (years) at the Nov 2022 low
CYCLE_PEAK_K0 = 5.0
CYCLE_PEAK_ALPHA = 0.5      # peak amplitude decays as age ** -alpha
CYCLE_TROUGH_DEPTH = 1.0
CYCLE_BEAR_BIAS = 0.5
CYCLE_BLEND_YEARS = 2.0     # live-price anchor fades out over this span
SIGMA_K_MIN = -2.0
SIGMA_K_MAX = 2.0

# Solver settings
STACK_SEARCH_FLOOR = 0.001
STACK_SEARCH_CEILING = 100.0
STACK_SEARCH_ESCALATED_CEILING = 1000.0
STACK_SEARCH_TOLERANCE = 0.001
SEARCH_MAX_ITERATIONS = 50
SPEND_SEARCH_FLOOR = 1000.0
SPEND_SEARCH_TOLERANCE = 500.0

# Bridge / forever split
DEFAULT_BRIDGE_SPLIT = 0.50         # share of the stack spent through the storm
MAX_PROJECTION_YEARS = 50
BRIDGE_MIN_SIM_YEARS = 30
BRIDGE_STORM_PADDING = 5            # years simulated past the storm's end
FOREVER_SWR_FALLBACK = 0.03
FOREVER_SWR_SHARE = 0.25            # of the expected power-law return
SWR_HIGH_MULTIPLE = 2.0
SWR_LOW_MULTIPLE = 0.5
SWR_NORMAL_RATE = 0.04
SWR_HIGH_RATE = 0.06
SWR_LOW_RATE = 0.01
BRIDGE_LOAN_LTV = 0.50
BRIDGE_LOAN_RATE = 0.05
BRIDGE_REPAY_CAP = 0.5              # max share of the remaining bridge sold to repay debt
DEBT_DUST = 0.01
SUPPORT_FLOOR_MULTIPLE = 0.45       # Monte Carlo prices never fall below this x trend
BRIDGE_SPLIT_GRID = tuple(pct / 100 for pct in range(10, 91, 5))
BURN_SEARCH_MAX_ITERATIONS = 30
RETIREMENT_SEARCH_WINDOW = 30       # years ahead searched for the earliest retirement
RETIREMENT_SEARCH_MAX_ITERATIONS = 20
MC_DEFAULT_SIMS = 200
MC_PERCENTILES = (10, 25, 50, 75, 90)

# Input validation ranges
HOLDINGS_MAX = 21000000.0
HORIZON_RANGE = (1, 100)
START_YEAR_MIN = 2010
RATE_MIN = 0.0
RATE_MAX = 1.0
SIGMA_MAX = 2.0

# Accumulation defaults
DEFAULT_DCA_LUMP_SUM = 10000.0
DEFAULT_DCA_MONTHLY = 500.0
DEFAULT_ACCUMULATION_YEARS = 10

DEFAULT_EQUITY_LOAN_AMOUNT = 50000.0
DEFAULT_EQUITY_LOAN_YEARS = 10
DEFAULT_EQUITY_LOAN_RATE = 0.045
DEFAULT_HOME_VALUE = 500000.0
DEFAULT_MORTGAGE_BALANCE = 300000.0
HOME_LTV_WARNING = 0.80

DEFAULT_ANNUAL_REVENUE = 1000000.0
DEFAULT_NET_MARGIN = 0.10
DEFAULT_ALLOCATION_PCT = 0.20
DEFAULT_REVENUE_GROWTH = 0.05
TREASURY_STRATEGIES = ("monthly_profit", "annual_lump", "initial_plus_monthly")

# Collaborator settings
BITCOIN_PRICE_URL = "https://mempool.space/api/v1/prices"
BITCOIN_PRICE_TIMEOUT = 5  # seconds
