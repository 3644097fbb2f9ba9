# config/engine_settings.py
# Run-time settings for the Monte Carlo engine. A few may be overridden from the
# environment (read once at import).
import os

MODEL_VERSION = "2026.10"

DEFAULT_SEED = 123456789
DEFAULT_RUNS = int(os.environ.get("MC_SCENARIOS", "1000"))

# Worker pool
MAX_WORKERS = int(os.environ.get("MC_MAX_WORKERS", "8"))
MIN_WORKERS = 2
POOL_IDLE_SECONDS = float(os.environ.get("MC_POOL_IDLE_SECONDS", "300"))

# Ages
MAX_SIMULATION_AGE = 120
LONGEVITY_CLAMP_AGE = 93        # percentile band ages never extend past this
DEFAULT_LIFE_EXPECTANCY = 93
EARLY_RETIREMENT_MIN_AGE = 50
RMD_START_AGE = 73

# Balances and rates
MIN_ASSET_FLOOR = 10_000.0
DEPLETION_THRESHOLD = 1.0       # balances below this are treated as exhausted
RETURN_FLOOR = 0.01
VOLATILITY_CAP = 0.25
TAX_RATE_CEILING = 0.50
DEFAULT_WITHDRAWAL_RATE = 0.04
PENSION_SURVIVOR_SHARE = 0.50     # share of a pension that continues to the survivor

# Gross-withdrawal solver
SOLVER_TOLERANCE = 0.01
SOLVER_MAX_ITERATIONS = 60

DEFAULT_WITHDRAWAL_ORDER = ("cash_equivalents", "taxable", "tax_deferred", "tax_free")
DEFAULT_PERCENTILES = (5, 25, 50, 75, 95)

# Fallbacks used when a profile value is missing or invalid
DEFAULT_CURRENT_AGE = 45
DEFAULT_RETIREMENT_AGE = 65
MIN_STARTING_BALANCE = 1_000.0
DEFAULT_ASSET_BUCKET = "tax_deferred"
