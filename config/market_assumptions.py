# =============================================================================
# Market Info used in simulations
# =============================================================================
import numpy as np

# Single-portfolio defaults (nominal, arithmetic)
default_expected_return = 0.07
default_return_volatility = 0.15
return_distribution = "lognormal"   # "lognormal" or "normal"

# Inflation
general_inflation = 0.025
healthcare_inflation = 0.045
ss_cola_rate = 0.025

# Per asset-class capital market assumptions (nominal)
asset_classes = ("us_stocks", "intl_stocks", "bonds", "cash")

asset_class_mu = np.array([0.075, 0.070, 0.045, 0.030])
asset_class_sigma = np.array([0.165, 0.180, 0.070, 0.010])

corr_matrix = np.array([
    [ 1.00,  0.80,  0.10,  0.00],
    [ 0.80,  1.00,  0.10,  0.00],
    [ 0.10,  0.10,  1.00,  0.20],
    [ 0.00,  0.00,  0.20,  1.00]
])

# Target-date style schedule: (minimum years until retirement, weights)
# Rows are scanned top down, the first row whose threshold is met wins.
default_glide_path = (
    (20, {"us_stocks": 0.60, "intl_stocks": 0.30, "bonds": 0.10, "cash": 0.00}),
    (10, {"us_stocks": 0.50, "intl_stocks": 0.25, "bonds": 0.25, "cash": 0.00}),
    (5,  {"us_stocks": 0.40, "intl_stocks": 0.20, "bonds": 0.35, "cash": 0.05}),
    (0,  {"us_stocks": 0.35, "intl_stocks": 0.15, "bonds": 0.40, "cash": 0.10}),
    (-10, {"us_stocks": 0.30, "intl_stocks": 0.10, "bonds": 0.50, "cash": 0.10}),
)

# Stratified (Latin hypercube) sampling covers this many leading years
lhs_years = 30
