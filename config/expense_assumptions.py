# config/expense_assumptions.py
# These are **reasonable defaults**; the input adapter lets a profile override them

# Healthcare
healthcare_share_of_expenses = 0.15     # share of general spending that tracks healthcare shocks

# Guardrails (Guyton-Klinger)
essential_portion = 0.70                # share of spending that is never cut
guardrail_min_remaining_years = 15      # cuts only apply with this much horizon left
capital_preservation_rules = (          # (ratio above initial rate, cut of discretionary)
    (1.30, 0.15),
    (1.20, 0.10),
    (1.10, 0.05),
)
prosperity_rules = (                    # (ratio below initial rate, raise)
    (0.70, 0.15),
    (0.80, 0.10),
)

# Stress transforms
baseline_inflation_for_stress = 0.025
inflation_shock_years = 5
early_retirement_savings_lost = 0.70    # share of forgone savings subtracted per missed year

# Long-term care episodes (only simulated when a profile enables them)
ltc_onset_age = 65
ltc_age_probabilities = (               # annual onset probability by age offset from 65
    0.005, 0.005, 0.006, 0.006, 0.007, 0.007, 0.008, 0.008, 0.009, 0.009,
    0.012, 0.015, 0.018, 0.021, 0.024, 0.027, 0.030, 0.033, 0.036, 0.040,
    0.045, 0.050, 0.055, 0.060, 0.065, 0.070, 0.075, 0.080, 0.085, 0.090,
    0.095, 0.100, 0.105, 0.110, 0.115, 0.120,
)
ltc_duration_mean = 2.0                 # years, log-normal
ltc_duration_std = 1.5
ltc_duration_bounds = (0.5, 5.0)
ltc_annual_cost_mean = 75_000.0         # today's dollars
ltc_annual_cost_std = 20_000.0
ltc_min_annual_cost = 40_000.0
ltc_inflation = 0.035
ltc_care_mix = (                        # (care type, probability, cost multiplier)
    ("home", 0.55, 0.78),
    ("assisted", 0.30, 0.71),
    ("nursing", 0.15, 1.28),
)
