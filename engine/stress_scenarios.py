# engine/stress_scenarios.py
#
# Pure parameter transforms for stress testing. Every transform works on a
# deep copy and returns new SimulationParams; the caller's object is never
# touched. A magnitude of 0 means "no shock" for every transform.
#

import logging
from dataclasses import replace
from typing import Callable, Dict, Iterable, Tuple

from config.engine_settings import (
    EARLY_RETIREMENT_MIN_AGE,
    MAX_SIMULATION_AGE,
    MIN_ASSET_FLOOR,
    RETURN_FLOOR,
    VOLATILITY_CAP,
)
from config.expense_assumptions import (
    baseline_inflation_for_stress,
    early_retirement_savings_lost,
    healthcare_share_of_expenses,
    inflation_shock_years,
)
from models import FixedReturn, IncomeKind, SimulationParams, StressScenario

logger = logging.getLogger(__name__)

BEAR_MARKET_IMMEDIATE = "bear-market-immediate"
BEAR_MARKET_RETIREMENT = "bear-market-retirement"
HIGH_INFLATION = "high-inflation"
LONGEVITY = "longevity"
HEALTHCARE_COSTS = "healthcare-costs"
SOCIAL_SECURITY_CUT = "social-security-cut"
HIGHER_TAXES = "higher-taxes"
LOWER_RETURNS = "lower-returns"
EARLY_RETIREMENT = "early-retirement"


# =============================================================================
# Helpers
# =============================================================================

def _shift_expected_return(params: SimulationParams, delta: float) -> SimulationParams:
    """Move the mean return by delta, keeping single-portfolio means above the floor."""
    if isinstance(params.return_source, FixedReturn):
        return replace(params, expected_return=max(RETURN_FLOOR, params.expected_return + delta))
    return replace(params, return_adjustment=params.return_adjustment + delta)


def _raise_volatility(params: SimulationParams, factor: float = 1.5) -> SimulationParams:
    if isinstance(params.return_source, FixedReturn):
        return replace(params, return_volatility=min(VOLATILITY_CAP, params.return_volatility * factor))
    return replace(params, volatility_multiplier=params.volatility_multiplier * factor)


# =============================================================================
# Transforms (magnitude units follow the scenario catalogue below)
# =============================================================================

def bear_market_immediate(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Immediate drop of `magnitude` percent (negative) on current balances."""
    floor = min(MIN_ASSET_FLOOR, params.current_assets)
    new_total = max(floor, params.current_assets * (1 + magnitude / 100))
    params = replace(params, buckets=params.buckets.rescaled_to(new_total))
    return _raise_volatility(params)


def bear_market_at_retirement(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Force the first retirement year's return to `magnitude` percent."""
    params = replace(params, first_retirement_year_return=magnitude / 100)
    return _raise_volatility(params)


def high_inflation(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Sustained inflation of `magnitude` percent a year."""
    rate = magnitude / 100
    growth = ((1 + rate) / (1 + baseline_inflation_for_stress)) ** inflation_shock_years
    params = replace(
        params,
        general_inflation=rate,
        annual_retirement_expenses=params.annual_retirement_expenses * growth,
        annual_healthcare_costs=params.annual_healthcare_costs * growth,
    )
    return _shift_expected_return(params, -(rate - baseline_inflation_for_stress))


def longevity(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Live `magnitude` years longer (spouse included)."""
    years = int(round(magnitude))
    spouse_le = params.spouse_life_expectancy
    if spouse_le is not None:
        spouse_le = min(MAX_SIMULATION_AGE, spouse_le + years)

    model = params.longevity_model
    if model is not None:
        model = replace(
            model,
            base_expectancy=model.base_expectancy + years,
            max_age=min(MAX_SIMULATION_AGE, model.max_age + years),
        )
    return replace(
        params,
        life_expectancy=min(MAX_SIMULATION_AGE, params.life_expectancy + years),
        spouse_life_expectancy=spouse_le,
        longevity_model=model,
    )


def healthcare_costs(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Healthcare costs up `magnitude` percent; part of general spending follows."""
    increase = magnitude / 100
    healthcare = params.annual_healthcare_costs
    general = params.annual_retirement_expenses - healthcare
    new_healthcare = healthcare * (1 + increase)
    new_general = general * (1 + increase * healthcare_share_of_expenses)
    return replace(
        params,
        annual_healthcare_costs=new_healthcare,
        annual_retirement_expenses=new_general + new_healthcare,
    )


def social_security_cut(params: SimulationParams, magnitude: float) -> SimulationParams:
    """
    Scale Social Security by (1 + magnitude/100). When no Social Security
    stream exists, every guaranteed stream is scaled instead.
    """
    factor = max(0.0, 1 + magnitude / 100)
    has_ss = any(s.kind == IncomeKind.SOCIAL_SECURITY for s in params.income_streams)
    streams = tuple(
        replace(s, annual_amount=s.annual_amount * factor)
        if (s.kind == IncomeKind.SOCIAL_SECURITY or not has_ss) else s
        for s in params.income_streams
    )
    return replace(params, income_streams=streams)


def higher_taxes(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Statutory rates up `magnitude` percent; each rate is capped at the ceiling when applied."""
    return replace(params, tax_rate_multiplier=max(0.0, params.tax_rate_multiplier * (1 + magnitude / 100)))


def lower_returns(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Mean return lower by |magnitude| percentage points."""
    return _shift_expected_return(params, -abs(magnitude) / 100)


def early_retirement(params: SimulationParams, magnitude: float) -> SimulationParams:
    """Retire |magnitude| years earlier, losing most of those years' savings."""
    years = int(round(abs(magnitude)))
    new_retirement = max(EARLY_RETIREMENT_MIN_AGE, params.retirement_age - years, params.current_age)
    years_lost = params.retirement_age - new_retirement
    if years_lost <= 0:
        return params

    lost_savings = params.annual_savings * years_lost * early_retirement_savings_lost
    floor = min(MIN_ASSET_FLOOR, params.current_assets)
    new_total = max(floor, params.current_assets - lost_savings)
    return replace(
        params,
        retirement_age=new_retirement,
        buckets=params.buckets.rescaled_to(new_total),
    )


SHOCK_TRANSFORMS: Dict[str, Callable[[SimulationParams, float], SimulationParams]] = {
    BEAR_MARKET_IMMEDIATE: bear_market_immediate,
    BEAR_MARKET_RETIREMENT: bear_market_at_retirement,
    HIGH_INFLATION: high_inflation,
    LONGEVITY: longevity,
    HEALTHCARE_COSTS: healthcare_costs,
    SOCIAL_SECURITY_CUT: social_security_cut,
    HIGHER_TAXES: higher_taxes,
    LOWER_RETURNS: lower_returns,
    EARLY_RETIREMENT: early_retirement,
}


DEFAULT_STRESS_SCENARIOS: Tuple[StressScenario, ...] = (
    StressScenario(BEAR_MARKET_IMMEDIATE, "Immediate Bear Market", "market", -30.0,
                   description="30% portfolio drop today with elevated volatility"),
    StressScenario(BEAR_MARKET_RETIREMENT, "Bear Market at Retirement", "market", -30.0,
                   description="30% loss in the first year of retirement"),
    StressScenario(HIGH_INFLATION, "High Inflation", "inflation", 5.0,
                   description="Sustained 5% annual inflation"),
    StressScenario(LONGEVITY, "Extended Longevity", "longevity", 5.0,
                   description="Living 5 years longer than expected"),
    StressScenario(HEALTHCARE_COSTS, "Rising Healthcare Costs", "costs", 50.0,
                   description="Healthcare costs 50% higher"),
    StressScenario(SOCIAL_SECURITY_CUT, "Social Security Cut", "income", -23.0,
                   description="23% reduction in Social Security benefits"),
    StressScenario(HIGHER_TAXES, "Higher Taxes", "tax", 20.0,
                   description="Tax rates 20% higher"),
    StressScenario(LOWER_RETURNS, "Lower Returns", "market", -2.0,
                   description="Expected returns 2 percentage points lower"),
    StressScenario(EARLY_RETIREMENT, "Early Retirement", "timing", -2.0,
                   description="Retiring 2 years earlier than planned"),
)


def apply_shock(params: SimulationParams, shock_id: str, magnitude: float) -> SimulationParams:
    """Apply one shock to a copy of params."""
    try:
        transform = SHOCK_TRANSFORMS[shock_id]
    except KeyError:
        raise ValueError(f"Unknown stress scenario id: {shock_id!r}") from None

    clone = params.clone()
    if not magnitude:
        return clone
    return transform(clone, float(magnitude))


def apply_stress_scenarios(params: SimulationParams, scenarios: Iterable[StressScenario]) -> SimulationParams:
    """Apply every enabled scenario in order; later shocks see earlier results."""
    result = params.clone()
    for scenario in scenarios:
        if not scenario.enabled:
            continue
        logger.debug("Applying stress scenario %s (magnitude %s)", scenario.id, scenario.magnitude)
        result = apply_shock(result, scenario.id, scenario.magnitude)
    return result
