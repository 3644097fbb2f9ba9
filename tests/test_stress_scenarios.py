import copy
from dataclasses import replace

import pytest

from engine import stress_scenarios as ss
from engine.stress_scenarios import (
    DEFAULT_STRESS_SCENARIOS,
    SHOCK_TRANSFORMS,
    apply_shock,
    apply_stress_scenarios,
)
from models import (
    AssetBuckets,
    IncomeKind,
    IncomeStream,
    LongevityModel,
    SimulationParams,
    StaticAllocation,
    StressScenario,
)


@pytest.fixture
def params():
    return SimulationParams(
        current_age=55,
        retirement_age=65,
        life_expectancy=90,
        spouse_age=53,
        spouse_life_expectancy=92,
        buckets=AssetBuckets(tax_deferred=400_000, taxable=100_000, taxable_basis=60_000),
        annual_savings=20_000,
        annual_retirement_expenses=80_000,
        annual_healthcare_costs=10_000,
        income_streams=(
            IncomeStream(IncomeKind.SOCIAL_SECURITY, 30_000, 67),
            IncomeStream(IncomeKind.PENSION, 12_000, 65, cola=False),
        ),
        expected_return=0.07,
        return_volatility=0.15,
    )


@pytest.mark.parametrize("shock_id", sorted(SHOCK_TRANSFORMS))
def test_transforms_never_mutate_input(params, shock_id):
    snapshot = copy.deepcopy(params)
    stressed = apply_shock(params, shock_id, -25.0)
    assert params == snapshot
    assert stressed is not params
    assert stressed.buckets is not params.buckets


@pytest.mark.parametrize("shock_id", sorted(SHOCK_TRANSFORMS))
def test_zero_magnitude_is_identity(params, shock_id):
    assert apply_shock(params, shock_id, 0) == params


def test_unknown_shock_raises(params):
    with pytest.raises(ValueError):
        apply_shock(params, "alien-invasion", 10)


def test_bear_market_immediate(params):
    stressed = apply_shock(params, ss.BEAR_MARKET_IMMEDIATE, -30)
    assert stressed.current_assets == pytest.approx(350_000)
    assert stressed.buckets.tax_deferred == pytest.approx(280_000)
    assert stressed.buckets.taxable_basis == pytest.approx(42_000)
    assert stressed.return_volatility == pytest.approx(0.225)


def test_bear_market_floors_assets_and_caps_volatility(params):
    small = replace(params, buckets=AssetBuckets(tax_deferred=12_000), return_volatility=0.2)
    stressed = apply_shock(small, ss.BEAR_MARKET_IMMEDIATE, -90)
    assert stressed.current_assets == pytest.approx(10_000)
    assert stressed.return_volatility == pytest.approx(0.25)


def test_bear_market_at_retirement_forces_first_year(params):
    stressed = apply_shock(params, ss.BEAR_MARKET_RETIREMENT, -30)
    assert stressed.first_retirement_year_return == pytest.approx(-0.30)
    assert stressed.current_assets == params.current_assets


def test_bear_market_on_allocation_scales_volatility_multiplier(params):
    alloc = replace(params, return_source=StaticAllocation.from_dict({"us_stocks": 1.0}))
    stressed = apply_shock(alloc, ss.BEAR_MARKET_IMMEDIATE, -30)
    assert stressed.volatility_multiplier == pytest.approx(1.5)
    assert stressed.return_volatility == params.return_volatility


def test_high_inflation(params):
    stressed = apply_shock(params, ss.HIGH_INFLATION, 5)
    growth = (1.05 / 1.025) ** 5
    assert stressed.general_inflation == pytest.approx(0.05)
    assert stressed.annual_retirement_expenses == pytest.approx(80_000 * growth)
    assert stressed.expected_return == pytest.approx(0.045)

    low_return = replace(params, expected_return=0.02)
    assert apply_shock(low_return, ss.HIGH_INFLATION, 8).expected_return == pytest.approx(0.01)


def test_longevity_extends_both_and_caps_model(params):
    stressed = apply_shock(params, ss.LONGEVITY, 5)
    assert stressed.life_expectancy == 95
    assert stressed.spouse_life_expectancy == 97

    modeled = replace(params, longevity_model=LongevityModel(92, 5, 118))
    stressed = apply_shock(modeled, ss.LONGEVITY, 5)
    assert stressed.longevity_model.max_age == 120
    assert stressed.longevity_model.base_expectancy == 97


def test_healthcare_costs(params):
    stressed = apply_shock(params, ss.HEALTHCARE_COSTS, 50)
    assert stressed.annual_healthcare_costs == pytest.approx(15_000)
    assert stressed.annual_retirement_expenses == pytest.approx(70_000 * 1.075 + 15_000)


def test_social_security_cut_leaves_pension(params):
    stressed = apply_shock(params, ss.SOCIAL_SECURITY_CUT, -23)
    ss_stream, pension = stressed.income_streams
    assert ss_stream.annual_amount == pytest.approx(23_100)
    assert pension.annual_amount == pytest.approx(12_000)


def test_higher_taxes_multiplier(params):
    assert apply_shock(params, ss.HIGHER_TAXES, 20).tax_rate_multiplier == pytest.approx(1.2)


def test_lower_returns_floor(params):
    assert apply_shock(params, ss.LOWER_RETURNS, -2).expected_return == pytest.approx(0.05)
    tiny = replace(params, expected_return=0.015)
    assert apply_shock(tiny, ss.LOWER_RETURNS, -2).expected_return == pytest.approx(0.01)


def test_early_retirement(params):
    stressed = apply_shock(params, ss.EARLY_RETIREMENT, -2)
    assert stressed.retirement_age == 63
    assert stressed.current_assets == pytest.approx(500_000 - 20_000 * 2 * 0.7)


def test_early_retirement_age_and_asset_floors(params):
    stressed = apply_shock(replace(params, retirement_age=52, current_age=45), ss.EARLY_RETIREMENT, -5)
    assert stressed.retirement_age == 50

    poor = replace(params, buckets=AssetBuckets(tax_deferred=15_000), annual_savings=50_000)
    assert apply_shock(poor, ss.EARLY_RETIREMENT, -3).current_assets == pytest.approx(10_000)


def test_combined_scenarios_apply_in_order(params):
    scenarios = [
        StressScenario(ss.LOWER_RETURNS, "Lower", "market", -2.0),
        StressScenario(ss.HIGH_INFLATION, "Inflation", "inflation", 5.0),
    ]
    combined = apply_stress_scenarios(params, scenarios)
    chained = apply_shock(apply_shock(params, ss.LOWER_RETURNS, -2.0), ss.HIGH_INFLATION, 5.0)
    assert combined == chained
    assert combined.expected_return == pytest.approx(0.025)


def test_disabled_scenarios_leave_baseline(params):
    disabled = [replace(s, enabled=False) for s in DEFAULT_STRESS_SCENARIOS]
    assert apply_stress_scenarios(params, disabled) == params


def test_default_catalogue_covers_every_shock():
    assert {s.id for s in DEFAULT_STRESS_SCENARIOS} == set(SHOCK_TRANSFORMS)
