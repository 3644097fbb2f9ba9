from dataclasses import replace

import pytest

from engine.simulator import ScenarioSimulator, simulate_scenario
from models import (
    AssetBuckets,
    DollarMode,
    IncomeKind,
    IncomeStream,
    LongevityModel,
    Phase,
    SimulationParams,
    WithdrawalPolicy,
)


def test_same_seed_gives_identical_scenarios(four_percent_params):
    a = simulate_scenario(four_percent_params, seed=2024, count_legacy_goal=False)
    b = simulate_scenario(four_percent_params, seed=2024, count_legacy_goal=False)
    assert a == b


def test_different_seeds_differ(four_percent_params):
    a = simulate_scenario(four_percent_params, seed=1, count_legacy_goal=False)
    b = simulate_scenario(four_percent_params, seed=2, count_legacy_goal=False)
    assert a.cash_flows[0].ending_balance != b.cash_flows[0].ending_balance


def test_phases_and_first_retirement_withdrawal(four_percent_params):
    outcome = simulate_scenario(four_percent_params, seed=7, count_legacy_goal=False)
    flows = outcome.cash_flows

    assert flows[0].age == 45
    assert all(cf.phase == Phase.ACCUMULATION for cf in flows if cf.age < 65)

    first = next(cf for cf in flows if cf.age == 65)
    assert first.phase == Phase.RETIREMENT_ACTIVE
    assert first.gross_withdrawal == pytest.approx(0.04 * first.starting_balance, rel=1e-9)
    assert first.guaranteed_income == pytest.approx(30_000)


def test_fixed_withdrawal_held_constant_in_real_terms(four_percent_params):
    outcome = simulate_scenario(four_percent_params, seed=7, count_legacy_goal=False)
    active = [cf for cf in outcome.cash_flows if cf.phase == Phase.RETIREMENT_ACTIVE and not cf.shortfall]
    assert len(active) > 2
    assert active[1].gross_withdrawal == pytest.approx(active[0].gross_withdrawal)


@pytest.mark.parametrize("seed", range(5))
def test_balances_never_negative(four_percent_params, seed):
    outcome = simulate_scenario(four_percent_params, seed=seed, count_legacy_goal=False)
    for cf in outcome.cash_flows:
        assert cf.starting_balance >= 0
        assert cf.ending_balance >= 0


def test_depletion_marks_failure_and_zero_balances():
    params = SimulationParams(
        current_age=65, retirement_age=65, life_expectancy=90,
        buckets=AssetBuckets(tax_free=100_000),
        annual_retirement_expenses=80_000,
        withdrawal_policy=WithdrawalPolicy.NEEDS_BASED,
    )
    outcome = simulate_scenario(params, seed=3, count_legacy_goal=False)

    assert not outcome.success
    assert outcome.depletion_age is not None
    after = [cf for cf in outcome.cash_flows if cf.age > outcome.depletion_age]
    assert after and all(cf.phase == Phase.DEPLETED for cf in after)
    assert all(cf.ending_balance == 0.0 for cf in after)
    assert outcome.ending_balance == 0.0


def test_guaranteed_income_covering_need_never_withdraws(retiree_params):
    params = replace(
        retiree_params,
        annual_retirement_expenses=20_000,
        annual_healthcare_costs=0.0,
        income_streams=(IncomeStream(IncomeKind.PENSION, 40_000, 60),),
    )
    outcome = simulate_scenario(params, seed=5, count_legacy_goal=False)
    assert outcome.success
    assert all(cf.gross_withdrawal == 0.0 for cf in outcome.cash_flows if cf.age < 73)


def test_needs_based_withdrawal_covers_spending(retiree_params):
    outcome = simulate_scenario(retiree_params, seed=11, count_legacy_goal=False)
    first = outcome.cash_flows[0]
    assert first.net_cash_flow == pytest.approx(0.0, abs=0.05)
    # Social Security starts at 67
    assert first.guaranteed_income == 0.0
    assert outcome.cash_flows[2].guaranteed_income == pytest.approx(28_000)


def test_legacy_goal_only_counts_when_requested(retiree_params):
    params = replace(retiree_params, legacy_goal=50_000_000, return_volatility=0.0)
    assert simulate_scenario(params, seed=1, count_legacy_goal=False).success
    outcome = simulate_scenario(params, seed=1, count_legacy_goal=True)
    assert not outcome.success
    assert not outcome.legacy_goal_met


def test_dollar_mode_is_tagged(four_percent_params):
    nominal = replace(four_percent_params, dollar_mode=DollarMode.NOMINAL)
    assert simulate_scenario(nominal, seed=1, count_legacy_goal=False).dollar_mode == DollarMode.NOMINAL
    assert simulate_scenario(four_percent_params, seed=1, count_legacy_goal=False).dollar_mode == DollarMode.REAL


def test_forced_crash_in_first_retirement_year(four_percent_params):
    params = replace(four_percent_params, first_retirement_year_return=-0.30)
    outcome = simulate_scenario(params, seed=9, count_legacy_goal=False)
    first = next(cf for cf in outcome.cash_flows if cf.age == 65)
    assert first.investment_return == pytest.approx(0.70 / 1.025 - 1)


def test_stochastic_longevity_varies_horizon(four_percent_params):
    params = replace(four_percent_params, longevity_model=LongevityModel(90, 6, 105))
    horizons = {simulate_scenario(params, seed=s, count_legacy_goal=False).horizon_age for s in range(12)}
    assert len(horizons) > 1
    assert max(horizons) <= 105


def test_spouse_extends_horizon(four_percent_params):
    params = replace(four_percent_params, spouse_age=40, spouse_life_expectancy=95)
    simulator = ScenarioSimulator(params, count_legacy_goal=False)
    assert simulator.max_horizon_age == 100


def test_guardrails_record_adjustments(retiree_params):
    params = replace(
        retiree_params,
        withdrawal_policy=WithdrawalPolicy.GUARDRAILS,
        annual_retirement_expenses=120_000,
        life_expectancy=100,
    )
    outcome = simulate_scenario(params, seed=4, count_legacy_goal=False)
    assert outcome.guardrail_adjustments > 0
    assert outcome.cash_flows[0].guardrail_reason is None
    reasons = [cf.guardrail_reason for cf in outcome.cash_flows if cf.guardrail_reason is not None]
    assert len(reasons) == outcome.guardrail_adjustments
    assert set(reasons) <= {"capital_preservation", "prosperity", "essential_floor"}


def test_trace_frame_has_one_row_per_year(four_percent_params):
    outcome = simulate_scenario(four_percent_params, seed=1, count_legacy_goal=False)
    frame = outcome.to_frame()
    assert len(frame) == len(outcome.cash_flows)
    assert {"age", "ending_balance", "total_taxes", "net_cash_flow"} <= set(frame.columns)


def test_irmaa_is_off_by_default(retiree_params):
    params = replace(retiree_params, income_streams=(IncomeStream(IncomeKind.PENSION, 250_000, 65),))
    outcome = simulate_scenario(params, seed=3, count_legacy_goal=False)
    assert all(cf.irmaa_surcharge == 0.0 for cf in outcome.cash_flows)


def test_irmaa_uses_two_year_lookback(retiree_params):
    params = replace(
        retiree_params,
        include_irmaa=True,
        income_streams=(IncomeStream(IncomeKind.PENSION, 250_000, 65),),
    )
    flows = simulate_scenario(params, seed=3, count_legacy_goal=False).cash_flows

    assert flows[0].irmaa_surcharge == 0.0
    assert flows[1].irmaa_surcharge == 0.0
    # Year-0 MAGI is the 250k pension: fifth single tier
    assert flows[2].irmaa_surcharge == pytest.approx(458.50 * 12)
    assert flows[2].total_taxes > flows[2].federal_tax + flows[2].state_tax + flows[2].capital_gains_tax


@pytest.fixture
def couple_params():
    return SimulationParams(
        current_age=70,
        retirement_age=70,
        life_expectancy=75,
        spouse_age=70,
        spouse_life_expectancy=85,
        filing_status="married_filing_jointly",
        buckets=AssetBuckets(tax_free=2_000_000),
        annual_retirement_expenses=40_000,
        income_streams=(
            IncomeStream(IncomeKind.SOCIAL_SECURITY, 30_000, 67, cola=False),
            IncomeStream(IncomeKind.SOCIAL_SECURITY, 15_000, 67, cola=False, owner="spouse"),
            IncomeStream(IncomeKind.PENSION, 20_000, 65, cola=False),
        ),
        expected_return=0.0,
        return_volatility=0.0,
        withdrawal_policy=WithdrawalPolicy.NEEDS_BASED,
        state_of_residence="FL",
        dollar_mode=DollarMode.NOMINAL,
    )


def test_survivor_income_after_primary_dies(couple_params):
    outcome = simulate_scenario(couple_params, seed=1, count_legacy_goal=False)
    assert outcome.horizon_age == 85
    by_age = {cf.age: cf for cf in outcome.cash_flows}

    assert by_age[75].guaranteed_income == pytest.approx(30_000 + 15_000 + 20_000)
    # Survivor keeps the larger benefit and half the pension
    assert by_age[76].guaranteed_income == pytest.approx(30_000 + 10_000)


def test_survivor_files_single(couple_params):
    survivor = ScenarioSimulator(couple_params, count_legacy_goal=False)
    assert survivor.deceased_at(76, 75, 85) == "self"
    assert survivor.deceased_at(76, 80, 75) == "spouse"
    assert survivor.deceased_at(75, 75, 85) is None

    spouse_pension = replace(
        couple_params,
        income_streams=(IncomeStream(IncomeKind.PENSION, 100_000, 65, cola=False, owner="spouse"),),
    )
    by_age = {cf.age: cf for cf in simulate_scenario(spouse_pension, seed=1, count_legacy_goal=False).cash_flows}
    # Same income before and after; single brackets and one age deduction cost more
    assert by_age[76].guaranteed_income == pytest.approx(by_age[75].guaranteed_income)
    assert by_age[76].federal_tax > by_age[75].federal_tax


def test_single_household_has_no_survivor_state(four_percent_params):
    simulator = ScenarioSimulator(four_percent_params, count_legacy_goal=False)
    assert simulator.deceased_at(90, 80, None) is None
