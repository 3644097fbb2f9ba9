# engine.simulator.py

import logging
from typing import List, Optional, Tuple

import numpy as np

from config.engine_settings import DEPLETION_THRESHOLD, MAX_SIMULATION_AGE, SOLVER_TOLERANCE
from models import (
    AssetBuckets,
    DollarMode,
    Phase,
    ScenarioOutcome,
    SimulationParams,
    WithdrawalPolicy,
    YearlyCashFlow,
)
from engine.accounts_income import AccountsIncomeEngine
from engine.guardrails import GuardrailAdjuster
from engine.long_term_care import care_costs, draw_episode
from engine.market_generator import ReturnGenerator, ScenarioDraws, longevity_age, make_rng
from engine.withdrawal_engine import WithdrawalEngine, WithdrawalResult
from utils.input_adapter import normalize_params

logger = logging.getLogger(__name__)


class ScenarioSimulator:
    """
    Runs single retirement scenarios for one (normalized) parameter set.

    A scenario walks year by year from the current age to the horizon age
    through three phases: accumulation (before retirement), active retirement
    (withdrawals fund spending) and depleted (portfolio exhausted; only
    guaranteed income remains). The horizon is the life expectancy, extended
    by a longer-lived spouse, or drawn from the stochastic longevity model.
    Once one spouse has died the survivor's income, filing status and ages
    apply for the rest of the horizon.

    Args:
        params: Simulation parameters, already passed through normalize_params.
        count_legacy_goal: When True a scenario only succeeds if the ending
            balance also meets the legacy goal.
    """
    def __init__(self, params: SimulationParams, *, count_legacy_goal: bool):
        self.params = params
        self.count_legacy_goal = count_legacy_goal
        self.max_horizon_age = self._max_horizon_age()
        self.n_years = self.max_horizon_age - params.current_age + 1

        self.generator = ReturnGenerator(params, self.n_years)
        self.income_engine = AccountsIncomeEngine(params)
        self.withdrawal_engine = WithdrawalEngine(params, self.income_engine)
        self.nominal = params.dollar_mode == DollarMode.NOMINAL

    # ----------------------------------------------------------------------
    # Horizon
    # ----------------------------------------------------------------------
    def _spouse_horizon(self, spouse_expectancy: Optional[float]) -> Optional[int]:
        p = self.params
        if p.spouse_age is None or spouse_expectancy is None:
            return None
        return int(round(p.current_age + (spouse_expectancy - p.spouse_age)))

    def _max_horizon_age(self) -> int:
        p = self.params
        ages = [p.life_expectancy]
        if p.longevity_model is not None:
            ages.append(p.longevity_model.max_age)
        spouse = self._spouse_horizon(p.spouse_life_expectancy)
        if spouse is not None:
            ages.append(spouse)
        return int(min(max(max(ages), p.current_age), MAX_SIMULATION_AGE))

    def death_ages(self, draws: ScenarioDraws) -> Tuple[int, Optional[int]]:
        """Last age alive for the primary and, when there is one, the spouse (primary's age)."""
        p = self.params
        if p.longevity_model is not None:
            model = p.longevity_model
            own = longevity_age(draws.longevity_u, model.base_expectancy, model.std_dev,
                                p.current_age, model.max_age)
        else:
            own = p.life_expectancy
        return own, self._spouse_horizon(p.spouse_life_expectancy)

    def horizon_age(self, draws: ScenarioDraws) -> int:
        own, spouse = self.death_ages(draws)
        horizon = max(own, spouse) if spouse is not None else own
        return int(min(max(horizon, self.params.current_age), self.max_horizon_age))

    def deceased_at(self, age: int, own_death: int, spouse_death: Optional[int]) -> Optional[str]:
        """Who has died by this age, if anyone. The horizon ends at the later death."""
        if self.params.spouse_age is None or spouse_death is None:
            return None
        if age > own_death:
            return "self"
        if age > spouse_death:
            return "spouse"
        return None

    # ----------------------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------------------
    def _price_growth(self, rate: float, year_index: int) -> float:
        """Growth of a cost rising at `rate`, in the scenario's dollar mode."""
        growth = (1 + rate) ** year_index
        if self.nominal:
            return growth
        return growth / (1 + self.params.general_inflation) ** year_index

    def spending_need(self, year_index: int) -> float:
        p = self.params
        healthcare = min(p.annual_healthcare_costs, p.annual_retirement_expenses)
        general = p.annual_retirement_expenses - healthcare
        return (general * self._price_growth(p.general_inflation, year_index)
                + healthcare * self._price_growth(p.healthcare_inflation, year_index))

    def care_schedule(self, draws: ScenarioDraws, horizon: int) -> np.ndarray:
        """Long-term care cost per year index; zeros when care shocks are off."""
        p = self.params
        if p.ltc_model is None or draws.care_u is None:
            return np.zeros(self.n_years)
        episode = draw_episode(p.ltc_model, draws.care_u, p.current_age, p.retirement_age,
                               horizon - p.current_age)
        return care_costs(episode, self.n_years, p.ltc_model.inflation, self._price_growth)

    @staticmethod
    def _deposit(balances: AssetBuckets, amount: float) -> None:
        """Spread savings across buckets in proportion to the current mix."""
        if amount <= 0:
            return
        total = balances.total
        if total <= 0:
            balances.tax_deferred += amount
            return
        taxable_share = amount * balances.taxable / total
        balances.tax_deferred += amount * balances.tax_deferred / total
        balances.tax_free += amount * balances.tax_free / total
        balances.cash_equivalents += amount * balances.cash_equivalents / total
        balances.taxable += taxable_share
        balances.taxable_basis += taxable_share

    @staticmethod
    def _grow(balances: AssetBuckets, r: float) -> None:
        # Basis is not grown; only market value moves
        factor = max(0.0, 1 + r)
        balances.tax_deferred *= factor
        balances.tax_free *= factor
        balances.taxable *= factor
        balances.cash_equivalents *= factor
        balances.taxable_basis = min(balances.taxable_basis, balances.taxable)

    # ----------------------------------------------------------------------
    # Scenario loop
    # ----------------------------------------------------------------------
    def run(self, draws: ScenarioDraws) -> ScenarioOutcome:
        p = self.params
        horizon = self.horizon_age(draws)
        retirement_index = max(0, p.retirement_age - p.current_age)

        forced = None
        if p.first_retirement_year_return is not None:
            forced = (retirement_index, p.first_retirement_year_return)
        returns = self.generator.portfolio_returns(draws, forced_return=forced)

        guardrails = None
        if p.withdrawal_policy == WithdrawalPolicy.GUARDRAILS:
            guardrails = GuardrailAdjuster(p.withdrawal_rate)

        balances = p.buckets.copy()
        depleted = False
        depletion_age = None
        unfunded_years = 0
        fixed_withdrawal = None
        cash_flows: List[YearlyCashFlow] = []

        own_death, spouse_death = self.death_ages(draws)
        care = self.care_schedule(draws, horizon)
        magi_history: List[Optional[float]] = []

        for t in range(horizon - p.current_age + 1):
            age = p.current_age + t
            spouse_age = p.spouse_age + t if p.spouse_age is not None else None
            r = max(float(returns[t]), -1.0)
            start = balances.total

            # --- STEP 1: Accumulation ---
            if age < p.retirement_age:
                contribution = p.annual_savings * (self._price_growth(p.general_inflation, t))
                self._deposit(balances, contribution)
                self._grow(balances, r)
                magi_history.append(None)
                cash_flows.append(YearlyCashFlow(
                    year_index=t, age=age, phase=Phase.ACCUMULATION,
                    starting_balance=start, ending_balance=balances.total,
                    contribution=contribution, investment_return=r,
                    gross_withdrawal=0.0, withdrawals_by_bucket=(),
                    federal_tax=0.0, state_tax=0.0, capital_gains_tax=0.0,
                    guaranteed_income=0.0, spending_need=0.0,
                ))
                continue

            deceased = self.deceased_at(age, own_death, spouse_death)
            income = self.income_engine.income_for_year(age, t, spouse_age, deceased)
            need = self.spending_need(t)
            care_cost = float(care[t])

            # Survivor files alone and is the only Medicare enrollee
            tax_age, tax_spouse_age = age, spouse_age
            if deceased == "self":
                tax_age, tax_spouse_age = spouse_age, None
            elif deceased == "spouse":
                tax_spouse_age = None
            filing_status = "single" if deceased is not None and p.is_married else None
            irmaa_magi = magi_history[t - 2] if p.include_irmaa and t >= 2 else None
            tax_context = (tax_age, t, tax_spouse_age, filing_status, irmaa_magi)

            # --- STEP 2: Depleted; guaranteed income only ---
            if depleted:
                need += care_cost
                result = self.withdrawal_engine.execute_gross(0.0, balances, income, *tax_context)
                shortfall = income.total - result.taxes.total < need - SOLVER_TOLERANCE
                unfunded_years += int(shortfall)
                magi_history.append(result.taxes.magi)
                cash_flows.append(self._record(t, age, Phase.DEPLETED, 0.0, 0.0, r, result,
                                               income.total, need, shortfall, None, care_cost))
                continue

            # --- STEP 3: Active retirement withdrawal ---
            reason = None
            if p.withdrawal_policy == WithdrawalPolicy.FIXED_PERCENTAGE:
                need += care_cost
                if fixed_withdrawal is None:
                    fixed_withdrawal = p.withdrawal_rate * start
                gross = fixed_withdrawal
                if self.nominal:
                    gross *= (1 + p.general_inflation) ** (t - retirement_index)
                result = self.withdrawal_engine.execute_gross(gross, balances, income, *tax_context)
            else:
                if guardrails is not None:
                    decision = guardrails.adjust(max(0.0, need - income.total), start, horizon - age)
                    need = decision.spending_target + min(need, income.total)
                    reason = decision.reason if decision.adjusted else None
                # Guardrails never cut care costs
                need += care_cost
                result = self.withdrawal_engine.solve_gross_withdrawal(need, balances, income, *tax_context)

            balances = result.balances
            self._grow(balances, r)
            ending = balances.total
            magi_history.append(result.taxes.magi)

            if result.shortfall or ending < DEPLETION_THRESHOLD:
                depleted = True
                depletion_age = age
                balances = AssetBuckets()
                ending = 0.0
            unfunded_years += int(result.shortfall)

            cash_flows.append(self._record(t, age, Phase.RETIREMENT_ACTIVE, start, ending, r, result,
                                           income.total, need, result.shortfall, reason, care_cost))

        ending_balance = balances.total
        legacy_target = p.legacy_goal * (self._price_growth(p.general_inflation, horizon - p.current_age)
                                         if self.nominal else 1.0)
        legacy_met = ending_balance >= legacy_target
        success = unfunded_years == 0 and (legacy_met or not self.count_legacy_goal)

        return ScenarioOutcome(
            success=success,
            ending_balance=ending_balance,
            cash_flows=tuple(cash_flows),
            dollar_mode=p.dollar_mode,
            depletion_age=depletion_age,
            horizon_age=horizon,
            guardrail_adjustments=guardrails.adjustment_count if guardrails is not None else 0,
            legacy_goal_met=legacy_met,
        )

    @staticmethod
    def _record(t, age, phase, start, ending, r, result: WithdrawalResult,
                guaranteed, need, shortfall, reason, care_cost=0.0) -> YearlyCashFlow:
        return YearlyCashFlow(
            year_index=t, age=age, phase=phase,
            starting_balance=start, ending_balance=ending,
            contribution=0.0, investment_return=r,
            gross_withdrawal=result.gross_withdrawal,
            withdrawals_by_bucket=tuple((k, v) for k, v in result.draws.items() if v > 0),
            federal_tax=result.taxes.federal_tax,
            state_tax=result.taxes.state_tax,
            capital_gains_tax=result.taxes.capital_gains_tax,
            irmaa_surcharge=result.taxes.irmaa_surcharge,
            guaranteed_income=guaranteed,
            spending_need=need,
            rmd_reinvested=result.rmd_reinvested,
            shortfall=shortfall,
            guardrail_reason=reason,
            care_cost=care_cost,
        )


def simulate_scenario(params: SimulationParams, seed=None, *, count_legacy_goal: bool) -> ScenarioOutcome:
    """
    Run one scenario. The same params and seed always give the same outcome.
    """
    params = normalize_params(params)
    simulator = ScenarioSimulator(params, count_legacy_goal=count_legacy_goal)
    draws = simulator.generator.draw_batch(make_rng(seed), 1)[0]
    return simulator.run(draws)


def ending_balances_by_age(outcome: ScenarioOutcome, ages: np.ndarray) -> np.ndarray:
    """Ending balance for each requested age; NaN where the scenario has no record."""
    values = np.full(len(ages), np.nan)
    if not outcome.cash_flows:
        return values
    first_age = outcome.cash_flows[0].age
    for i, age in enumerate(ages):
        idx = int(age) - first_age
        if 0 <= idx < len(outcome.cash_flows):
            values[i] = outcome.cash_flows[idx].ending_balance
    return values
