# engine/withdrawal_engine.py

import logging
from typing import Dict, NamedTuple, Optional, Tuple

from config.engine_settings import SOLVER_MAX_ITERATIONS, SOLVER_TOLERANCE
from models import BUCKET_NAMES, AssetBuckets, SimulationParams
from engine.accounts_income import AccountsIncomeEngine, IncomeYear
from engine.tax_engine import TaxBreakdown, calculate_taxes

logger = logging.getLogger(__name__)


class WithdrawalResult(NamedTuple):
    gross_withdrawal: float
    draws: Dict[str, float]
    taxes: TaxBreakdown
    rmd_reinvested: float
    shortfall: bool
    balances: AssetBuckets      # buckets after the draws (and RMD reinvestment)

    @property
    def net_proceeds(self) -> float:
        return self.gross_withdrawal - self.taxes.total


class WithdrawalEngine:
    """
    Handles logic for prioritizing bucket withdrawals and for sizing the gross
    withdrawal so that after-tax proceeds cover the spending need.
    """
    def __init__(self, params: SimulationParams, income_engine: Optional[AccountsIncomeEngine] = None):
        self.params = params
        self.income_engine = income_engine or AccountsIncomeEngine(params)
        self.order = self._get_withdrawal_order()

    def _get_withdrawal_order(self) -> Tuple[str, ...]:
        """
        Withdrawal hierarchy. Any bucket missing from the configured order is
        appended at the end so every balance stays reachable.
        """
        order = tuple(self.params.withdrawal_order)
        unknown = [name for name in order if name not in BUCKET_NAMES]
        if unknown:
            raise ValueError(f"Unknown bucket(s) in withdrawal order: {unknown}")
        return order + tuple(name for name in BUCKET_NAMES if name not in order)

    # ----------------------------------------------------------------------
    # Core hierarchy
    # ----------------------------------------------------------------------
    def _withdraw_from_hierarchy(self, cash_needed: float, buckets: AssetBuckets) -> dict:
        """
        Withdraws cash_needed following the configured order.

        Args:
            cash_needed: The gross cash needed from the portfolio.
            buckets: Current balances. Never mutated; a working copy is returned.

        Returns:
            Dict containing:
            {'withdrawn': float, 'ordinary_inc': float, 'ltcg_inc': float,
             'draws': dict, 'balances': AssetBuckets}
        """
        working = buckets.copy()
        remaining = max(0.0, cash_needed)
        total_withdrawn = 0.0
        ord_inc = 0.0
        ltcg_inc = 0.0
        draws = {name: 0.0 for name in BUCKET_NAMES}

        for bucket in self.order:
            if remaining <= 0:
                break
            balance = getattr(working, bucket)
            if balance <= 0:
                continue

            amt = min(balance, remaining)
            setattr(working, bucket, balance - amt)
            remaining -= amt
            total_withdrawn += amt
            draws[bucket] += amt

            # Tax characterization
            if bucket == "taxable":
                basis = min(working.taxable_basis, balance)
                gain_pct = max(0.0, (balance - basis) / balance)
                ltcg_inc += amt * gain_pct
                working.taxable_basis = max(0.0, basis - amt * (basis / balance))
            elif bucket == "tax_deferred":
                ord_inc += amt

        return {
            "withdrawn": total_withdrawn,
            "ordinary_inc": ord_inc,
            "ltcg_inc": ltcg_inc,
            "draws": draws,
            "balances": working,
        }

    def _evaluate(
        self,
        gross: float,
        buckets: AssetBuckets,
        income: IncomeYear,
        age: int,
        year_index: int,
        spouse_age: Optional[int] = None,
        filing_status: Optional[str] = None,
        irmaa_magi: Optional[float] = None,
    ) -> WithdrawalResult:
        """Draws, RMD top-up and taxes for a candidate gross withdrawal."""
        plan = self._withdraw_from_hierarchy(gross, buckets)
        balances = plan["balances"]
        ordinary = plan["ordinary_inc"]

        # Required distribution beyond the planned tax-deferred draw moves to cash
        rmd = self.income_engine.compute_rmd(buckets.tax_deferred, age)
        forced = max(0.0, min(rmd, buckets.tax_deferred) - plan["draws"]["tax_deferred"])
        forced = min(forced, balances.tax_deferred)
        if forced > 0:
            balances.tax_deferred -= forced
            balances.cash_equivalents += forced
            ordinary += forced

        taxes = calculate_taxes(
            ordinary_income=ordinary + income.ordinary,
            lt_cap_gains=plan["ltcg_inc"],
            social_security_income=income.social_security,
            filing_status=filing_status or self.params.filing_status,
            state_of_residence=self.params.state_of_residence,
            age1=age,
            age2=spouse_age,
            pension_income=income.pension,
            inflation_index=self.income_engine.inflation_index(year_index),
            rate_multiplier=self.params.tax_rate_multiplier,
            irmaa_magi=irmaa_magi,
        )
        return WithdrawalResult(plan["withdrawn"], plan["draws"], taxes, forced, False, balances)

    # ----------------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------------
    def execute_gross(
        self,
        gross: float,
        buckets: AssetBuckets,
        income: IncomeYear,
        age: int,
        year_index: int,
        spouse_age: Optional[int] = None,
        filing_status: Optional[str] = None,
        irmaa_magi: Optional[float] = None,
    ) -> WithdrawalResult:
        """Withdraw a fixed gross amount; taxes come out of the proceeds."""
        available = buckets.total
        shortfall = gross > available + SOLVER_TOLERANCE
        result = self._evaluate(min(gross, available), buckets, income, age, year_index, spouse_age,
                                filing_status, irmaa_magi)
        return result._replace(shortfall=shortfall)

    def solve_gross_withdrawal(
        self,
        spending_need: float,
        buckets: AssetBuckets,
        income: IncomeYear,
        age: int,
        year_index: int,
        spouse_age: Optional[int] = None,
        filing_status: Optional[str] = None,
        irmaa_magi: Optional[float] = None,
    ) -> WithdrawalResult:
        """
        Find gross G such that G - T(G) = spending_need - guaranteed income,
        where T covers all of the year's income taxes and any Medicare surcharge.

        Net proceeds rise monotonically with G, so the root is bracketed between
        the target itself and the full portfolio and refined with a safeguarded
        false-position (Illinois) iteration. If even the full portfolio cannot
        cover the target, everything is withdrawn and the shortfall flag is set.
        """
        target = spending_need - income.total
        if target <= 0:
            return self._evaluate(0.0, buckets, income, age, year_index, spouse_age,
                                  filing_status, irmaa_magi)

        available = buckets.total
        if available <= 0:
            result = self._evaluate(0.0, buckets, income, age, year_index, spouse_age,
                                    filing_status, irmaa_magi)
            return result._replace(shortfall=True)

        def _gap(result: WithdrawalResult) -> float:
            return result.net_proceeds - target

        hi_result = self._evaluate(available, buckets, income, age, year_index, spouse_age,
                                    filing_status, irmaa_magi)
        if _gap(hi_result) < -SOLVER_TOLERANCE:
            return hi_result._replace(shortfall=True)

        lo = min(target, available)
        lo_result = self._evaluate(lo, buckets, income, age, year_index, spouse_age,
                                   filing_status, irmaa_magi)
        lo_gap = _gap(lo_result)
        if lo_gap >= -SOLVER_TOLERANCE:
            return lo_result

        hi, hi_gap = available, _gap(hi_result)
        best = hi_result
        side = 0
        for _ in range(SOLVER_MAX_ITERATIONS):
            if hi - lo <= SOLVER_TOLERANCE:
                break
            # False-position step, falling back to bisection on a degenerate slope
            denom = hi_gap - lo_gap
            g = lo - lo_gap * (hi - lo) / denom if denom > 0 else 0.5 * (lo + hi)
            if not lo < g < hi:
                g = 0.5 * (lo + hi)

            result = self._evaluate(g, buckets, income, age, year_index, spouse_age,
                                     filing_status, irmaa_magi)
            gap = _gap(result)
            if abs(gap) <= SOLVER_TOLERANCE:
                return result

            if gap > 0:
                hi, hi_gap, best = g, gap, result
                if side == 1:
                    lo_gap *= 0.5
                side = 1
            else:
                lo, lo_gap = g, gap
                if side == -1:
                    hi_gap *= 0.5
                side = -1
        else:
            logger.debug("Gross withdrawal solver hit the iteration cap (target %.2f)", target)

        return best
