# models.py
import copy
import hashlib
import json
from dataclasses import dataclass, field, asdict, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from config.engine_settings import (
    DEFAULT_LIFE_EXPECTANCY,
    DEFAULT_WITHDRAWAL_ORDER,
    DEFAULT_WITHDRAWAL_RATE,
    MODEL_VERSION,
    PENSION_SURVIVOR_SHARE,
)
from config.expense_assumptions import (
    ltc_age_probabilities,
    ltc_annual_cost_mean,
    ltc_annual_cost_std,
    ltc_duration_mean,
    ltc_duration_std,
    ltc_inflation,
)
from config.market_assumptions import (
    default_expected_return,
    default_return_volatility,
    general_inflation,
    healthcare_inflation,
    ss_cola_rate,
)

BUCKET_NAMES = ("tax_deferred", "tax_free", "taxable", "cash_equivalents")


# =============================================================================
# Enumerations
# =============================================================================

class DollarMode(str, Enum):
    REAL = "real"           # today's dollars
    NOMINAL = "nominal"     # future (inflated) dollars


class WithdrawalPolicy(str, Enum):
    FIXED_PERCENTAGE = "fixed_percentage"
    GUARDRAILS = "guardrails"
    NEEDS_BASED = "needs_based"


class IncomeKind(str, Enum):
    SOCIAL_SECURITY = "social_security"
    PENSION = "pension"
    PART_TIME = "part_time"
    ANNUITY = "annuity"


class Phase(str, Enum):
    ACCUMULATION = "accumulation"
    RETIREMENT_ACTIVE = "retirement_active"
    DEPLETED = "depleted"


# =============================================================================
# Return sources (tagged variant)
# =============================================================================

@dataclass(frozen=True)
class FixedReturn:
    """Single portfolio return drawn from expected_return / return_volatility."""
    kind: str = "fixed"


@dataclass(frozen=True)
class StaticAllocation:
    """Constant weights over the configured asset classes."""
    weights: Tuple[Tuple[str, float], ...]
    kind: str = "static_allocation"

    @classmethod
    def from_dict(cls, weights: Dict[str, float]) -> "StaticAllocation":
        return cls(weights=tuple(sorted(weights.items())))


@dataclass(frozen=True)
class GlidePath:
    """
    Allocation that de-risks as retirement approaches. Each step is
    (minimum years until retirement, weights); the first step whose threshold
    is met applies.
    """
    steps: Tuple[Tuple[int, Tuple[Tuple[str, float], ...]], ...]
    kind: str = "glide_path"

    @classmethod
    def from_schedule(cls, schedule) -> "GlidePath":
        steps = tuple(
            (int(threshold), tuple(sorted(weights.items())))
            for threshold, weights in sorted(schedule, key=lambda s: -s[0])
        )
        return cls(steps=steps)


ReturnSource = Union[FixedReturn, StaticAllocation, GlidePath]


# =============================================================================
# Inputs
# =============================================================================

@dataclass
class AssetBuckets:
    """Tax-treatment buckets. The total is always derived from the four balances."""
    tax_deferred: float = 0.0
    tax_free: float = 0.0
    taxable: float = 0.0
    cash_equivalents: float = 0.0
    taxable_basis: float = 0.0

    @property
    def total(self) -> float:
        return self.tax_deferred + self.tax_free + self.taxable + self.cash_equivalents

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in BUCKET_NAMES}

    def copy(self) -> "AssetBuckets":
        return replace(self)

    def scaled(self, factor: float) -> "AssetBuckets":
        """Scale every bucket (and the taxable basis) proportionally."""
        factor = max(0.0, factor)
        return AssetBuckets(
            tax_deferred=self.tax_deferred * factor,
            tax_free=self.tax_free * factor,
            taxable=self.taxable * factor,
            cash_equivalents=self.cash_equivalents * factor,
            taxable_basis=self.taxable_basis * factor,
        )

    def rescaled_to(self, new_total: float) -> "AssetBuckets":
        if self.total <= 0:
            return AssetBuckets(tax_deferred=max(0.0, new_total))
        return self.scaled(new_total / self.total)


@dataclass(frozen=True)
class IncomeStream:
    """
    Guaranteed income in today's dollars, payable from start_age (inclusive)
    until end_age (exclusive, None = for life). When full_retirement_age is set
    the amount is the benefit at FRA and is adjusted for the claiming age.
    Ages are the owner's own ages; owner is "self" or "spouse".
    """
    kind: IncomeKind
    annual_amount: float
    start_age: int
    end_age: Optional[int] = None
    cola: bool = True
    full_retirement_age: Optional[float] = None
    owner: str = "self"


@dataclass(frozen=True)
class LongevityModel:
    base_expectancy: float = 90.0
    std_dev: float = 5.0
    max_age: int = 110


@dataclass(frozen=True)
class LongTermCareModel:
    """
    One possible long-term care episode per scenario: onset odds by age from 65,
    a log-normal duration and a care-type dependent annual cost in today's dollars.
    """
    age_probabilities: Tuple[float, ...] = ltc_age_probabilities
    duration_mean: float = ltc_duration_mean
    duration_std: float = ltc_duration_std
    annual_cost_mean: float = ltc_annual_cost_mean
    annual_cost_std: float = ltc_annual_cost_std
    inflation: float = ltc_inflation


@dataclass(frozen=True)
class SimulationParams:
    # Ages
    current_age: int
    retirement_age: int
    life_expectancy: int = DEFAULT_LIFE_EXPECTANCY
    spouse_age: Optional[int] = None
    spouse_life_expectancy: Optional[int] = None
    longevity_model: Optional[LongevityModel] = None

    # Portfolio
    buckets: AssetBuckets = field(default_factory=AssetBuckets)
    annual_savings: float = 0.0

    # Spending (today's dollars; healthcare is a component of total expenses)
    annual_retirement_expenses: float = 0.0
    annual_healthcare_costs: float = 0.0
    legacy_goal: float = 0.0

    # Income
    income_streams: Tuple[IncomeStream, ...] = ()

    # Markets
    expected_return: float = default_expected_return
    return_volatility: float = default_return_volatility
    return_source: ReturnSource = field(default_factory=FixedReturn)
    return_adjustment: float = 0.0          # additive shift on asset-class means
    volatility_multiplier: float = 1.0      # scales asset-class sigmas
    first_retirement_year_return: Optional[float] = None

    # Inflation
    general_inflation: float = general_inflation
    healthcare_inflation: float = healthcare_inflation
    ss_cola_rate: float = ss_cola_rate

    # Withdrawals and taxes
    withdrawal_policy: WithdrawalPolicy = WithdrawalPolicy.GUARDRAILS
    withdrawal_rate: float = DEFAULT_WITHDRAWAL_RATE
    withdrawal_order: Tuple[str, ...] = DEFAULT_WITHDRAWAL_ORDER
    filing_status: str = "single"
    state_of_residence: str = "TX"
    other_taxable_income: float = 0.0
    tax_rate_multiplier: float = 1.0
    include_irmaa: bool = False             # Medicare surcharges on 2-year-old MAGI

    # Household events
    pension_survivor_share: float = PENSION_SURVIVOR_SHARE
    ltc_model: Optional[LongTermCareModel] = None

    dollar_mode: DollarMode = DollarMode.REAL

    @property
    def current_assets(self) -> float:
        return self.buckets.total

    @property
    def is_married(self) -> bool:
        return self.filing_status == "married_filing_jointly"

    def clone(self) -> "SimulationParams":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["withdrawal_policy"] = self.withdrawal_policy.value
        data["dollar_mode"] = self.dollar_mode.value
        data["income_streams"] = [
            {**asdict(s), "kind": s.kind.value} for s in self.income_streams
        ]
        return data

    def fingerprint(self) -> str:
        """Stable cache key over the parameters and the engine's model version."""
        payload = json.dumps(
            {"model_version": MODEL_VERSION, "params": self.to_dict()},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# Outputs
# =============================================================================

@dataclass(frozen=True)
class YearlyCashFlow:
    year_index: int
    age: int
    phase: Phase
    starting_balance: float
    ending_balance: float
    contribution: float
    investment_return: float
    gross_withdrawal: float
    withdrawals_by_bucket: Tuple[Tuple[str, float], ...]
    federal_tax: float
    state_tax: float
    capital_gains_tax: float
    guaranteed_income: float
    spending_need: float
    rmd_reinvested: float = 0.0
    shortfall: bool = False
    guardrail_reason: Optional[str] = None
    irmaa_surcharge: float = 0.0
    care_cost: float = 0.0                  # long-term care, included in spending_need

    @property
    def total_taxes(self) -> float:
        return self.federal_tax + self.state_tax + self.capital_gains_tax + self.irmaa_surcharge

    @property
    def net_cash_flow(self) -> float:
        """Household surplus (+) or deficit (-) after taxes and spending."""
        return self.guaranteed_income + self.gross_withdrawal - self.total_taxes - self.spending_need


@dataclass(frozen=True)
class ScenarioOutcome:
    success: bool
    ending_balance: float
    cash_flows: Tuple[YearlyCashFlow, ...]
    dollar_mode: DollarMode
    depletion_age: Optional[int] = None
    horizon_age: Optional[int] = None
    guardrail_adjustments: int = 0
    legacy_goal_met: bool = True

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for cf in self.cash_flows:
            row = {f.name: getattr(cf, f.name) for f in fields(cf) if f.name != "withdrawals_by_bucket"}
            row["phase"] = cf.phase.value
            row.update({f"withdrawal_{name}": amt for name, amt in cf.withdrawals_by_bucket})
            row["total_taxes"] = cf.total_taxes
            row["net_cash_flow"] = cf.net_cash_flow
            rows.append(row)
        return pd.DataFrame(rows)


@dataclass(frozen=True)
class PercentileBands:
    ages: Tuple[int, ...]
    percentiles: Tuple[int, ...]
    values: Tuple[Tuple[float, ...], ...]    # one row per percentile, aligned to ages
    dollar_mode: DollarMode
    runs: int

    def band(self, percentile: int) -> Tuple[float, ...]:
        return self.values[self.percentiles.index(percentile)]

    def to_frame(self) -> pd.DataFrame:
        data = {f"p{p}": row for p, row in zip(self.percentiles, self.values)}
        return pd.DataFrame(data, index=pd.Index(self.ages, name="age"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ages": list(self.ages),
            "dollar_mode": self.dollar_mode.value,
            "runs": self.runs,
            **{f"p{p}": list(row) for p, row in zip(self.percentiles, self.values)},
        }


@dataclass(frozen=True)
class AggregateResult:
    success_probability: float
    successes: int
    total_runs: int
    ending_balance_p10: float
    ending_balance_median: float
    ending_balance_p90: float
    dollar_mode: DollarMode
    bands: Optional[PercentileBands] = None
    model_version: str = MODEL_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_probability": self.success_probability,
            "successes": self.successes,
            "total_runs": self.total_runs,
            "ending_balance": {
                "p10": self.ending_balance_p10,
                "median": self.ending_balance_median,
                "p90": self.ending_balance_p90,
            },
            "dollar_mode": self.dollar_mode.value,
            "bands": self.bands.to_dict() if self.bands is not None else None,
            "model_version": self.model_version,
        }


@dataclass(frozen=True)
class StressScenario:
    id: str
    name: str
    category: str
    magnitude: float
    enabled: bool = True
    description: str = ""


@dataclass(frozen=True)
class StressTestResult:
    scenario_id: str
    scenario_name: str
    result: AggregateResult
    impact_points: float            # percentage points vs baseline
    description: str = ""

    @property
    def success_probability(self) -> float:
        return self.result.success_probability


@dataclass(frozen=True)
class StressTestResponse:
    baseline: AggregateResult
    individual_results: Tuple[StressTestResult, ...]
    combined_result: Optional[StressTestResult] = None
    runs: int = 0

    def to_frame(self) -> pd.DataFrame:
        rows = [{
            "scenario_id": "baseline",
            "scenario_name": "Baseline",
            "success_probability": self.baseline.success_probability,
            "impact_points": 0.0,
        }]
        extra = list(self.individual_results)
        if self.combined_result is not None:
            extra.append(self.combined_result)
        for r in extra:
            rows.append({
                "scenario_id": r.scenario_id,
                "scenario_name": r.scenario_name,
                "success_probability": r.success_probability,
                "impact_points": r.impact_points,
            })
        return pd.DataFrame(rows)


def percentile_summary(values: np.ndarray) -> Tuple[float, float, float]:
    """(p10, median, p90) of a 1-D array, floored at zero; zeros when empty."""
    if values.size == 0:
        return 0.0, 0.0, 0.0
    p10, p50, p90 = np.percentile(values, [10, 50, 90])
    return max(0.0, float(p10)), max(0.0, float(p50)), max(0.0, float(p90))
