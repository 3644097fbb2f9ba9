# utils/input_adapter.py
import logging
from dataclasses import fields, replace
from typing import Any, Dict, List, Mapping, Optional

from config.engine_settings import (
    DEFAULT_ASSET_BUCKET,
    DEFAULT_CURRENT_AGE,
    DEFAULT_LIFE_EXPECTANCY,
    DEFAULT_RETIREMENT_AGE,
    DEFAULT_WITHDRAWAL_RATE,
    MAX_SIMULATION_AGE,
    MIN_STARTING_BALANCE,
    PENSION_SURVIVOR_SHARE,
)
from config.market_assumptions import (
    default_expected_return,
    default_glide_path,
    default_return_volatility,
    general_inflation,
    healthcare_inflation,
    ss_cola_rate,
)
from models import (
    BUCKET_NAMES,
    AssetBuckets,
    DollarMode,
    FixedReturn,
    GlidePath,
    IncomeKind,
    IncomeStream,
    LongevityModel,
    LongTermCareModel,
    SimulationParams,
    StaticAllocation,
    WithdrawalPolicy,
)
from utils.currency import clean_currency, clean_percent, finite_or
from utils.ss_utils import get_full_retirement_age
from utils.tax_utils import FILING_STATUSES

logger = logging.getLogger(__name__)

STREAM_OWNERS = ("self", "spouse")

MONEY_FIELDS = (
    "annual_savings", "annual_retirement_expenses", "annual_healthcare_costs",
    "legacy_goal", "other_taxable_income",
)
RATE_FIELDS = (
    "expected_return", "return_volatility", "general_inflation", "healthcare_inflation",
    "ss_cola_rate", "withdrawal_rate",
)


# =============================================================================
# Validation / clamping
# =============================================================================

def _corrected(name: str, original: Any, value: Any) -> Any:
    logger.warning("Corrected input '%s': %r -> %r", name, original, value)
    return value


def _non_negative(name: str, value: Any, default: float = 0.0) -> float:
    number = finite_or(value, default)
    if number != value:
        number = _corrected(name, value, number)
    if number < 0:
        number = _corrected(name, number, 0.0)
    return number


def _finite(name: str, value: Any, default: float) -> float:
    number = finite_or(value, default)
    return number if number == value else _corrected(name, value, number)


def _normalize_buckets(buckets: AssetBuckets) -> AssetBuckets:
    values = {name: _non_negative(name, getattr(buckets, name)) for name in BUCKET_NAMES}
    basis = _non_negative("taxable_basis", buckets.taxable_basis)
    if basis > values["taxable"]:
        basis = _corrected("taxable_basis", basis, values["taxable"])

    cleaned = AssetBuckets(taxable_basis=basis, **values)
    if cleaned.total <= 0:
        _corrected("current_assets", cleaned.total, MIN_STARTING_BALANCE)
        setattr(cleaned, DEFAULT_ASSET_BUCKET, MIN_STARTING_BALANCE)
    return cleaned


def _normalize_stream(stream: IncomeStream) -> IncomeStream:
    amount = _non_negative("income_streams.annual_amount", stream.annual_amount)
    start = int(finite_or(stream.start_age, 0))
    end = stream.end_age
    if end is not None:
        end = int(finite_or(end, MAX_SIMULATION_AGE))
    kind = IncomeKind(stream.kind)
    owner = stream.owner
    if owner not in STREAM_OWNERS:
        owner = _corrected("income_streams.owner", owner, "self")
    return replace(stream, kind=kind, annual_amount=amount, start_age=start, end_age=end, owner=owner)


def _normalize_care_model(model: LongTermCareModel) -> LongTermCareModel:
    defaults = LongTermCareModel()
    duration_mean = finite_or(model.duration_mean, defaults.duration_mean)
    if duration_mean <= 0:
        duration_mean = _corrected("ltc_model.duration_mean", duration_mean, defaults.duration_mean)
    return LongTermCareModel(
        age_probabilities=tuple(min(max(finite_or(p, 0.0), 0.0), 1.0) for p in model.age_probabilities),
        duration_mean=duration_mean,
        duration_std=_non_negative("ltc_model.duration_std", model.duration_std, defaults.duration_std),
        annual_cost_mean=_non_negative("ltc_model.annual_cost_mean", model.annual_cost_mean,
                                       defaults.annual_cost_mean),
        annual_cost_std=_non_negative("ltc_model.annual_cost_std", model.annual_cost_std, defaults.annual_cost_std),
        inflation=_finite("ltc_model.inflation", model.inflation, defaults.inflation),
    )


def normalize_params(params: SimulationParams) -> SimulationParams:
    """
    Return a corrected copy of params: non-finite values take defaults,
    balances are non-negative with a small positive floor on the total, ages
    are put in order, and enum-like strings become enums. Every correction is
    logged as a warning. The input object is never modified.
    """
    current_age = int(finite_or(params.current_age, DEFAULT_CURRENT_AGE))
    if current_age != params.current_age:
        _corrected("current_age", params.current_age, current_age)
    current_age = min(max(current_age, 0), MAX_SIMULATION_AGE - 1)

    retirement_age = int(finite_or(params.retirement_age, DEFAULT_RETIREMENT_AGE))
    if retirement_age < current_age:
        retirement_age = _corrected("retirement_age", retirement_age, current_age)
    retirement_age = min(retirement_age, MAX_SIMULATION_AGE)

    life_expectancy = int(finite_or(params.life_expectancy, DEFAULT_LIFE_EXPECTANCY))
    if life_expectancy < retirement_age:
        life_expectancy = _corrected("life_expectancy", life_expectancy, retirement_age)
    if life_expectancy > MAX_SIMULATION_AGE:
        life_expectancy = _corrected("life_expectancy", life_expectancy, MAX_SIMULATION_AGE)

    spouse_age = params.spouse_age
    spouse_le = params.spouse_life_expectancy
    if spouse_age is not None:
        spouse_age = int(finite_or(spouse_age, current_age))
        if spouse_le is not None:
            spouse_le = int(min(max(finite_or(spouse_le, life_expectancy), spouse_age), MAX_SIMULATION_AGE))

    longevity = params.longevity_model
    if longevity is not None:
        longevity = LongevityModel(
            base_expectancy=finite_or(longevity.base_expectancy, life_expectancy),
            std_dev=max(0.0, finite_or(longevity.std_dev, 0.0)),
            max_age=int(min(max(finite_or(longevity.max_age, MAX_SIMULATION_AGE), current_age),
                            MAX_SIMULATION_AGE)),
        )

    expenses = _non_negative("annual_retirement_expenses", params.annual_retirement_expenses)
    healthcare = _non_negative("annual_healthcare_costs", params.annual_healthcare_costs)
    if healthcare > expenses:
        healthcare = _corrected("annual_healthcare_costs", healthcare, expenses)

    expected_return = _finite("expected_return", params.expected_return, default_expected_return)
    if expected_return <= -0.99:
        expected_return = _corrected("expected_return", expected_return, default_expected_return)

    withdrawal_rate = _finite("withdrawal_rate", params.withdrawal_rate, DEFAULT_WITHDRAWAL_RATE)
    if not 0 < withdrawal_rate <= 1:
        withdrawal_rate = _corrected("withdrawal_rate", withdrawal_rate, DEFAULT_WITHDRAWAL_RATE)

    filing_status = params.filing_status
    if filing_status not in FILING_STATUSES:
        filing_status = _corrected("filing_status", filing_status, "single")

    survivor_share = _finite("pension_survivor_share", params.pension_survivor_share, PENSION_SURVIVOR_SHARE)
    if not 0 <= survivor_share <= 1:
        survivor_share = _corrected("pension_survivor_share", survivor_share, min(max(survivor_share, 0.0), 1.0))

    first_year_return = params.first_retirement_year_return
    if first_year_return is not None:
        first_year_return = max(finite_or(first_year_return, 0.0), -0.99)

    return replace(
        params,
        current_age=current_age,
        retirement_age=retirement_age,
        life_expectancy=life_expectancy,
        spouse_age=spouse_age,
        spouse_life_expectancy=spouse_le,
        longevity_model=longevity,
        buckets=_normalize_buckets(params.buckets),
        annual_savings=_non_negative("annual_savings", params.annual_savings),
        annual_retirement_expenses=expenses,
        annual_healthcare_costs=healthcare,
        legacy_goal=_non_negative("legacy_goal", params.legacy_goal),
        income_streams=tuple(_normalize_stream(s) for s in params.income_streams),
        expected_return=expected_return,
        return_volatility=_non_negative("return_volatility", params.return_volatility, default_return_volatility),
        return_adjustment=_finite("return_adjustment", params.return_adjustment, 0.0),
        volatility_multiplier=_non_negative("volatility_multiplier", params.volatility_multiplier, 1.0),
        first_retirement_year_return=first_year_return,
        general_inflation=_finite("general_inflation", params.general_inflation, general_inflation),
        healthcare_inflation=_finite("healthcare_inflation", params.healthcare_inflation, healthcare_inflation),
        ss_cola_rate=_finite("ss_cola_rate", params.ss_cola_rate, ss_cola_rate),
        withdrawal_policy=WithdrawalPolicy(params.withdrawal_policy),
        withdrawal_rate=withdrawal_rate,
        withdrawal_order=tuple(params.withdrawal_order),
        filing_status=filing_status,
        state_of_residence=str(params.state_of_residence or "").strip().upper(),
        other_taxable_income=_non_negative("other_taxable_income", params.other_taxable_income),
        tax_rate_multiplier=_non_negative("tax_rate_multiplier", params.tax_rate_multiplier, 1.0),
        include_irmaa=bool(params.include_irmaa),
        pension_survivor_share=survivor_share,
        ltc_model=_normalize_care_model(params.ltc_model) if params.ltc_model is not None else None,
        dollar_mode=DollarMode(params.dollar_mode),
    )


# =============================================================================
# Profile mapping
# =============================================================================

def _return_source(source: Any):
    if source is None or isinstance(source, (FixedReturn, StaticAllocation, GlidePath)):
        return source or FixedReturn()
    kind = source.get("kind", "fixed")
    if kind == "fixed":
        return FixedReturn()
    if kind == "static_allocation":
        return StaticAllocation.from_dict(source["weights"])
    if kind == "glide_path":
        return GlidePath.from_schedule(source.get("schedule") or default_glide_path)
    raise ValueError(f"Unknown return source kind: {kind!r}")


def _income_streams(rows: List[Mapping[str, Any]], birth_year: Optional[int]) -> tuple:
    streams = []
    for row in rows or []:
        fra = row.get("full_retirement_age")
        if fra is None and row.get("benefit_at_fra") and birth_year is not None:
            fra = get_full_retirement_age(birth_year, row.get("birth_month", 1))
        streams.append(IncomeStream(
            kind=IncomeKind(row.get("kind", IncomeKind.SOCIAL_SECURITY.value)),
            annual_amount=clean_currency(row.get("annual_amount", 0.0)),
            start_age=int(row.get("start_age", DEFAULT_RETIREMENT_AGE)),
            end_age=row.get("end_age"),
            cola=bool(row.get("cola", True)),
            full_retirement_age=fra,
            owner=row.get("owner", "self"),
        ))
    return tuple(streams)


def build_simulation_params(profile: Mapping[str, Any]) -> SimulationParams:
    """
    Maps a loosely typed profile dictionary to SimulationParams, using reflection
    (dataclasses.fields) so that only valid fields are passed. Currency and
    percent strings ("$140,000", "7%") are accepted. The result is normalized.
    """
    inputs_dict: Dict[str, Any] = dict(profile)

    # Buckets: explicit mapping, or a bare total placed in the default bucket
    bucket_data = inputs_dict.pop("buckets", None)
    if bucket_data is None:
        total = clean_currency(inputs_dict.pop("current_assets", 0.0))
        bucket_data = {DEFAULT_ASSET_BUCKET: total}
    inputs_dict["buckets"] = AssetBuckets(**{
        key: clean_currency(value) for key, value in bucket_data.items()
        if key in BUCKET_NAMES or key == "taxable_basis"
    })

    inputs_dict["income_streams"] = _income_streams(
        inputs_dict.get("income_streams", []), inputs_dict.pop("birth_year", None)
    )
    inputs_dict["return_source"] = _return_source(inputs_dict.get("return_source"))

    if isinstance(inputs_dict.get("longevity_model"), Mapping):
        inputs_dict["longevity_model"] = LongevityModel(**inputs_dict["longevity_model"])
    if isinstance(inputs_dict.get("ltc_model"), Mapping):
        care = dict(inputs_dict["ltc_model"])
        if "age_probabilities" in care:
            care["age_probabilities"] = tuple(care["age_probabilities"])
        inputs_dict["ltc_model"] = LongTermCareModel(**care)
    if "withdrawal_order" in inputs_dict:
        inputs_dict["withdrawal_order"] = tuple(inputs_dict["withdrawal_order"])

    for key in MONEY_FIELDS:
        if isinstance(inputs_dict.get(key), str):
            inputs_dict[key] = clean_currency(inputs_dict[key])
    for key in RATE_FIELDS:
        if isinstance(inputs_dict.get(key), str):
            inputs_dict[key] = clean_percent(inputs_dict[key])

    # Filter to the dataclass fields
    param_field_names = {f.name for f in fields(SimulationParams)}
    unknown = sorted(set(inputs_dict) - param_field_names)
    if unknown:
        logger.debug("Ignoring unknown profile keys: %s", unknown)

    final_inputs = {key: value for key, value in inputs_dict.items() if key in param_field_names}
    final_inputs.setdefault("current_age", DEFAULT_CURRENT_AGE)
    final_inputs.setdefault("retirement_age", DEFAULT_RETIREMENT_AGE)

    return normalize_params(SimulationParams(**final_inputs))
