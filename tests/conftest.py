import pytest

from models import (
    AssetBuckets,
    IncomeKind,
    IncomeStream,
    SimulationParams,
    WithdrawalPolicy,
)


@pytest.fixture
def four_percent_params():
    """45-year-old, $500k, retiring at 65 on a 4% fixed withdrawal."""
    return SimulationParams(
        current_age=45,
        retirement_age=65,
        life_expectancy=93,
        buckets=AssetBuckets(tax_deferred=500_000),
        annual_retirement_expenses=80_000,
        income_streams=(IncomeStream(IncomeKind.SOCIAL_SECURITY, 30_000, 65),),
        expected_return=0.07,
        return_volatility=0.15,
        general_inflation=0.025,
        withdrawal_policy=WithdrawalPolicy.FIXED_PERCENTAGE,
        withdrawal_rate=0.04,
        state_of_residence="FL",
    )


@pytest.fixture
def retiree_params():
    """Already retired, spending driven by need."""
    return SimulationParams(
        current_age=65,
        retirement_age=65,
        life_expectancy=90,
        buckets=AssetBuckets(
            tax_deferred=600_000,
            tax_free=150_000,
            taxable=200_000,
            cash_equivalents=50_000,
            taxable_basis=120_000,
        ),
        annual_retirement_expenses=70_000,
        annual_healthcare_costs=10_000,
        income_streams=(IncomeStream(IncomeKind.SOCIAL_SECURITY, 28_000, 67),),
        withdrawal_policy=WithdrawalPolicy.NEEDS_BASED,
        state_of_residence="TX",
    )
