import pytest

from engine.accounts_income import AccountsIncomeEngine
from models import DollarMode, IncomeKind, IncomeStream, SimulationParams


def make_engine(*streams, **overrides):
    params = SimulationParams(
        current_age=65,
        retirement_age=65,
        income_streams=streams,
        general_inflation=0.03,
        ss_cola_rate=0.02,
        **overrides,
    )
    return AccountsIncomeEngine(params)


def test_social_security_without_cola_stays_flat_in_nominal_dollars():
    engine = make_engine(
        IncomeStream(IncomeKind.SOCIAL_SECURITY, 30_000, 65, cola=False),
        dollar_mode=DollarMode.NOMINAL,
    )
    assert engine.income_for_year(75, 10).social_security == pytest.approx(30_000)


def test_social_security_cola_uses_its_own_rate():
    engine = make_engine(
        IncomeStream(IncomeKind.SOCIAL_SECURITY, 30_000, 65),
        dollar_mode=DollarMode.NOMINAL,
    )
    assert engine.income_for_year(75, 10).social_security == pytest.approx(30_000 * 1.02 ** 10)


def test_flat_pension_loses_value_in_real_dollars():
    engine = make_engine(IncomeStream(IncomeKind.PENSION, 20_000, 65, cola=False))
    assert engine.income_for_year(75, 10).pension == pytest.approx(20_000 / 1.03 ** 10)


def test_stream_window_is_half_open():
    engine = make_engine(IncomeStream(IncomeKind.PART_TIME, 15_000, 65, end_age=70, cola=False))
    assert engine.income_for_year(69, 4).other_ordinary == pytest.approx(15_000)
    assert engine.income_for_year(70, 5).other_ordinary == 0.0


@pytest.fixture
def couple():
    return make_engine(
        IncomeStream(IncomeKind.SOCIAL_SECURITY, 30_000, 65, cola=False),
        IncomeStream(IncomeKind.SOCIAL_SECURITY, 12_000, 62, cola=False, owner="spouse"),
        IncomeStream(IncomeKind.PENSION, 24_000, 65, cola=False, owner="spouse"),
        IncomeStream(IncomeKind.PART_TIME, 10_000, 65, cola=False),
        spouse_age=62,
        filing_status="married_filing_jointly",
        dollar_mode=DollarMode.NOMINAL,
    )


def test_spouse_streams_follow_spouse_age(couple):
    income = couple.income_for_year(65, 0, spouse_age=62)
    assert income.social_security == pytest.approx(42_000)
    assert income.pension == 0.0

    later = couple.income_for_year(68, 3, spouse_age=65)
    assert later.pension == pytest.approx(24_000)


def test_survivor_keeps_the_larger_social_security_benefit(couple):
    spouse_survives = couple.income_for_year(70, 5, spouse_age=67, deceased="self")
    assert spouse_survives.social_security == pytest.approx(30_000)

    self_survives = couple.income_for_year(70, 5, spouse_age=67, deceased="spouse")
    assert self_survives.social_security == pytest.approx(30_000)


def test_deceased_pension_continues_at_survivor_share(couple):
    income = couple.income_for_year(70, 5, spouse_age=67, deceased="spouse")
    assert income.pension == pytest.approx(24_000 * couple.params.pension_survivor_share)


def test_deceased_earned_income_stops(couple):
    assert couple.income_for_year(66, 1, spouse_age=63).other_ordinary == pytest.approx(10_000)
    assert couple.income_for_year(66, 1, spouse_age=63, deceased="self").other_ordinary == 0.0
