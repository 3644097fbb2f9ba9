import pytest

from engine.guardrails import GuardrailAdjuster


@pytest.fixture
def adjuster():
    g = GuardrailAdjuster(initial_rate=0.04, essential_share=0.70, min_remaining_years=15)
    first = g.adjust(40_000, 1_000_000, remaining_years=30)
    assert first.reason == "initial"
    return g


def test_first_year_is_never_adjusted():
    g = GuardrailAdjuster(0.04)
    decision = g.adjust(90_000, 1_000_000, remaining_years=30)
    assert decision.spending_target == 90_000
    assert not decision.adjusted


def test_within_band_leaves_target_unchanged(adjuster):
    decision = adjuster.adjust(40_000, 1_000_000, remaining_years=29)
    assert decision.reason == "none"
    assert decision.spending_target == pytest.approx(40_000)
    assert adjuster.adjustment_count == 0


def test_capital_preservation_cuts_discretionary_share(adjuster):
    # 6% current rate is 1.5x the initial rate: 15% cut of the 30% discretionary share
    decision = adjuster.adjust(60_000, 1_000_000, remaining_years=29)
    assert decision.reason == "capital_preservation"
    assert decision.spending_target == pytest.approx(60_000 * (1 - 0.15 * 0.30))
    assert adjuster.adjustment_count == 1


def test_no_cut_late_in_retirement(adjuster):
    decision = adjuster.adjust(60_000, 1_000_000, remaining_years=10)
    assert decision.reason == "none"
    assert decision.spending_target == pytest.approx(60_000)


def test_prosperity_raise(adjuster):
    decision = adjuster.adjust(20_000, 1_000_000, remaining_years=29)
    assert decision.reason == "prosperity"
    assert decision.spending_target == pytest.approx(23_000)


def test_cuts_rebase_later_years(adjuster):
    adjuster.adjust(60_000, 1_000_000, remaining_years=29)
    second = adjuster.adjust(60_000, 1_000_000, remaining_years=28)
    assert second.spending_target < 60_000 * (1 - 0.15 * 0.30)
    assert adjuster.adjustment_count == 2


def test_essential_floor_holds_under_repeated_cuts(adjuster):
    for years_left in range(60, 16, -1):
        decision = adjuster.adjust(60_000, 300_000, remaining_years=years_left)
        assert decision.spending_target >= 0.70 * 60_000 - 1e-9


def test_zero_target_passes_through(adjuster):
    decision = adjuster.adjust(0.0, 1_000_000, remaining_years=20)
    assert decision.spending_target == 0.0
    assert not decision.adjusted


def test_no_raise_late_in_retirement(adjuster):
    for years_left in (15, 10, 1):
        decision = adjuster.adjust(20_000, 1_000_000, remaining_years=years_left)
        assert decision.reason == "none"
        assert decision.spending_target == pytest.approx(20_000)
    assert adjuster.adjustment_count == 0
