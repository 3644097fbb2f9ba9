# engine/accounts_income.py

from typing import NamedTuple, Optional, Tuple

from models import DollarMode, IncomeKind, IncomeStream, SimulationParams
from engine.rmd_tables import required_minimum_distribution
from utils.ss_utils import claiming_adjustment_factor

SELF = "self"
SPOUSE = "spouse"


class IncomeYear(NamedTuple):
    social_security: float
    pension: float              # pensions and annuities
    other_ordinary: float       # part-time wages and other taxable income

    @property
    def total(self) -> float:
        return self.social_security + self.pension + self.other_ordinary

    @property
    def ordinary(self) -> float:
        return self.pension + self.other_ordinary


class AccountsIncomeEngine:
    """
    Guaranteed income and required distributions for one scenario, expressed in
    the scenario's dollar mode.

    After a death the survivor keeps the larger of the two Social Security
    benefits, pensions and annuities of the deceased continue at the survivor
    share, and the deceased's earned income stops.
    """
    def __init__(self, params: SimulationParams):
        self.params = params
        self.nominal = params.dollar_mode == DollarMode.NOMINAL
        self.inflation = params.general_inflation
        self.streams: Tuple[IncomeStream, ...] = params.income_streams

    # ----------------------------------------------------------------------
    # Growth of a stream from today's dollars to year t
    # ----------------------------------------------------------------------
    def _growth(self, stream: IncomeStream, year_index: int) -> float:
        if not stream.cola:
            nominal_growth = 1.0
        elif stream.kind == IncomeKind.SOCIAL_SECURITY:
            nominal_growth = (1 + self.params.ss_cola_rate) ** year_index
        else:
            nominal_growth = (1 + self.inflation) ** year_index

        if self.nominal:
            return nominal_growth
        return nominal_growth / (1 + self.inflation) ** year_index

    @staticmethod
    def _is_active(stream: IncomeStream, age: int) -> bool:
        if age < stream.start_age:
            return False
        return stream.end_age is None or age < stream.end_age

    # ----------------------------------------------------------------------
    # Social Security Benefit Calculation
    # ----------------------------------------------------------------------
    @staticmethod
    def _base_amount(stream: IncomeStream) -> float:
        """Annual amount in today's dollars after any claiming-age adjustment."""
        if stream.kind == IncomeKind.SOCIAL_SECURITY and stream.full_retirement_age is not None:
            return stream.annual_amount * claiming_adjustment_factor(stream.start_age, stream.full_retirement_age)
        return stream.annual_amount

    def income_for_year(
        self,
        age: int,
        year_index: int,
        spouse_age: Optional[int] = None,
        deceased: Optional[str] = None,
    ) -> IncomeYear:
        """
        Guaranteed income for one year.

        Args:
            age: Primary's age this year.
            year_index: Years since the start of the simulation.
            spouse_age: Spouse's age this year; spouse-owned streams fall back
                to the primary's age when it is unknown.
            deceased: "self" or "spouse" once that person has died, else None.
        """
        own_ss = {SELF: 0.0, SPOUSE: 0.0}
        deceased_ss = 0.0
        pension = other = 0.0

        for stream in self.streams:
            owner = SPOUSE if stream.owner == SPOUSE else SELF
            owner_age = spouse_age if owner == SPOUSE and spouse_age is not None else age
            if not self._is_active(stream, owner_age):
                continue

            amount = max(0.0, self._base_amount(stream) * self._growth(stream, year_index))
            alive = owner != deceased
            if stream.kind == IncomeKind.SOCIAL_SECURITY:
                if alive:
                    own_ss[owner] += amount
                else:
                    deceased_ss += amount
            elif stream.kind in (IncomeKind.PENSION, IncomeKind.ANNUITY):
                pension += amount if alive else amount * self.params.pension_survivor_share
            elif alive:
                other += amount

        ss = own_ss[SELF] + own_ss[SPOUSE]
        if deceased is not None and deceased_ss > 0:
            survivor = SPOUSE if deceased == SELF else SELF
            ss += max(0.0, deceased_ss - own_ss[survivor])

        other += self.params.other_taxable_income * self.inflation_index(year_index)
        return IncomeYear(ss, pension, other)

    def inflation_index(self, year_index: int) -> float:
        """Price level of year t relative to today, in the scenario's dollar mode."""
        return (1 + self.inflation) ** year_index if self.nominal else 1.0

    # ----------------------------------------------------------------------
    # RMDs
    # ----------------------------------------------------------------------
    def compute_rmd(self, tax_deferred_balance: float, age: int) -> float:
        return required_minimum_distribution(tax_deferred_balance, age)
