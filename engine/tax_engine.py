"""
Annual U.S. income tax calculator for retirement cash flows.
It contains the final tax calculation formulas, relying entirely on indexed
constants provided by utils.tax_utils.
"""
from functools import lru_cache
from typing import Dict, List, NamedTuple, Optional, Union
import logging

import numpy as np

# Configure logging for state tax messages
logger = logging.getLogger(__name__)

from utils.tax_utils import (
    get_indexed_federal_constants,
    apply_brackets,
    scale_rate,
    SS_TAX_THRESHOLDS,
    NO_INCOME_TAX_STATES,
    STATE_TAX_TABLE,
    DEFAULT_STATE_TAX,
    VA_TAX_BRACKETS,
    VA_SD,
    VA_PE_PER_PERSON,
    ME_TAX_BRACKETS,
    ME_SD_2026,
    IRMAA_TIERS_2026,
    MEDICARE_AGE,
    TaxFilingStatus,
)


class TaxBreakdown(NamedTuple):
    federal_tax: float          # ordinary-income portion
    capital_gains_tax: float    # federal preferential-rate portion
    state_tax: float
    taxable_social_security: float
    irmaa_surcharge: float = 0.0    # Medicare premium surcharge, counted with taxes
    magi: float = 0.0               # this year's MAGI, for later IRMAA lookbacks

    @property
    def total(self) -> float:
        return self.federal_tax + self.capital_gains_tax + self.state_tax + self.irmaa_surcharge


# --- 1. Internal Helper Functions ---

def taxable_social_security(
    social_security_income: float,
    other_income: float,
    filing_status: TaxFilingStatus,
) -> float:
    """
    Portion of Social Security benefits included in AGI, using the
    provisional-income worksheet (other income + half of benefits).
    """
    if social_security_income <= 0:
        return 0.0

    tiers = SS_TAX_THRESHOLDS.get(filing_status, SS_TAX_THRESHOLDS["single"])
    if len(tiers) == 1:
        # Married filing separately (living together): 85% from the first dollar
        return 0.85 * social_security_income

    provisional = other_income + 0.5 * social_security_income
    base_1 = tiers[1][0]
    base_2 = tiers[2][0]

    if provisional <= base_1:
        return 0.0
    if provisional <= base_2:
        return min(0.5 * social_security_income, 0.5 * (provisional - base_1))

    first_tier = min(0.5 * social_security_income, 0.5 * (base_2 - base_1))
    return min(0.85 * social_security_income, 0.85 * (provisional - base_2) + first_tier)


def _federal_income_tax(
    taxable_ordinary_base: float,
    lt_cap_gains: float,
    federal_constants: Dict[str, Union[float, List]],
) -> tuple:
    """Calculates the Federal Income Tax as (ordinary_tax, ltcg_tax)."""

    # 1. Tax on Ordinary Income (uses indexed ordinary brackets)
    ord_tax = apply_brackets(taxable_ordinary_base, federal_constants["ord_list"])

    # 2. Tax on Preferential Income, stacked on top of ordinary income
    ltcg_tax = 0.0
    taxable_income = taxable_ordinary_base + lt_cap_gains

    for low, high, rate in federal_constants["cg_list"]:
        bracket_start = max(low, taxable_ordinary_base)
        bracket_end = min(high, taxable_income) if np.isfinite(high) else taxable_income
        ltcg_tax += max(0, bracket_end - bracket_start) * rate

    return ord_tax, ltcg_tax


def _scaled_brackets(brackets, rate_multiplier: float, inflation_factor: float = 1.0):
    return [
        (low * inflation_factor,
         high * inflation_factor if np.isfinite(high) else np.inf,
         scale_rate(rate, rate_multiplier))
        for low, high, rate in brackets
    ]


def _virginia_income_tax(state_agi: float, filing_status: TaxFilingStatus, rate_multiplier: float) -> float:
    """Calculates the total Virginia State Income Tax."""
    persons = 2 if filing_status == "married_filing_jointly" else 1
    va_deduction = VA_SD.get(filing_status, VA_SD["single"]) + persons * VA_PE_PER_PERSON

    taxable_income_va = max(0, state_agi - va_deduction)
    return apply_brackets(taxable_income_va, _scaled_brackets(VA_TAX_BRACKETS, rate_multiplier))


def _maine_income_tax(
    state_agi: float,
    filing_status: TaxFilingStatus,
    inflation_index: float,
    rate_multiplier: float,
) -> float:
    """Calculates the total Maine State Income Tax (deduction and brackets indexed)."""
    inflation_factor = max(inflation_index, 1.0)
    me_deduction = ME_SD_2026.get(filing_status, ME_SD_2026["single"]) * inflation_factor

    taxable_income_me = max(0, state_agi - me_deduction)
    me_brackets = ME_TAX_BRACKETS.get(filing_status, ME_TAX_BRACKETS["single"])
    return apply_brackets(taxable_income_me, _scaled_brackets(me_brackets, rate_multiplier, inflation_factor))


@lru_cache(maxsize=None)
def _warn_unknown_state(state: str) -> None:
    # Cached so the message appears once per state per process
    logger.warning(
        "State tax table has no entry for '%s'. Using a flat %.1f%% default rate.",
        state, DEFAULT_STATE_TAX.income_rate * 100,
    )


def state_income_tax(
    state_of_residence: str,
    filing_status: TaxFilingStatus,
    ordinary_income: float,
    lt_cap_gains: float,
    taxable_ss: float,
    pension_income: float = 0.0,
    inflation_index: float = 1.0,
    rate_multiplier: float = 1.0,
) -> float:
    state = (state_of_residence or "").strip().upper()

    if state in NO_INCOME_TAX_STATES:
        return 0.0

    # Social Security is exempt in VA and ME
    if state == "VA":
        return _virginia_income_tax(ordinary_income + lt_cap_gains, filing_status, rate_multiplier)
    if state == "ME":
        return _maine_income_tax(ordinary_income + lt_cap_gains, filing_status, inflation_index, rate_multiplier)

    profile = STATE_TAX_TABLE.get(state)
    if profile is None:
        _warn_unknown_state(state)
        profile = DEFAULT_STATE_TAX

    excluded_pension = min(pension_income, profile.pension_exclusion * inflation_index)
    income_base = max(0.0, ordinary_income - excluded_pension)
    if profile.taxes_social_security:
        income_base += taxable_ss

    return (income_base * scale_rate(profile.income_rate, rate_multiplier)
            + lt_cap_gains * scale_rate(profile.capital_gains_rate, rate_multiplier))


def irmaa_surcharge(
    magi: float,
    filing_status: TaxFilingStatus,
    enrollees: int,
    inflation_index: float = 1.0,
) -> float:
    """
    Annual Medicare IRMAA surcharge for the household. Married couples filing
    jointly use the joint tiers; every other status uses the single tiers.
    """
    if enrollees <= 0 or magi <= 0:
        return 0.0
    tiers = IRMAA_TIERS_2026.get(filing_status, IRMAA_TIERS_2026["single"])
    for upper, monthly in tiers:
        if magi <= upper * inflation_index:
            return monthly * 12 * inflation_index * enrollees
    return 0.0


# --- 2. Main Orchestrator Function ---

def calculate_taxes(
    ordinary_income: float,
    lt_cap_gains: float,
    social_security_income: float,
    filing_status: TaxFilingStatus,
    state_of_residence: str,
    age1: int,
    age2: Optional[int] = None,
    pension_income: float = 0.0,
    inflation_index: float = 1.0,
    rate_multiplier: float = 1.0,
    irmaa_magi: Optional[float] = None,
) -> TaxBreakdown:
    """
    Calculates all annual income taxes (Federal ordinary, Federal LTCG, State).

    Args:
        ordinary_income: Wages, pensions, tax-deferred withdrawals and other
            ordinary income (excluding Social Security).
        lt_cap_gains: Realized long-term gains from the taxable bucket.
        social_security_income: Gross benefits received this year.
        age1, age2: Ages used for the additional 65+ standard deduction.
        pension_income: Portion of ordinary_income eligible for state pension exclusions.
        inflation_index: Cumulative index applied to bracket bounds (1.0 in today's dollars).
        rate_multiplier: Tax-increase multiplier on statutory rates.
        irmaa_magi: MAGI from two years earlier. When given, Medicare enrollees
            (age 65+) pay the IRMAA surcharge for that MAGI. None means no surcharge.

    Returns:
        TaxBreakdown with the itemized taxes, the IRMAA surcharge and this
        year's MAGI.
    """
    ordinary_income = max(0.0, ordinary_income)
    lt_cap_gains = max(0.0, lt_cap_gains)

    # 1. Fetch indexed Federal constants
    constants = get_indexed_federal_constants(inflation_index, filing_status, rate_multiplier)

    # 2. Social Security inclusion and AGI
    taxable_ss = taxable_social_security(
        social_security_income, ordinary_income + lt_cap_gains, filing_status
    )
    agi = ordinary_income + lt_cap_gains + taxable_ss

    # 3. Deduction with age 65+ add-on
    extra_sd_count = 0
    if age1 >= 65:
        extra_sd_count += 1
    if age2 is not None and age2 >= 65:
        extra_sd_count += 1
    federal_deduction = constants["std_deduction"] + extra_sd_count * constants["extra_std_deduction"]

    taxable_income_fed = max(0, agi - federal_deduction)
    taxable_ordinary_base = max(0, taxable_income_fed - lt_cap_gains)
    preferential = min(lt_cap_gains, taxable_income_fed)

    # 4. Federal Income Tax Calculation
    ord_tax, ltcg_tax = _federal_income_tax(taxable_ordinary_base, preferential, constants)

    # 5. State Income Tax Calculation
    state_tax = state_income_tax(
        state_of_residence,
        filing_status,
        ordinary_income,
        lt_cap_gains,
        taxable_ss,
        pension_income=pension_income,
        inflation_index=inflation_index,
        rate_multiplier=rate_multiplier,
    )

    # 6. Medicare IRMAA on the lookback MAGI
    irmaa = 0.0
    if irmaa_magi is not None:
        enrollees = sum(1 for a in (age1, age2) if a is not None and a >= MEDICARE_AGE)
        irmaa = irmaa_surcharge(irmaa_magi, filing_status, enrollees, inflation_index)

    return TaxBreakdown(ord_tax, ltcg_tax, state_tax, taxable_ss, irmaa, agi)
