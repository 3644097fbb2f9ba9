# utils/tax_utils.py
from functools import lru_cache
from typing import List, Tuple, Dict, Literal, Union, NamedTuple

import numpy as np

from config.engine_settings import TAX_RATE_CEILING

# Define the acceptable set of filing statuses for type hinting
TaxFilingStatus = Literal["single", "married_filing_jointly", "married_separate", "head_of_household"]
FILING_STATUSES = ("single", "married_filing_jointly", "married_separate", "head_of_household")

# =============================================================================
# 1. Federal Ordinary Income Tax Brackets (2026 Estimated)
# =============================================================================

ORDINARY_BRACKETS_2026: Dict[TaxFilingStatus, List[Tuple[float, float, float]]] = {
    "married_filing_jointly": [
        (0, 24_800, 0.10), (24_800, 100_800, 0.12), (100_800, 211_400, 0.22),
        (211_400, 403_550, 0.24), (403_550, 512_450, 0.32), (512_450, 768_700, 0.35),
        (768_700, np.inf, 0.37),
    ],
    "single": [
        (0, 12_400, 0.10), (12_400, 50_400, 0.12), (50_400, 110_650, 0.22),
        (110_650, 196_150, 0.24), (196_150, 250_000, 0.32), (250_000, 622_050, 0.35),
        (622_050, np.inf, 0.37),
    ],
    "head_of_household": [
        (0, 18_600, 0.10), (18_600, 72_000, 0.12), (72_000, 148_000, 0.22),
        (148_000, 258_000, 0.24), (258_000, 321_450, 0.32), (321_450, 622_050, 0.35),
        (622_050, np.inf, 0.37),
    ],
    "married_separate": [
        (0, 12_400, 0.10), (12_400, 50_400, 0.12), (50_400, 105_700, 0.22),
        (105_700, 201_775, 0.24), (201_775, 256_225, 0.32), (256_225, 384_350, 0.35),
        (384_350, np.inf, 0.37),
    ]
}

# =============================================================================
# 2. Federal Preferential Income Tax Brackets (Long-term capital gains)
# =============================================================================
CAPGAINS_BRACKETS_2026: Dict[TaxFilingStatus, List[Tuple[float, float, float]]] = {
    "single": [(0, 48400, 0.0), (48400, 535000, 0.15), (535000, np.inf, 0.20)],
    "married_filing_jointly": [(0, 96900, 0.0), (96900, 601300, 0.15), (601300, np.inf, 0.20)],
    "married_separate": [(0, 48450, 0.0), (48450, 300650, 0.15), (300650, np.inf, 0.20)],
    "head_of_household": [(0, 72900, 0.0), (72900, 568300, 0.15), (568300, np.inf, 0.20)],
}

# =============================================================================
# 3. Federal Deductions (Indexed)
# =============================================================================
STANDARD_DEDUCTION_2026: Dict[TaxFilingStatus, float] = {
    "single": 15050,
    "married_filing_jointly": 30100,
    "married_separate": 15050,
    "head_of_household": 22600,
}

EXTRA_STD_DEDUCTION_65: Dict[str, float] = {
    "single": 2000,
    "head_of_household": 2000,
    "married_filing_jointly": 1600,
    "married_separate": 1600,
}

# =============================================================================
# 4. Fixed / Non-Indexed Federal Tax Parameters
# =============================================================================

# Social Security Taxation Thresholds (Statutory and NOT indexed)
SS_TAX_THRESHOLDS: Dict[str, List[Tuple[float, float, float]]] = {
    "single": [(0, 25000, 0.0), (25000, 34000, 0.50), (34000, np.inf, 0.85)],
    "head_of_household": [(0, 25000, 0.0), (25000, 34000, 0.50), (34000, np.inf, 0.85)],
    "married_filing_jointly": [(0, 32000, 0.0), (32000, 44000, 0.50), (44000, np.inf, 0.85)],
    "married_separate": [(0, 0, 0.85)],
}

# Medicare IRMAA: (MAGI upper bound, monthly Part B + Part D surcharge per enrollee).
# Thresholds and amounts are indexed with the federal brackets.
IRMAA_TIERS_2026: Dict[str, List[Tuple[float, float]]] = {
    "single": [
        (103000, 0.0), (129000, 82.80), (161000, 208.00),
        (193000, 333.30), (500000, 458.50), (np.inf, 500.30),
    ],
    "married_filing_jointly": [
        (206000, 0.0), (258000, 82.80), (322000, 208.00),
        (386000, 333.30), (750000, 458.50), (np.inf, 500.30),
    ],
}
MEDICARE_AGE = 65

# =============================================================================
# 5. State Tax Parameters (non-indexed)
# =============================================================================

NO_INCOME_TAX_STATES = frozenset({"AK", "FL", "NV", "NH", "SD", "TN", "TX", "WA", "WY"})


class StateTaxProfile(NamedTuple):
    income_rate: float
    capital_gains_rate: float
    taxes_social_security: bool
    pension_exclusion: float


# Effective flat rates for states without a bracket schedule below
STATE_TAX_TABLE: Dict[str, StateTaxProfile] = {
    "IL": StateTaxProfile(0.0495, 0.0495, False, np.inf),
    "MS": StateTaxProfile(0.05, 0.05, False, np.inf),
    "PA": StateTaxProfile(0.0307, 0.0307, False, np.inf),
    "AL": StateTaxProfile(0.05, 0.05, False, 0.0),
    "AZ": StateTaxProfile(0.025, 0.025, False, 2500.0),
    "GA": StateTaxProfile(0.0575, 0.0575, False, 65000.0),
    "SC": StateTaxProfile(0.07, 0.07, False, 10000.0),
    "CA": StateTaxProfile(0.093, 0.093, False, 0.0),
    "NY": StateTaxProfile(0.0685, 0.0685, False, 20000.0),
    "NJ": StateTaxProfile(0.0637, 0.0637, False, 100000.0),
    "OR": StateTaxProfile(0.0875, 0.0875, False, 0.0),
    "HI": StateTaxProfile(0.0825, 0.075, False, 0.0),
    "CO": StateTaxProfile(0.044, 0.044, True, 24000.0),
    "CT": StateTaxProfile(0.0699, 0.0699, True, 0.0),
    "KS": StateTaxProfile(0.057, 0.057, True, 0.0),
    "MN": StateTaxProfile(0.0785, 0.0785, True, 0.0),
    "MT": StateTaxProfile(0.0675, 0.0675, True, 0.0),
    "NM": StateTaxProfile(0.059, 0.059, True, 8000.0),
    "RI": StateTaxProfile(0.0599, 0.0599, True, 15000.0),
    "UT": StateTaxProfile(0.0465, 0.0465, True, 0.0),
    "VT": StateTaxProfile(0.0875, 0.0875, True, 0.0),
    "WV": StateTaxProfile(0.065, 0.065, True, 8000.0),
}

# Used for states missing from every table
DEFAULT_STATE_TAX = StateTaxProfile(0.05, 0.05, False, 0.0)

# VIRGINIA (VA) Constants
VA_TAX_BRACKETS = [
    (0, 3000, 0.02), (3000, 5000, 0.03), (5000, 17000, 0.05), (17000, np.inf, 0.0575),
]
VA_SD: Dict[TaxFilingStatus, float] = {
    "single": 8000,
    "married_filing_jointly": 16000,
    "married_separate": 8000,
    "head_of_household": 8000,
}
VA_PE_PER_PERSON = 930  # Virginia Personal Exemption per person

# MAINE (ME) Constants
ME_TAX_BRACKETS: Dict[TaxFilingStatus, List[Tuple[float, float, float]]] = {
    "single": [(0, 26050, 0.058), (26050, 61600, 0.0675), (61600, np.inf, 0.0715)],
    "married_filing_jointly": [(0, 52100, 0.058), (52100, 123250, 0.0675), (123250, np.inf, 0.0715)],
    "married_separate": [(0, 26050, 0.058), (26050, 61600, 0.0675), (61600, np.inf, 0.0715)],
    "head_of_household": [(0, 39050, 0.058), (39050, 92450, 0.0675), (92450, np.inf, 0.0715)],
}
ME_SD_2026: Dict[TaxFilingStatus, float] = {
    "single": 15050,
    "married_filing_jointly": 30100,
    "married_separate": 15050,
    "head_of_household": 22600,
}


# =============================================================================
# 6. Core Utility Function (Returns all indexed Federal values)
# =============================================================================

def scale_rate(rate: float, rate_multiplier: float) -> float:
    """Apply a tax-increase multiplier to a statutory rate, capped at the ceiling."""
    return min(TAX_RATE_CEILING, rate * rate_multiplier)


@lru_cache(maxsize=4096)
def get_indexed_federal_constants(
    inflation_index: float,
    filing_status: TaxFilingStatus,
    rate_multiplier: float = 1.0,
) -> Dict[str, Union[float, List]]:
    """
    Returns a dictionary of Federal tax brackets and deductions with bounds
    scaled by the cumulative inflation index (1.0 in today's dollars) and
    rates scaled by the tax-increase multiplier.
    """
    inflation_factor = max(inflation_index, 1e-9)

    base_ord_brackets = ORDINARY_BRACKETS_2026.get(filing_status, ORDINARY_BRACKETS_2026["single"])
    base_cg_brackets = CAPGAINS_BRACKETS_2026.get(filing_status, CAPGAINS_BRACKETS_2026["single"])

    def _index_brackets(base_brackets: List[Tuple[float, float, float]]):
        """Helper to index bracket bounds and scale rates."""
        indexed_list = []
        for low, high, rate in base_brackets:
            inflated_low = low * inflation_factor
            inflated_high = high * inflation_factor if np.isfinite(high) else np.inf
            indexed_list.append((inflated_low, inflated_high, scale_rate(rate, rate_multiplier)))
        return indexed_list

    return {
        "ord_list": _index_brackets(base_ord_brackets),
        "cg_list": _index_brackets(base_cg_brackets),
        "std_deduction": STANDARD_DEDUCTION_2026.get(filing_status, STANDARD_DEDUCTION_2026["single"]) * inflation_factor,
        "extra_std_deduction": EXTRA_STD_DEDUCTION_65.get(filing_status, EXTRA_STD_DEDUCTION_65["single"]) * inflation_factor,
    }


def apply_brackets(taxable_amount: float, brackets: List[Tuple[float, float, float]]) -> float:
    """Progressive tax on taxable_amount over (low, high, rate) brackets."""
    tax = 0.0
    remaining = taxable_amount
    for low, high, rate in brackets:
        if remaining <= 0:
            break
        bracket_income = min(remaining, high - low) if np.isfinite(high) else remaining
        tax += bracket_income * rate
        remaining -= bracket_income
    return tax
