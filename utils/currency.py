# utils/currency.py
import math
from typing import Union, Optional

Number = Union[str, float, int, None]


def clean_currency(val: Number) -> float:
    """
    Cleans a currency string (e.g., "$140,000.00") into a float (140000.0).
    Unparseable or empty input becomes 0.0.
    """
    if val is None or val == "":
        return 0.0
    try:
        cleaned_val = str(val).replace('$', '').replace(',', '').strip()
        if not cleaned_val:
            return 0.0
        return float(cleaned_val)
    except ValueError:
        return 0.0


def clean_percent(raw_input: Number) -> Optional[float]:
    """
    Cleans raw input (e.g., '0.23', '23%', '23') and converts it to a float
    where 1.0 represents 100%. Strings with a '%' sign, or plain numbers between
    1 and 100, are read as percentages.
    """
    if raw_input is None:
        return None

    if isinstance(raw_input, (float, int)):
        if 1.0 <= float(raw_input) <= 100.0:
            return float(raw_input) / 100.0
        return float(raw_input)

    s = str(raw_input).strip()
    if not s:
        return None

    is_percent = s.endswith('%')
    s = s.replace('%', '').replace(',', '').replace(' ', '').strip()
    try:
        numeric_val = float(s)
    except ValueError:
        return None

    if is_percent or 1.0 <= numeric_val <= 100.0:
        return numeric_val / 100.0
    return numeric_val


def finite_or(value: Number, default: float) -> float:
    """Return value as a float, or default when it is missing, NaN or infinite."""
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default
