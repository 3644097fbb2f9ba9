# engine/long_term_care.py
#
# Long-term care shocks. A scenario has at most one care episode, starting in a
# retirement year at or after the onset age. Onset odds rise with age, the
# duration is log-normal and the annual cost depends on the type of care.
#

import math
from typing import Callable, NamedTuple, Optional

import numpy as np
from numpy.typing import NDArray
from scipy.stats import norm

from config.expense_assumptions import (
    ltc_care_mix,
    ltc_duration_bounds,
    ltc_min_annual_cost,
    ltc_onset_age,
)
from models import LongTermCareModel


class CareEpisode(NamedTuple):
    onset_index: int            # year index of the first year of care
    care_type: str
    duration: float             # years, may be fractional
    annual_cost: float          # today's dollars


def _care_type(u: float):
    cumulative = 0.0
    for care_type, probability, multiplier in ltc_care_mix:
        cumulative += probability
        if u <= cumulative:
            return care_type, multiplier
    care_type, _, multiplier = ltc_care_mix[-1]
    return care_type, multiplier


def _duration(u: float, model: LongTermCareModel) -> float:
    s2 = math.log1p((model.duration_std / model.duration_mean) ** 2)
    z = norm.ppf(min(max(u, 1e-9), 1 - 1e-9))
    duration = math.exp(math.log(model.duration_mean) - 0.5 * s2 + math.sqrt(s2) * z)
    low, high = ltc_duration_bounds
    return min(max(duration, low), high)


def draw_episode(
    model: LongTermCareModel,
    care_u: NDArray[np.float64],
    current_age: int,
    retirement_age: int,
    last_index: int,
) -> Optional[CareEpisode]:
    """
    The scenario's care episode, if any.

    Args:
        model: Onset, duration and cost assumptions.
        care_u: [n_years, 4] uniforms: onset, care type, duration and cost.
        current_age: Age at year index 0.
        retirement_age: No episode starts before retirement.
        last_index: Last year index of the scenario's horizon.
    """
    probabilities = model.age_probabilities
    if not probabilities:
        return None

    first_age = max(ltc_onset_age, retirement_age, current_age)
    for t in range(first_age - current_age, min(last_index, len(care_u) - 1) + 1):
        age = current_age + t
        onset_u, type_u, duration_u, cost_u = care_u[t]
        if onset_u > probabilities[min(age - ltc_onset_age, len(probabilities) - 1)]:
            continue

        care_type, multiplier = _care_type(type_u)
        base_cost = model.annual_cost_mean - model.annual_cost_std + 2 * model.annual_cost_std * cost_u
        annual_cost = max(ltc_min_annual_cost, base_cost) * multiplier
        return CareEpisode(t, care_type, _duration(duration_u, model), annual_cost)
    return None


def care_costs(
    episode: Optional[CareEpisode],
    n_years: int,
    inflation: float,
    price_growth: Callable[[float, int], float],
) -> NDArray[np.float64]:
    """
    Cost of care per year index. The final year of an episode is charged pro
    rata for its fractional part.

    Args:
        episode: The drawn episode; None gives all zeros.
        n_years: Length of the returned array.
        inflation: Annual growth of care costs.
        price_growth: Maps (rate, year_index) to the growth of a cost in the
            scenario's dollar mode.
    """
    costs = np.zeros(n_years)
    if episode is None:
        return costs

    for k in range(math.ceil(episode.duration)):
        t = episode.onset_index + k
        if t >= n_years:
            break
        fraction = min(1.0, episode.duration - k)
        costs[t] = episode.annual_cost * fraction * price_growth(inflation, t)
    return costs
