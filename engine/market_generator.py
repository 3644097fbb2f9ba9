# market_generator.py
#
# This code generates annual portfolio returns for the scenario simulator.
# Shocks are standard normals drawn from an explicitly seeded numpy Generator;
# they are correlated across asset classes with a Cholesky factor and mapped to
# log-normal (or normal) returns. Antithetic pairing and Latin hypercube
# stratification are available as variance reduction.
#

import math
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.stats import norm

from config.engine_settings import DEFAULT_SEED
from config.market_assumptions import (
    asset_classes,
    asset_class_mu,
    asset_class_sigma,
    corr_matrix,
    lhs_years,
    return_distribution,
)
from models import DollarMode, FixedReturn, GlidePath, SimulationParams, StaticAllocation


class ScenarioDraws(NamedTuple):
    shocks: NDArray[np.float64]     # [n_years, n_assets] standard normals
    longevity_u: float              # uniform draw for stochastic longevity
    care_u: Optional[NDArray[np.float64]] = None    # [n_years, 4] uniforms for care episodes

    def mirrored(self) -> "ScenarioDraws":
        care = None if self.care_u is None else 1.0 - self.care_u
        return ScenarioDraws(-self.shocks, 1.0 - self.longevity_u, care)


def resolve_seed(seed) -> int:
    """Coerce a caller-supplied seed to a non-negative int, falling back to the default."""
    if seed is None or isinstance(seed, bool):
        return DEFAULT_SEED
    try:
        value = int(seed)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_SEED
    return value if value >= 0 else DEFAULT_SEED


def make_rng(seed, *spawn_key: int) -> np.random.Generator:
    """
    Generator for a base seed and an optional structural key (e.g. chunk index).
    Distinct keys give independent, reproducible streams.
    """
    return np.random.default_rng(np.random.SeedSequence(resolve_seed(seed), spawn_key=tuple(spawn_key)))


def lognormal_params(mu, sigma) -> Tuple[NDArray, NDArray]:
    """
    Log-space drift and diffusion whose gross return 1+R has arithmetic mean
    1+mu and standard deviation sigma.
    """
    mu = np.maximum(np.asarray(mu, dtype=float), -0.99)
    sigma = np.maximum(np.asarray(sigma, dtype=float), 0.0)
    s2 = np.log1p((sigma / (1 + mu)) ** 2)
    return np.log1p(mu) - 0.5 * s2, np.sqrt(s2)


class ReturnGenerator:
    """
    Turns per-scenario shock matrices into annual portfolio returns for one
    parameter set.

    Args:
        params: Normalized simulation parameters (return source, means, volatility,
            inflation and dollar mode are read from here).
        n_years: Number of simulated years (index 0 is the current age).
    """
    def __init__(self, params: SimulationParams, n_years: int):
        self.params = params
        self.n_years = n_years
        self.source = params.return_source
        self.distribution = return_distribution

        if isinstance(self.source, FixedReturn):
            self.mu = np.array([params.expected_return])
            self.sigma = np.array([params.return_volatility])
            self.chol = np.ones((1, 1))
        else:
            self.mu = asset_class_mu + params.return_adjustment
            self.sigma = asset_class_sigma * params.volatility_multiplier
            self.chol = np.linalg.cholesky(corr_matrix)

        self.n_assets = len(self.mu)
        self.weights = self._weights_by_year()

    # ----------------------------------------------------------------------
    # Allocation per year
    # ----------------------------------------------------------------------
    @staticmethod
    def _weight_vector(weights: Sequence[Tuple[str, float]]) -> NDArray[np.float64]:
        lookup = dict(weights)
        vec = np.array([float(lookup.get(name, 0.0)) for name in asset_classes])
        total = vec.sum()
        if total <= 0:
            raise ValueError("Allocation weights must sum to a positive value")
        return vec / total

    def _weights_by_year(self) -> NDArray[np.float64]:
        """[n_years, n_assets] allocation applied in each simulated year."""
        if isinstance(self.source, FixedReturn):
            return np.ones((self.n_years, 1))

        if isinstance(self.source, StaticAllocation):
            return np.tile(self._weight_vector(self.source.weights), (self.n_years, 1))

        if isinstance(self.source, GlidePath):
            steps = [(threshold, self._weight_vector(w)) for threshold, w in self.source.steps]
            rows = []
            for t in range(self.n_years):
                years_to_retirement = self.params.retirement_age - (self.params.current_age + t)
                chosen = steps[-1][1]
                for threshold, vec in steps:
                    if years_to_retirement >= threshold:
                        chosen = vec
                        break
                rows.append(chosen)
            return np.vstack(rows)

        raise TypeError(f"Unsupported return source: {self.source!r}")

    # ----------------------------------------------------------------------
    # Shock generation
    # ----------------------------------------------------------------------
    def _stratified_normals(self, rng: np.random.Generator, n: int) -> NDArray[np.float64]:
        """
        Latin hypercube normals of shape [n, n_years, n_assets]: every one of the
        leading years has exactly one draw per equal-probability stratum.
        """
        z = rng.standard_normal((n, self.n_years, self.n_assets))
        strat_years = min(lhs_years, self.n_years)
        for t in range(strat_years):
            for a in range(self.n_assets):
                u = (rng.permutation(n) + rng.random(n)) / n
                z[:, t, a] = norm.ppf(np.clip(u, 1e-12, 1 - 1e-12))
        return z

    def draw_batch(
        self,
        rng: np.random.Generator,
        n_scenarios: int,
        antithetic: bool = False,
        stratified: bool = False,
    ) -> List[ScenarioDraws]:
        """
        Draw shocks for n_scenarios. With antithetic pairing, scenario 2k+1 is
        the mirror image (negated shocks) of scenario 2k.
        """
        if n_scenarios <= 0:
            return []

        n_base = math.ceil(n_scenarios / 2) if antithetic else n_scenarios
        if stratified and n_base > 1:
            z = self._stratified_normals(rng, n_base)
        else:
            z = rng.standard_normal((n_base, self.n_years, self.n_assets))
        u = rng.random(n_base)
        care = rng.random((n_base, self.n_years, 4)) if self.params.ltc_model is not None else None

        base = [ScenarioDraws(z[i], float(u[i]), None if care is None else care[i])
                for i in range(n_base)]
        if not antithetic:
            return base

        draws: List[ScenarioDraws] = []
        for d in base:
            draws.append(d)
            if len(draws) < n_scenarios:
                draws.append(d.mirrored())
        return draws

    # ----------------------------------------------------------------------
    # Returns
    # ----------------------------------------------------------------------
    def asset_returns(self, shocks: NDArray[np.float64]) -> NDArray[np.float64]:
        """Nominal per-asset returns [n_years, n_assets] for one shock matrix."""
        correlated = shocks @ self.chol.T
        if self.distribution == "normal":
            return self.mu + self.sigma * correlated
        drift, diffusion = lognormal_params(self.mu, self.sigma)
        return np.expm1(drift + diffusion * correlated)

    def portfolio_returns(
        self,
        draws: ScenarioDraws,
        forced_return: Optional[Tuple[int, float]] = None,
    ) -> NDArray[np.float64]:
        """
        Annual portfolio returns in the scenario's dollar mode.

        Args:
            draws: The scenario's shocks.
            forced_return: Optional (year_index, nominal_return) override, used
                for a market crash timed at retirement.
        """
        nominal = np.sum(self.asset_returns(draws.shocks) * self.weights, axis=1)
        if forced_return is not None:
            year_index, value = forced_return
            if 0 <= year_index < self.n_years:
                nominal[year_index] = value

        if self.params.dollar_mode == DollarMode.REAL:
            return (1 + nominal) / (1 + self.params.general_inflation) - 1
        return nominal


def longevity_age(draws_u: float, base_expectancy: float, std_dev: float,
                  min_age: int, max_age: int) -> int:
    """Death age from a uniform draw on a normal longevity model, clamped."""
    u = min(max(draws_u, 1e-9), 1 - 1e-9)
    age = int(round(base_expectancy + std_dev * norm.ppf(u)))
    return int(min(max(age, min_age), max_age))
