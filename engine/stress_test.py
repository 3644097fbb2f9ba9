# engine/stress_test.py

import logging
from typing import List, Optional, Sequence

from config.engine_settings import DEFAULT_RUNS
from models import (
    AggregateResult,
    SimulationParams,
    StressScenario,
    StressTestResponse,
    StressTestResult,
)
from engine.aggregator import MonteCarloAggregator
from engine.market_generator import resolve_seed
from engine.stress_scenarios import DEFAULT_STRESS_SCENARIOS, apply_shock, apply_stress_scenarios
from utils.input_adapter import normalize_params

logger = logging.getLogger(__name__)

COMBINED_ID = "combined"


def _impact_points(stressed: AggregateResult, baseline: AggregateResult) -> float:
    """Change in success probability, in percentage points."""
    return (stressed.success_probability - baseline.success_probability) * 100


def _describe(name: str, impact: float) -> str:
    if abs(impact) < 0.05:
        return f"{name} leaves the success probability unchanged."
    direction = "lowers" if impact < 0 else "raises"
    return f"{name} {direction} the success probability by {abs(impact):.1f} percentage points."


def run_stress_tests(
    params: SimulationParams,
    scenarios: Sequence[StressScenario] = DEFAULT_STRESS_SCENARIOS,
    runs: int = DEFAULT_RUNS,
    *,
    count_legacy_goal: bool,
    run_combined: bool = True,
    seed=None,
    aggregator: Optional[MonteCarloAggregator] = None,
    **options,
) -> StressTestResponse:
    """
    Run the baseline plus every enabled stress scenario with the same seed, and
    optionally all enabled scenarios applied together.

    Args:
        params: Baseline parameters (not modified).
        scenarios: Scenario catalogue; disabled entries are skipped.
        runs: Monte Carlo runs per evaluation.
        count_legacy_goal: Whether the legacy goal is part of success.
        run_combined: Also evaluate the combination when more than one
            scenario is enabled.
        aggregator: Shared aggregator; a per-call one is used when omitted.
        options: Passed to MonteCarloAggregator.run (merge mode, variance reduction).

    Returns:
        StressTestResponse with the baseline result, one result per enabled
        scenario and the combined result when requested.
    """
    base = normalize_params(params)
    base_seed = resolve_seed(seed)
    enabled = [s for s in scenarios if s.enabled]

    owned = aggregator is None
    runner = aggregator or MonteCarloAggregator()
    try:
        def _evaluate(p: SimulationParams) -> AggregateResult:
            return runner.run(p, runs, count_legacy_goal=count_legacy_goal, seed=base_seed, **options)

        logger.info("Stress test: baseline plus %d scenario(s), %d runs each", len(enabled), runs)
        baseline = _evaluate(base)

        individual: List[StressTestResult] = []
        for scenario in enabled:
            stressed = _evaluate(apply_shock(base, scenario.id, scenario.magnitude))
            impact = _impact_points(stressed, baseline)
            logger.info("Stress scenario %s: %.1f%% (%+.1f pts)", scenario.id,
                        stressed.success_probability * 100, impact)
            individual.append(StressTestResult(
                scenario_id=scenario.id,
                scenario_name=scenario.name,
                result=stressed,
                impact_points=impact,
                description=_describe(scenario.name, impact),
            ))

        combined = None
        if run_combined and len(enabled) > 1:
            stressed = _evaluate(apply_stress_scenarios(base, enabled))
            impact = _impact_points(stressed, baseline)
            combined = StressTestResult(
                scenario_id=COMBINED_ID,
                scenario_name="Combined Scenarios",
                result=stressed,
                impact_points=impact,
                description=_describe("Applying all selected scenarios together", impact),
            )
    finally:
        if owned:
            runner.close()

    return StressTestResponse(
        baseline=baseline,
        individual_results=tuple(individual),
        combined_result=combined,
        runs=runs,
    )
