# engine/__init__.py

# Single-scenario simulation and its building blocks
from .tax_engine import calculate_taxes
from .simulator import ScenarioSimulator, simulate_scenario

# Aggregate runs and stress testing
from .aggregator import MonteCarloAggregator, SimulationDispatchError, run_monte_carlo, run_percentile_bands
from .stress_scenarios import DEFAULT_STRESS_SCENARIOS, apply_shock, apply_stress_scenarios
from .stress_test import run_stress_tests
