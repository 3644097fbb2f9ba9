# engine/aggregator.py
#
# Parallel Monte Carlo aggregation. Runs are split into near-equal chunks, each
# chunk is simulated in a worker process with its own seed derived from
# (base seed, chunk index), and the partial results are merged into a single
# AggregateResult.
#

import logging
import multiprocessing as mp
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config.engine_settings import (
    DEFAULT_PERCENTILES,
    DEFAULT_RUNS,
    LONGEVITY_CLAMP_AGE,
    MAX_WORKERS,
    MIN_WORKERS,
    POOL_IDLE_SECONDS,
)
from models import AggregateResult, DollarMode, PercentileBands, SimulationParams, percentile_summary
from engine.market_generator import make_rng, resolve_seed
from engine.simulator import ScenarioSimulator, ending_balances_by_age
from utils.input_adapter import normalize_params

logger = logging.getLogger(__name__)

MERGE_EXACT = "exact"
MERGE_MARKERS = "markers"


class SimulationDispatchError(RuntimeError):
    """A worker failed; no partial aggregate is returned."""


# =============================================================================
# Partitioning
# =============================================================================

def resolve_worker_count(requested: Optional[int] = None) -> int:
    """The requested count or the CPU count, capped and never below the minimum."""
    if requested is not None and requested > 0:
        return max(MIN_WORKERS, min(int(requested), MAX_WORKERS))
    return max(MIN_WORKERS, min(mp.cpu_count(), MAX_WORKERS))


def partition_runs(total_runs: int, n_chunks: int) -> List[int]:
    """Near-equal chunk sizes that sum to total_runs; the first chunks take the remainder."""
    if total_runs <= 0:
        raise ValueError(f"Run count must be positive, got {total_runs}")
    n_chunks = max(1, n_chunks)
    per, remainder = divmod(total_runs, n_chunks)
    return [per + (1 if i < remainder else 0) for i in range(n_chunks)]


def band_ages(params: SimulationParams, max_horizon_age: int) -> Tuple[int, ...]:
    """Ages reported in the percentile bands; empty when already past the clamp age."""
    last = min(LONGEVITY_CLAMP_AGE, max_horizon_age)
    return tuple(range(params.current_age, last + 1))


# =============================================================================
# Chunk worker (module level so it pickles)
# =============================================================================

@dataclass(frozen=True)
class ChunkTask:
    params: SimulationParams
    runs: int
    base_seed: int
    chunk_index: int
    count_legacy_goal: bool
    antithetic: bool = False
    stratified: bool = False
    ages: Optional[Tuple[int, ...]] = None


@dataclass
class PartialAggregate:
    chunk_index: int
    successes: int
    total: int
    ending_balances: np.ndarray
    ending_summary: Tuple[float, float, float]          # (p10, p50, p90) of this chunk
    balances_by_age: Optional[np.ndarray] = None        # [runs, ages], NaN past the horizon
    markers: Dict[int, np.ndarray] = field(default_factory=dict)
    counts: Optional[np.ndarray] = None


def _column_percentiles(matrix: np.ndarray, percentiles: Sequence[int]) -> Tuple[np.ndarray, np.ndarray]:
    """Per-column percentiles ignoring NaN; columns with no data get zeros and a count of 0."""
    counts = np.sum(~np.isnan(matrix), axis=0)
    values = np.zeros((len(percentiles), matrix.shape[1]))
    valid = counts > 0
    if valid.any():
        values[:, valid] = np.nanpercentile(matrix[:, valid], percentiles, axis=0)
    return values, counts


def run_chunk(task: ChunkTask) -> PartialAggregate:
    simulator = ScenarioSimulator(task.params, count_legacy_goal=task.count_legacy_goal)
    rng = make_rng(task.base_seed, task.chunk_index)
    draws = simulator.generator.draw_batch(rng, task.runs, task.antithetic, task.stratified)

    successes = 0
    endings = np.empty(len(draws))
    rows = []
    ages = np.asarray(task.ages) if task.ages is not None else None

    for i, d in enumerate(draws):
        outcome = simulator.run(d)
        successes += int(outcome.success)
        endings[i] = outcome.ending_balance
        if ages is not None:
            rows.append(ending_balances_by_age(outcome, ages))

    part = PartialAggregate(
        chunk_index=task.chunk_index,
        successes=successes,
        total=len(draws),
        ending_balances=endings,
        ending_summary=percentile_summary(endings),
    )
    if ages is not None:
        matrix = np.vstack(rows) if rows else np.empty((0, len(ages)))
        values, counts = _column_percentiles(matrix, DEFAULT_PERCENTILES)
        part.balances_by_age = matrix
        part.markers = {p: values[j] for j, p in enumerate(DEFAULT_PERCENTILES)}
        part.counts = counts
    return part


# =============================================================================
# Merging
# =============================================================================

def merge_ending_percentiles(parts: Sequence[PartialAggregate], merge: str = MERGE_EXACT) -> Tuple[float, float, float]:
    if merge == MERGE_EXACT:
        return percentile_summary(np.concatenate([p.ending_balances for p in parts]))

    # Count-weighted average of each chunk's scalar percentiles
    weights = np.array([p.total for p in parts], dtype=float)
    if weights.sum() <= 0:
        return 0.0, 0.0, 0.0
    summaries = np.array([p.ending_summary for p in parts])
    p10, p50, p90 = (weights @ summaries) / weights.sum()
    return float(p10), float(p50), float(p90)


def merge_per_year_percentiles(parts: Sequence[PartialAggregate], percentiles: Sequence[int] = DEFAULT_PERCENTILES) -> Tuple[np.ndarray, np.ndarray]:
    """
    Approximate merge from each chunk's five percentile markers: every chunk is
    expanded into `count` synthetic values placed at its markers, the synthetic
    samples are pooled per age and the percentiles re-read.
    """
    n_ages = len(parts[0].counts)
    values = np.zeros((len(percentiles), n_ages))
    counts = np.zeros(n_ages, dtype=int)
    p05, p25, p50, p75, p95 = DEFAULT_PERCENTILES

    for a in range(n_ages):
        pooled = []
        for part in parts:
            c = int(part.counts[a])
            if c == 0:
                continue
            pos = np.linspace(0, 100, c) if c > 1 else np.array([50.0])
            synthetic = np.select(
                [pos <= p05, pos <= p25, pos <= p50, pos <= p75],
                [part.markers[p05][a], part.markers[p25][a], part.markers[p50][a], part.markers[p75][a]],
                default=part.markers[p95][a],
            )
            pooled.append(synthetic)
        if pooled:
            sample = np.concatenate(pooled)
            values[:, a] = np.percentile(sample, percentiles)
            counts[a] = sample.size
    return values, counts


def merge_exact_bands(parts: Sequence[PartialAggregate], percentiles: Sequence[int] = DEFAULT_PERCENTILES) -> Tuple[np.ndarray, np.ndarray]:
    matrix = np.vstack([p.balances_by_age for p in parts])
    return _column_percentiles(matrix, percentiles)


def _ordered_bands(values: np.ndarray) -> np.ndarray:
    """Floor at zero and force p_low <= ... <= p_high in every column."""
    return np.maximum.accumulate(np.maximum(values, 0.0), axis=0)


def merge_partials(
    parts: Sequence[PartialAggregate],
    dollar_mode: DollarMode,
    ages: Optional[Tuple[int, ...]] = None,
    merge: str = MERGE_EXACT,
) -> AggregateResult:
    if merge not in (MERGE_EXACT, MERGE_MARKERS):
        raise ValueError(f"Unknown merge mode: {merge!r}")

    successes = sum(p.successes for p in parts)
    total = sum(p.total for p in parts)
    p10, p50, p90 = merge_ending_percentiles(parts, merge)

    bands = None
    if ages is not None:
        if merge == MERGE_EXACT:
            values, _ = merge_exact_bands(parts)
        else:
            values, _ = merge_per_year_percentiles(parts)
        values = _ordered_bands(values)
        bands = PercentileBands(
            ages=tuple(int(a) for a in ages),
            percentiles=tuple(DEFAULT_PERCENTILES),
            values=tuple(tuple(float(v) for v in row) for row in values),
            dollar_mode=dollar_mode,
            runs=total,
        )

    return AggregateResult(
        success_probability=successes / total if total else 0.0,
        successes=successes,
        total_runs=total,
        ending_balance_p10=p10,
        ending_balance_median=p50,
        ending_balance_p90=p90,
        dollar_mode=dollar_mode,
        bands=bands,
    )


# =============================================================================
# Worker pool
# =============================================================================

class WorkerPool:
    """
    Bounded multiprocessing pool created on first use and closed after it has
    been idle for `idle_seconds`. A worker exception terminates the pool and
    is re-raised as SimulationDispatchError.
    """
    def __init__(self, processes: int, idle_seconds: float = POOL_IDLE_SECONDS):
        self.processes = processes
        self.idle_seconds = idle_seconds
        self._pool = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_recycle(self) -> None:
        if self.idle_seconds <= 0:
            return
        self._timer = threading.Timer(self.idle_seconds, self._recycle)
        self._timer.daemon = True
        self._timer.start()

    def _recycle(self) -> None:
        with self._lock:
            if self._pool is not None:
                logger.debug("Recycling idle worker pool (%d processes)", self.processes)
                self._pool.close()
                self._pool.join()
                self._pool = None
            self._timer = None

    @property
    def is_running(self) -> bool:
        return self._pool is not None

    def map(self, fn: Callable, tasks: Sequence) -> list:
        with self._lock:
            self._cancel_timer()
            if self._pool is None:
                self._pool = mp.Pool(self.processes)
            try:
                return self._pool.map(fn, tasks)
            except Exception as exc:
                self._pool.terminate()
                self._pool.join()
                self._pool = None
                raise SimulationDispatchError(f"Simulation worker failed: {exc}") from exc
            finally:
                if self._pool is not None:
                    self._schedule_recycle()

    def close(self) -> None:
        with self._lock:
            self._cancel_timer()
            if self._pool is not None:
                self._pool.close()
                self._pool.join()
                self._pool = None


class MonteCarloAggregator:
    """
    Owns the worker pool and runs aggregate simulations on it.

    Args:
        workers: Worker (and chunk) count; defaults to min(CPU count, cap).
        use_processes: When False chunks run in the calling process. Results
            are identical either way for the same worker count and seed.
        idle_seconds: Idle time before the pool is closed.
    """
    def __init__(self, workers: Optional[int] = None, use_processes: bool = True,
                 idle_seconds: float = POOL_IDLE_SECONDS, chunk_fn: Callable = run_chunk):
        self.workers = resolve_worker_count(workers)
        self.use_processes = use_processes
        self.chunk_fn = chunk_fn
        self.pool = WorkerPool(self.workers, idle_seconds) if use_processes else None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        if self.pool is not None:
            self.pool.close()

    def _dispatch(self, tasks: List[ChunkTask]) -> List[PartialAggregate]:
        if self.pool is not None:
            return self.pool.map(self.chunk_fn, tasks)
        try:
            return [self.chunk_fn(task) for task in tasks]
        except Exception as exc:
            raise SimulationDispatchError(f"Simulation worker failed: {exc}") from exc

    def run(
        self,
        params: SimulationParams,
        runs: int = DEFAULT_RUNS,
        *,
        count_legacy_goal: bool,
        seed=None,
        with_bands: bool = False,
        merge: str = MERGE_EXACT,
        antithetic: bool = False,
        stratified: bool = False,
    ) -> AggregateResult:
        params = normalize_params(params)
        base_seed = resolve_seed(seed)
        sizes = partition_runs(runs, self.workers)

        ages = None
        if with_bands:
            horizon = ScenarioSimulator(params, count_legacy_goal=count_legacy_goal).max_horizon_age
            ages = band_ages(params, horizon)

        tasks = [
            ChunkTask(params, size, base_seed, i, count_legacy_goal, antithetic, stratified, ages)
            for i, size in enumerate(sizes) if size > 0
        ]

        logger.info("Starting Monte Carlo: %d runs in %d chunks (seed %d)", runs, len(tasks), base_seed)
        started = time.perf_counter()
        parts = self._dispatch(tasks)
        result = merge_partials(parts, params.dollar_mode, ages, merge)
        logger.info(
            "Monte Carlo finished in %.2fs: success probability %.1f%%",
            time.perf_counter() - started, result.success_probability * 100,
        )
        return result


def run_monte_carlo(
    params: SimulationParams,
    runs: int = DEFAULT_RUNS,
    *,
    count_legacy_goal: bool,
    seed=None,
    aggregator: Optional[MonteCarloAggregator] = None,
    **options,
) -> AggregateResult:
    """
    Aggregate `runs` scenarios. Uses the given aggregator (and its pool) or a
    per-call one that is closed before returning.
    """
    if aggregator is not None:
        return aggregator.run(params, runs, count_legacy_goal=count_legacy_goal, seed=seed, **options)
    with MonteCarloAggregator() as owned:
        return owned.run(params, runs, count_legacy_goal=count_legacy_goal, seed=seed, **options)


def run_percentile_bands(
    params: SimulationParams,
    runs: int = DEFAULT_RUNS,
    *,
    count_legacy_goal: bool,
    seed=None,
    aggregator: Optional[MonteCarloAggregator] = None,
    merge: str = MERGE_EXACT,
) -> PercentileBands:
    result = run_monte_carlo(
        params, runs, count_legacy_goal=count_legacy_goal, seed=seed,
        aggregator=aggregator, with_bands=True, merge=merge,
    )
    return result.bands
