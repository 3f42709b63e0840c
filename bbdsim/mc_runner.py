import numpy as np
from dataclasses import dataclass, replace
from joblib import Parallel, delayed
from tqdm import tqdm
from typing import Callable, List, Optional
from bbdsim import config as cfg
from bbdsim.config import Portfolio, SimulationConfig, print_banner
from bbdsim.errors import SimulationCancelled
from bbdsim.sbloc.engine import BBDPathResult, simulate_sbloc_path
from bbdsim.sell_strategy import SellPathResult, simulate_sell_path
from bbdsim.simulation.generators import ReturnGenerator, create_return_generator, portfolio_returns


@dataclass
class IterationResult:
    iteration: int
    portfolio_returns: np.ndarray
    bbd: BBDPathResult
    sell: SellPathResult


def iteration_rng(seed: int, iteration: int) -> np.random.Generator:
    """Independent, reproducible stream for one iteration."""
    return np.random.default_rng([seed, iteration])


def simulate_iteration(iteration: int, generator: ReturnGenerator, portfolio: Portfolio,
                       config: SimulationConfig) -> IterationResult:
    """
    One Monte Carlo iteration.

    Draws a single correlated return path and feeds the same portfolio
    returns to the borrow engine and the sell engine.
    """
    rng = iteration_rng(config.seed, iteration)
    asset_returns = generator.generate(config.time_horizon, portfolio, rng)
    returns = portfolio_returns(asset_returns, portfolio.weights)

    bbd = simulate_sbloc_path(returns, config)
    sell = simulate_sell_path(returns, config)
    return IterationResult(iteration=iteration, portfolio_returns=returns, bbd=bbd, sell=sell)


def run_batch(start: int, stop: int, generator: ReturnGenerator, portfolio: Portfolio,
              config: SimulationConfig) -> List[IterationResult]:
    return [simulate_iteration(i, generator, portfolio, config) for i in range(start, stop)]


def _batch_bounds(iterations: int, batch_size: int):
    batch_size = max(1, int(batch_size))
    return [(start, min(start + batch_size, iterations)) for start in range(0, iterations, batch_size)]


def run_monte_carlo(portfolio: Portfolio, config: SimulationConfig,
                    progress_callback: Optional[Callable[[float], None]] = None,
                    cancel_event=None, n_jobs: Optional[int] = None,
                    verbose: bool = True):
    """
    Run every iteration of both strategies and aggregate the results.

    Iterations are dispatched in batches of config.batch_size to loky worker
    processes. Batches may finish in any order; results are merged into a
    list and only sorted during aggregation.

    Args:
        portfolio: Assets, weights and history
        config: Resolved simulation configuration
        progress_callback: Called with percent complete (0-100) after each batch
        cancel_event: Object with is_set() (e.g. threading.Event), checked between batches
        n_jobs: Worker processes (defaults to N_WORKERS); 1 runs in-process
        verbose: Print banner and progress bar

    Returns:
        SimulationOutput

    Raises:
        ConfigurationError: invalid inputs (before any iteration runs)
        SimulationCancelled: cancel_event was set
        AllIterationsNonFiniteError: no iteration produced a finite result
    """
    from bbdsim.aggregation import aggregate_results
    from bbdsim.validation import validate_run_inputs

    validate_run_inputs(portfolio, config)
    if cancel_event is not None and cancel_event.is_set():
        raise SimulationCancelled(0, config.iterations)

    seed_generated = config.seed is None
    if seed_generated:
        config = replace(config, seed=int(np.random.SeedSequence().entropy))

    if n_jobs is None:
        n_jobs = cfg.N_WORKERS

    if verbose:
        print_banner(config, portfolio)

    generator = create_return_generator(config, portfolio, verbose=verbose)
    batches = _batch_bounds(config.iterations, config.batch_size)

    if verbose:
        print(f"  Return model: {generator.name}")
        print(f"  Dispatching {len(batches)} batches of up to {config.batch_size:,} iterations "
              f"on {n_jobs} worker(s)\n")

    if n_jobs == 1:
        batch_results = (run_batch(start, stop, generator, portfolio, config) for start, stop in batches)
    else:
        batch_results = Parallel(n_jobs=n_jobs, backend='loky', return_as='generator_unordered')(
            delayed(run_batch)(start, stop, generator, portfolio, config) for start, stop in batches
        )

    results: List[IterationResult] = []
    progress = tqdm(total=config.iterations, desc=f"{config.time_horizon}Y MC", unit="sim",
                    disable=not verbose)
    try:
        for batch in batch_results:
            results.extend(batch)
            progress.update(len(batch))
            if progress_callback is not None:
                progress_callback(100.0 * len(results) / config.iterations)
            if cancel_event is not None and cancel_event.is_set() and len(results) < config.iterations:
                raise SimulationCancelled(len(results), config.iterations)
    finally:
        progress.close()

    if verbose:
        print(f"\n  [OK] {len(results):,} iterations complete")

    return aggregate_results(results, portfolio, config, generator, seed_generated=seed_generated)
