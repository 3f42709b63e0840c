"""
BBD Monte Carlo - Buy-Borrow-Die vs sell-assets simulator

Entry point: bbdsim.run(portfolio, config)
"""

import time
from bbdsim import config as cfg


def _fmt_elapsed(seconds):
    """Format elapsed seconds as human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    m, s = divmod(seconds, 60)
    return f"{int(m)}m {s:.1f}s"


def run(portfolio, config=None, self_checks=True, n_jobs=None,
        progress_callback=None, cancel_event=None, verbose=True):
    """
    Complete analysis: self-checks, Monte Carlo for both strategies, summary tables.

    Args:
        portfolio: bbdsim.config.Portfolio with weights and return history
        config: SimulationConfig (defaults to get_simulation_config())
        self_checks: Run the statistical validation suite first
        n_jobs: Worker processes (defaults to N_WORKERS)
        progress_callback: Called with percent complete after each batch
        cancel_event: threading.Event-like cancellation flag
        verbose: Print progress, tables and timing

    Returns:
        SimulationOutput, or None if a self-check failed
    """
    run_start = time.time()
    step_times = []

    def _step(label):
        """Print step timing and record it."""
        now = time.time()
        if step_times and verbose:
            prev_label, prev_start = step_times[-1]
            print(f"  [{_fmt_elapsed(now - prev_start)}] {prev_label}")
        step_times.append((label, now))

    # Lazy imports to avoid circular deps and heavy import-time cost
    from bbdsim.mc_runner import run_monte_carlo
    from bbdsim.reporting import print_summary
    from bbdsim.validation import run_validation_tests

    if config is None:
        config = cfg.get_simulation_config()

    # ========================================================================
    # STEP 0: Statistical self-checks
    # ========================================================================
    if self_checks:
        _step("Validation tests")
        if verbose:
            print("\n### RUNNING VALIDATION TESTS ###")
        checks = run_validation_tests(verbose=verbose)
        if not checks['all_passed']:
            if verbose:
                print("\nVALIDATION FAILED - STOPPING")
            return None

    # ========================================================================
    # STEP 1: Monte Carlo simulation
    # ========================================================================
    _step(f"MC simulation {config.time_horizon}Y")
    output = run_monte_carlo(
        portfolio, config,
        progress_callback=progress_callback,
        cancel_event=cancel_event,
        n_jobs=n_jobs,
        verbose=verbose,
    )

    # ========================================================================
    # STEP 2: Summary
    # ========================================================================
    _step("Summary tables")
    if verbose:
        print_summary(output)

    _step("done")

    if verbose:
        total_elapsed = time.time() - run_start
        print("\n" + "=" * 80)
        print("TIMING SUMMARY")
        print("=" * 80)
        for i in range(len(step_times) - 1):
            label, start = step_times[i]
            _, end = step_times[i + 1]
            elapsed = end - start
            pct = (elapsed / total_elapsed) * 100 if total_elapsed > 0 else 0
            print(f"  {label:<40s} {_fmt_elapsed(elapsed):>8s}  ({pct:5.1f}%)")
        print(f"  {'':->56s}")
        print(f"  {'TOTAL':<40s} {_fmt_elapsed(total_elapsed):>8s}")
        print("\n" + "=" * 80)
        print("ANALYSIS COMPLETE")
        print("=" * 80)

    return output
