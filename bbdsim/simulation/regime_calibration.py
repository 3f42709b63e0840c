import numpy as np
from typing import Dict, List, Optional, Sequence
from bbdsim import config as cfg
from bbdsim.errors import InsufficientDataError
from bbdsim.simulation.regime import normalize_transition_matrix

# Parameter sets are {regime: {'mean': float, 'stddev': float}}
MAX_REASONABLE_STDDEV = 0.80
MIN_BULL_BEAR_SPREAD = 0.05


def classify_regimes(returns) -> np.ndarray:
    """
    Label each historical year with a regime.

    Percentile thresholds over the series: below p10 is a crash, below p30
    a bear year, at or above p85 a bull year. Between p30 and p85 a year is
    recovery when it clears p70 or is a non-negative year right after a
    crash/bear year; otherwise bull.

    Args:
        returns: Annual returns, oldest first

    Returns:
        Integer regime label per year
    """
    returns = np.asarray(returns, dtype=float)
    returns = returns[np.isfinite(returns)]
    if len(returns) < cfg.MIN_OBSERVATIONS_FOR_CALIBRATION:
        raise InsufficientDataError(
            f"Regime classification needs at least {cfg.MIN_OBSERVATIONS_FOR_CALIBRATION} "
            f"observations, got {len(returns)}",
            field='historical_returns'
        )

    crash_threshold, bear_threshold, recovery_threshold, bull_threshold = np.percentile(
        returns, [10, 30, 70, 85]
    )

    labels = np.zeros(len(returns), dtype=int)
    previous_was_negative = False
    for i, r in enumerate(returns):
        if r < crash_threshold:
            labels[i] = cfg.CRASH
            previous_was_negative = True
        elif r < bear_threshold:
            labels[i] = cfg.BEAR
            previous_was_negative = True
        elif r >= bull_threshold:
            labels[i] = cfg.BULL
            previous_was_negative = False
        elif r >= recovery_threshold or (r >= 0 and previous_was_negative):
            labels[i] = cfg.RECOVERY
            previous_was_negative = False
        else:
            labels[i] = cfg.BULL
            previous_was_negative = False
    return labels


def estimate_regime_params(returns, labels) -> Dict[int, Dict[str, float]]:
    """Per-regime mean and sample stddev; sparse regimes fall back to DEFAULT_REGIME_PARAMS."""
    returns = np.asarray(returns, dtype=float)
    returns = returns[np.isfinite(returns)]
    labels = np.asarray(labels, dtype=int)
    params = {}
    for regime in range(cfg.N_REGIMES):
        values = returns[labels == regime]
        if len(values) >= 2:
            params[regime] = {'mean': float(np.mean(values)), 'stddev': float(np.std(values, ddof=1))}
        else:
            params[regime] = dict(cfg.DEFAULT_REGIME_PARAMS[regime])
    return params


def apply_conservative_adjustment(params: Dict[int, Dict[str, float]]) -> Dict[int, Dict[str, float]]:
    """Haircut means and widen volatilities for stress testing."""
    return {
        cfg.BULL: {
            'mean': params[cfg.BULL]['mean'] - max(0.01, params[cfg.BULL]['stddev']),
            'stddev': params[cfg.BULL]['stddev'] * 1.15,
        },
        cfg.BEAR: {
            'mean': params[cfg.BEAR]['mean'] - 0.02,
            'stddev': params[cfg.BEAR]['stddev'] * 1.20,
        },
        cfg.CRASH: {
            'mean': params[cfg.CRASH]['mean'] - 0.03,
            'stddev': params[cfg.CRASH]['stddev'] * 1.25,
        },
        cfg.RECOVERY: {
            'mean': params[cfg.RECOVERY]['mean'] - 0.02,
            'stddev': params[cfg.RECOVERY]['stddev'] * 1.20,
        },
    }


def validate_regime_params(params: Dict[int, Dict[str, float]]) -> Dict:
    """
    Sanity-check calibrated regime parameters.

    Errors make the parameter set unusable; warnings are reported only.

    Returns:
        Dict with 'is_valid', 'errors' and 'warnings' (lists of messages)
    """
    bull, bear, crash = params[cfg.BULL], params[cfg.BEAR], params[cfg.CRASH]
    errors: List[str] = []
    warnings: List[str] = []

    if bull['mean'] < 0:
        errors.append(f"Bull mean is negative ({bull['mean']*100:.1f}%)")
    if bull['mean'] <= bear['mean']:
        errors.append(f"Bull mean ({bull['mean']*100:.1f}%) <= bear mean ({bear['mean']*100:.1f}%)")
    if bear['mean'] <= crash['mean']:
        warnings.append(f"Bear mean ({bear['mean']*100:.1f}%) <= crash mean ({crash['mean']*100:.1f}%)")
    if bull['stddev'] > MAX_REASONABLE_STDDEV:
        errors.append(f"Bull stddev is extreme ({bull['stddev']*100:.1f}% > 80%)")
    if bear['stddev'] > MAX_REASONABLE_STDDEV:
        warnings.append(f"Bear stddev is extreme ({bear['stddev']*100:.1f}% > 80%)")
    spread = bull['mean'] - bear['mean']
    if spread < MIN_BULL_BEAR_SPREAD:
        warnings.append(f"Bull/bear spread is only {spread*100:.1f}%")

    return {'is_valid': not errors, 'errors': errors, 'warnings': warnings}


def estimate_transition_matrix(labels, fallback: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Count year-to-year regime transitions and row-normalize.

    Regimes never left in history take their row from `fallback`
    (the historical-mode matrix by default).
    """
    if fallback is None:
        fallback = cfg.REGIME_CONFIG['historical']['transition_matrix']
    labels = np.asarray(labels, dtype=int)

    transitions = np.zeros((cfg.N_REGIMES, cfg.N_REGIMES))
    for i in range(len(labels) - 1):
        transitions[labels[i], labels[i + 1]] += 1

    for i in range(cfg.N_REGIMES):
        if transitions[i].sum() == 0:
            transitions[i] = fallback[i]
    return normalize_transition_matrix(transitions)


def steady_state(matrix) -> np.ndarray:
    """Stationary distribution: eigenvector of matrix.T for eigenvalue 1."""
    eigenvalues, eigenvectors = np.linalg.eig(np.asarray(matrix, dtype=float).T)
    idx = np.argmin(np.abs(eigenvalues - 1.0))
    state = np.real(eigenvectors[:, idx])
    return state / state.sum()


def calibrate_asset_regimes(returns, mode: str = 'historical') -> Dict:
    """
    Classify, estimate, adjust and validate one asset.

    Falls back to DEFAULT_REGIME_PARAMS (conservatively adjusted in
    conservative mode) when history is too short or the estimate fails
    validation.
    """
    try:
        labels = classify_regimes(returns)
    except InsufficientDataError as e:
        params = dict(cfg.DEFAULT_REGIME_PARAMS)
        if mode == 'conservative':
            params = apply_conservative_adjustment(params)
        return {'params': params, 'labels': None, 'used_fallback': True,
                'issues': [str(e)], 'warnings': []}

    params = estimate_regime_params(returns, labels)
    if mode == 'conservative':
        params = apply_conservative_adjustment(params)

    validation = validate_regime_params(params)
    if not validation['is_valid']:
        params = dict(cfg.DEFAULT_REGIME_PARAMS)
        if mode == 'conservative':
            params = apply_conservative_adjustment(params)
        return {'params': params, 'labels': labels, 'used_fallback': True,
                'issues': validation['errors'], 'warnings': validation['warnings']}

    return {'params': params, 'labels': labels, 'used_fallback': False,
            'issues': [], 'warnings': validation['warnings']}


def calibrate_regime_model(history, mode: str = 'historical',
                           asset_ids: Optional[Sequence[str]] = None,
                           verbose: bool = True) -> Dict:
    """
    Fit per-asset regime parameters from annual return history.

    The transition matrix is estimated from the regime labels of the first
    asset that could be classified (regimes are shared across assets at
    simulation time); in conservative mode the configured stress matrix
    is used instead.

    Args:
        history: Per-asset returns, shape (n_assets, n_periods)
        mode: 'historical' or 'conservative'
        asset_ids: Labels for the printed table
        verbose: Print the calibration table

    Returns:
        Dict with 'regime_params' ({asset_index: {regime: {...}}}),
        'transition_matrix', 'steady_state', 'used_fallback', 'issues'
    """
    history = np.atleast_2d(np.asarray(history, dtype=float))
    n_assets = history.shape[0]
    if asset_ids is None:
        asset_ids = [f"asset_{i}" for i in range(n_assets)]

    if verbose:
        print(f"\n{'='*80}")
        print(f"CALIBRATING REGIME MODEL ({mode.upper()})")
        print(f"{'='*80}\n")

    regime_params = {}
    used_fallback = {}
    issues = {}
    labels_for_matrix = None

    for i in range(n_assets):
        result = calibrate_asset_regimes(history[i], mode)
        regime_params[i] = result['params']
        used_fallback[asset_ids[i]] = result['used_fallback']
        issues[asset_ids[i]] = result['issues'] + result['warnings']
        if labels_for_matrix is None and result['labels'] is not None:
            labels_for_matrix = result['labels']

    if mode == 'conservative' or labels_for_matrix is None:
        transition_matrix = np.array(cfg.REGIME_CONFIG[mode]['transition_matrix'], dtype=float)
    else:
        transition_matrix = estimate_transition_matrix(labels_for_matrix)

    stationary = steady_state(transition_matrix)

    if verbose:
        for i in range(n_assets):
            status = "[WARN] defaults" if used_fallback[asset_ids[i]] else "[OK]"
            print(f"  {asset_ids[i]:<12s} {status}")
            for regime in range(cfg.N_REGIMES):
                p = regime_params[i][regime]
                print(f"    {cfg.REGIME_NAMES[regime]:10s} mean {p['mean']*100:+6.2f}%   "
                      f"stddev {p['stddev']*100:5.2f}%")
            for message in issues[asset_ids[i]]:
                print(f"    [WARN] {message}")

        print(f"\nTransition Matrix:")
        print("            " + "".join(f"{cfg.REGIME_NAMES[j]:>10s}" for j in range(cfg.N_REGIMES)))
        for i in range(cfg.N_REGIMES):
            row_str = f"{cfg.REGIME_NAMES[i]:10s}  "
            for j in range(cfg.N_REGIMES):
                row_str += f"{transition_matrix[i, j]:10.3f}"
            print(row_str)
        print("\n  Steady state: " + ", ".join(
            f"{cfg.REGIME_NAMES[i]} {stationary[i]*100:.1f}%" for i in range(cfg.N_REGIMES)
        ))

    return {
        'regime_params': regime_params,
        'transition_matrix': transition_matrix,
        'steady_state': stationary,
        'used_fallback': used_fallback,
        'issues': issues,
    }


def calculate_portfolio_regime_params(asset_params: Sequence[Dict[int, Dict[str, float]]],
                                      weights, correlation) -> Dict[int, Dict[str, float]]:
    """Portfolio-level regime moments: weighted mean, variance w' diag(s) C diag(s) w."""
    weights = np.asarray(weights, dtype=float)
    correlation = np.asarray(correlation, dtype=float)
    result = {}
    for regime in range(cfg.N_REGIMES):
        means = np.array([p[regime]['mean'] for p in asset_params])
        stds = np.array([p[regime]['stddev'] for p in asset_params])
        scaled = weights * stds
        variance = float(scaled @ correlation @ scaled)
        result[regime] = {
            'mean': float(weights @ means),
            'stddev': float(np.sqrt(max(0.0, variance))),
        }
    return result
