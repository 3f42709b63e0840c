from bbdsim.simulation.bootstrap import (
    BlockBootstrapReturns, create_bootstrap_sampler, correlated_bootstrap,
    correlated_block_bootstrap, independent_bootstrap, optimal_block_length,
    portfolio_block_length
)
from bbdsim.simulation.regime import (
    RegimeParams, build_asset_regime_params, generate_regime_returns,
    get_transition_matrix, next_regime, simulate_regime_path,
    validate_transition_matrix
)
from bbdsim.simulation.regime_calibration import (
    calibrate_regime_model, calculate_portfolio_regime_params, classify_regimes,
    steady_state
)
from bbdsim.simulation.fat_tail import FatTailModel, generate_fat_tail_returns, student_t
from bbdsim.simulation.generators import (
    BlockBootstrapGenerator, BootstrapGenerator, FatTailGenerator, RegimeSwitchingGenerator,
    ReturnGenerator, create_return_generator, portfolio_returns
)
