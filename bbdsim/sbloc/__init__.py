from bbdsim.sbloc.engine import (
    BBDPathResult,
    SBLOCState,
    SBLOCYearResult,
    initialize_state,
    simulate_sbloc_path,
    step_year,
)
from bbdsim.sbloc.interest import accrue_interest, effective_annual_rate, project_loan_balance
from bbdsim.sbloc.liquidation import (
    LiquidationEvent,
    calculate_liquidation_amount,
    can_recover_from_margin_call,
    execute_forced_liquidation,
)
from bbdsim.sbloc.ltv import MarginBuffer, calculate_ltv, calculate_margin_buffer, effective_max_ltv
from bbdsim.sbloc.margin_call import LoanStatus, MarginCallEvent, classify_status, detect_margin_call
from bbdsim.sbloc.monthly import annual_to_monthly_return, step_year_monthly
