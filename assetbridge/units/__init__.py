"""
Units module - Lending entities stored as ledger units.

Each entity (asset, locked asset, loan, investment, repayment) is a Unit
whose state dict is the record, guarded by a state rule. This module
re-exports the factories and compute_* functions for convenience.
"""

# Assets and collateral
from .asset import (
    CreditSummary,
    create_asset_unit,
    compute_declare_asset,
    compute_lock,
    compute_unlock,
    calculate_credit_limit,
    get_available_credit,
    get_credit_summary,
    load_asset,
    load_locked_asset,
    user_assets,
    user_locked_assets,
)

# Loans
from .loan import (
    LoanStatus,
    RiskBand,
    AiDecision,
    TRANSITIONS,
    TERMINAL_STATUSES,
    can_transition,
    transition,
    create_loan_unit,
    compute_application,
    compute_approval,
    compute_rejection,
    compute_activation,
    load_loan,
    list_loans,
    outstanding_balance,
)

# Investments
from .investment import (
    allocate_pro_rata,
    create_investment_unit,
    compute_investment,
    load_investment,
    investor_investments,
)

# Repayments
from .repayment import (
    installment_id,
    prepayment_id,
    compute_installment_due,
    compute_repayment,
    compute_closure,
    load_repayment,
    loan_repayments,
)
