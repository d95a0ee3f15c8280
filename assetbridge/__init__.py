"""
assetbridge - Collateral-backed peer-to-peer lending core

Borrowers lock assets as collateral to obtain a credit line, apply for
loans against it, investors fund listed loans, and repayments or default
recoveries flow back to investors. Every operation is a PendingTransaction
applied atomically by a LedgerStore.

Usage:
    from assetbridge import Ledger, LendingService, LendingPolicy

    ledger = Ledger("assetbridge", datetime(2025, 1, 1), verbose=False)
    service = LendingService(ledger, LendingPolicy())

    service.deposit("bob", Decimal("150000"))
    asset_id = service.declare_asset("alice", "FD", Decimal("200000"))
    service.lock_asset(asset_id, "alice")             # credit limit 180000

    app = service.apply_loan("alice", Decimal("100000"), 12, "Education")
    service.admin_approve(app.loan_id, "admin")       # if UNDER_REVIEW
    service.invest(app.loan_id, "bob")                # funds and disburses
    service.repay(app.loan_id, "alice", Decimal("8884.88"))
"""

__version__ = "0.1.0"

# Core types
from .core import (
    LedgerView,
    LedgerStore,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    Unit,
    UnitStateChange,
    ExecuteResult,
    build_transaction,
    empty_pending_transaction,
    cash,
    SYSTEM_WALLET,
    ESCROW_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_ASSET,
    UNIT_TYPE_LOCKED_ASSET,
    UNIT_TYPE_LOAN,
    UNIT_TYPE_INVESTMENT,
    UNIT_TYPE_REPAYMENT,
)

# Errors
from .core import (
    LedgerError,
    ValidationError,
    StateError,
    ResourceError,
    ConcurrencyError,
    NotFoundError,
    OwnershipError,
    InvariantViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    ExceedsOutstanding,
    ExceedsRemainingFunding,
    IllegalStateTransition,
    AssetAlreadyLocked,
    AssetNotLocked,
    LoanNotFundable,
    LoanNotActive,
    LoanNotSettled,
    FundingIncomplete,
    InsufficientCreditLimit,
    InsufficientBalance,
    CreditInUse,
    LockTimeout,
    StaleState,
    AssetNotFound,
    LoanNotFound,
    InvestmentNotFound,
    InvalidOwner,
    NotAuthorized,
)

# Store
from .ledger import Ledger

# Configuration
from .policy import AssetType, LendingPolicy, DEFAULT_LTV_RATIOS

# Calculations
from .amortization import (
    EmiQuote,
    ScheduleRow,
    calculate_emi,
    amortization_schedule,
    emi_grid,
)
from .recovery import calculate_collateral_value, calculate_recovery, compute_default

# Entities
from .units import LoanStatus, RiskBand, AiDecision

# Collaborators
from .risk import (
    BorrowerProfile,
    RiskRequest,
    RiskAssessment,
    RiskAssessor,
    ScorecardRiskAssessor,
    StaticRiskAssessor,
)
from .auth import Role, Authorizer, RoleAuthorizer
from .locks import LockManager

# Consistency guard
from .guard import check_invariants, assert_invariants, money_snapshot, verify_conservation

# Service and lifecycle
from .service import (
    LendingService,
    LockResult,
    ApplicationResult,
    InvestmentResult,
    RepaymentResult,
    DefaultResolution,
    FundingOpportunity,
    Portfolio,
)
from .lifecycle import LifecycleEngine, loan_contract
