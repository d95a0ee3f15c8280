"""
Core types and pure functions for the AssetBridge lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only access, LedgerStore for persistence
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the lending error taxonomy
4. Type aliases: Positions, UnitState, StateRule
5. Unit factories: cash currencies

Every entity of the lending domain (asset, locked asset, loan, investment,
repayment) is a Unit whose state dict is the record. Cash is the only unit
that is ever held in wallets. All functions in this module are pure.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Money arithmetic must be deterministic. The global context is configured
# once at import; code needing a different context uses decimal.localcontext().
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# The external world: deposits, withdrawals and liquidation proceeds.
# Exempt from balance validation.
SYSTEM_WALLET = "system"

# Platform escrow. Holds investor funds between debit and disbursement.
ESCROW_WALLET = "escrow"

UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_ASSET = "ASSET"
UNIT_TYPE_LOCKED_ASSET = "LOCKED_ASSET"
UNIT_TYPE_LOAN = "LOAN"
UNIT_TYPE_INVESTMENT = "INVESTMENT"
UNIT_TYPE_REPAYMENT = "REPAYMENT"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

CASH_DECIMAL_PLACES = 2
CASH_QUANTUM = Decimal("0.01")
ZERO = Decimal("0")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Entity record stored on a unit.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Every compute_* function takes a LedgerView and returns a
    PendingTransaction. Functions accepting a LedgerView declare that they
    never mutate state. FakeView in the test suite is a truly immutable
    implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def list_units(self, unit_type: Optional[str] = None) -> List[str]:
        """Return registered unit symbols, optionally filtered by type."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...

    def has_unit(self, symbol: str) -> bool:
        """Return True if a unit with this symbol exists."""
        ...


@runtime_checkable
class LedgerStore(LedgerView, Protocol):
    """
    Persistence interface used by the lending service.

    A store must apply a PendingTransaction atomically and reject it when a
    state change's old_state no longer matches what is stored.
    """
    transaction_log: List['Transaction']

    def execute(self, pending: 'PendingTransaction') -> 'ExecuteResult':
        ...

    def register_wallet(self, wallet_id: str) -> str:
        ...

    def register_unit(self, unit: 'Unit') -> None:
        ...

    def is_registered(self, wallet_id: str) -> bool:
        ...

    def advance_time(self, new_time: datetime) -> None:
        ...

    def clone(self) -> 'LedgerStore':
        """Independent copy for dry runs."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied.
    ALREADY_APPLIED: Same intent was processed before (idempotent behavior).
    REJECTED: Validation failed (balances, transfer or state rules).
    CONFLICT: A state change was computed from a stale snapshot.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"
    CONFLICT = "conflict"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"
    ADMIN_ACTION = "admin_action"
    LIFECYCLE = "lifecycle"
    SYSTEM = "system"
    EXTERNAL = "external"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all lending and ledger errors."""
    code = "LEDGER_ERROR"


class ValidationError(LedgerError):
    """Malformed input: non-positive amounts, unknown asset types, and so on."""
    code = "VALIDATION_ERROR"


class StateError(LedgerError):
    """Operation not legal in the entity's current state."""
    code = "STATE_ERROR"


class ResourceError(LedgerError):
    """Not enough credit or cash to complete the operation."""
    code = "RESOURCE_ERROR"


class ConcurrencyError(LedgerError):
    """Lock acquisition or optimistic write failed."""
    code = "CONCURRENCY_ERROR"


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""
    code = "NOT_FOUND"


class OwnershipError(LedgerError):
    """Caller is not allowed to act on the entity."""
    code = "OWNERSHIP_ERROR"


class InvariantViolation(LedgerError):
    """A transaction would break a ledger invariant."""
    code = "INVARIANT_VIOLATION"


class TransferRuleViolation(LedgerError):
    """Raised by transfer rules and state rules to reject a transaction."""
    code = "RULE_VIOLATION"


class UnitNotRegistered(NotFoundError):
    code = "UNIT_NOT_REGISTERED"


class WalletNotRegistered(NotFoundError):
    code = "WALLET_NOT_REGISTERED"


class ExceedsOutstanding(ValidationError):
    code = "EXCEEDS_OUTSTANDING"


class ExceedsRemainingFunding(ValidationError):
    code = "EXCEEDS_REMAINING_FUNDING"


class IllegalStateTransition(StateError):
    """Raised when a loan is asked to move along an edge not in the graph."""
    code = "ILLEGAL_STATE_TRANSITION"

    def __init__(self, from_status: str, to_status: str, entity_id: str = ""):
        self.from_status = from_status
        self.to_status = to_status
        self.entity_id = entity_id
        where = f" ({entity_id})" if entity_id else ""
        super().__init__(f"Illegal transition {from_status} -> {to_status}{where}")


class AssetAlreadyLocked(StateError):
    code = "ASSET_ALREADY_LOCKED"


class AssetNotLocked(StateError):
    code = "ASSET_NOT_LOCKED"


class LoanNotFundable(StateError):
    code = "LOAN_NOT_FUNDABLE"


class LoanNotActive(StateError):
    code = "LOAN_NOT_ACTIVE"


class LoanNotSettled(StateError):
    code = "LOAN_NOT_SETTLED"


class FundingIncomplete(StateError):
    code = "FUNDING_INCOMPLETE"


class InsufficientCreditLimit(ResourceError):
    code = "INSUFFICIENT_CREDIT_LIMIT"

    def __init__(self, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(f"Requested {requested} exceeds available credit {available}")


class InsufficientBalance(ResourceError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, wallet_id: str, required: Decimal, available: Decimal):
        self.wallet_id = wallet_id
        self.required = required
        self.available = available
        super().__init__(f"{wallet_id} needs {required}, has {available}")


class CreditInUse(ResourceError):
    code = "CREDIT_IN_USE"


class LockTimeout(ConcurrencyError):
    """Timeout: a per-entity lock could not be acquired in time."""
    code = "TIMEOUT"


class StaleState(ConcurrencyError):
    code = "STALE_STATE"


class AssetNotFound(NotFoundError):
    code = "ASSET_NOT_FOUND"


class LoanNotFound(NotFoundError):
    code = "LOAN_NOT_FOUND"


class InvestmentNotFound(NotFoundError):
    code = "INVESTMENT_NOT_FOUND"


class InvalidOwner(OwnershipError):
    code = "INVALID_OWNER"


class NotAuthorized(OwnershipError):
    code = "NOT_AUTHORIZED"


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Actor or component that produced the transaction
        unit_symbol: Entity the operation targeted (if applicable)
        event_type: Operation name (e.g., "APPLY", "INVEST", "DEFAULT")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of an entity record.

    old_state doubles as the optimistic-concurrency precondition: the store
    refuses the change when the stored record differs from it.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of cash between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: Currency symbol (e.g., "INR").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: 1.0 and 1.00 both become "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal exponent.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, set):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Based on moves, state changes, origin and created units only, never on
    timestamps. Used by the store to make re-submission a no-op.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Produced by compute_* functions and submitted to a LedgerStore.

    Attributes:
        moves: Cash transfers between wallets
        state_changes: Entity record changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Entities to register as part of the same commit
        intent_id: Content-addressable hash (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there is nothing to apply."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def touched_units(self) -> Set[str]:
        """Symbols of every entity created or changed by this transaction."""
        touched = {u.symbol for u in self.units_to_create}
        touched.update(sc.unit for sc in self.state_changes)
        return touched

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state changes.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot alter the intent.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: Cash moves to include
        state_changes: Entity record changes
        origin: Transaction origin (defaults to a USER_ACTION origin)
        units_to_create: Entities to register in the same commit

    Returns:
        A PendingTransaction ready for execution
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="service",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=tuple(units_to_create or ()),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction, for contracts with nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.LIFECYCLE, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger changes - represents FACT.

    Attributes:
        moves: Cash transfers
        state_changes: Entity record changes
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        event = self.origin.event_type or self.origin.origin_type.name
        target = self.origin.unit_symbol or self.origin.source_id
        return (
            f"Transaction(#{self.sequence_number} {event} {target} @ {self.timestamp:%Y-%m-%d}, "
            f"{len(self.moves)} moves, {len(self.state_changes)} changes, {len(self.units_to_create)} created)"
        )

    def audit_lines(self) -> List[str]:
        """One line per cash move and per changed field, for audit output."""
        lines = [repr(self)]
        for move in self.moves:
            lines.append(f"  {move.source} -> {move.dest}: {move.quantity} {move.unit_symbol} ({move.contract_id})")
        for unit in self.units_to_create:
            lines.append(f"  + {unit.symbol} [{unit.unit_type}]")
        for sc in self.state_changes:
            for name, (old_val, new_val) in sc.changed_fields().items():
                if name != 'status_history':
                    lines.append(f"  {sc.unit}.{name}: {old_val!r} -> {new_val!r}")
        return lines


# Transfer rules validate moves; state rules validate record changes.
# Both raise TransferRuleViolation to reject the whole transaction.
TransferRule = Callable[[LedgerView, Move], None]
StateRule = Callable[[LedgerView, Optional[UnitState], UnitState], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a ledger unit: a currency or a lending entity.

    Attributes:
        symbol: Unique identifier (currency code or entity id).
        name: Human-readable name.
        unit_type: One of the UNIT_TYPE_* constants.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any non-system wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves of this unit.
        state_rule: Optional function to validate every change of this unit's state.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    state_rule: Optional[StateRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new dict on every access."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's precision with banker's rounding."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        return value.quantize(quantizer, rounding=ROUND_HALF_EVEN)


# ============================================================================
# HELPERS
# ============================================================================

def to_decimal(value: Any, name: str = "value") -> Decimal:
    """
    Coerce an int/str/float/Decimal to Decimal.

    Floats go through str() so 0.1 stays 0.1. Raises ValidationError for
    anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except ArithmeticError:
            raise ValidationError(f"{name} must be numeric, got {value!r}") from None
    else:
        raise ValidationError(f"{name} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return result


def quantize_cash(value: Decimal) -> Decimal:
    """Round a money amount to cash precision (0.01, banker's rounding)."""
    return value.quantize(CASH_QUANTUM, rounding=ROUND_HALF_EVEN)


def wallet_balance(view: LedgerView, wallet_id: str, unit_symbol: str) -> Decimal:
    """Balance of a wallet, zero for wallets that were never registered."""
    if wallet_id not in view.list_wallets():
        return ZERO
    return view.get_balance(wallet_id, unit_symbol)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def cash(symbol: str, name: str, decimal_places: int = CASH_DECIMAL_PLACES) -> Unit:
    """
    Create a cash currency unit.

    Participants can never go below zero; only SYSTEM may.

    Args:
        symbol: Currency code (e.g., "INR").
        name: Full name of the currency.
        decimal_places: Number of decimal places for amounts (default: 2).
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET}),
    )


def entity_unit(
    symbol: str,
    name: str,
    unit_type: str,
    state: UnitState,
    state_rule: Optional[StateRule] = None,
) -> Unit:
    """
    Create a record unit. Records carry state only and can never be held.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        state_rule=state_rule,
        _frozen_state=_freeze_state(state),
    )
