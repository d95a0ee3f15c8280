"""
asset.py - Asset & Collateral Ledger

Assets are declared by their owner and can be locked as collateral. Locking
creates a LockedAsset record carrying the credit line the asset backs:

    credit_limit = (declared_value - liquidated_value) * ltv_ratio[asset_type]

A user's available credit is the single source of truth for loan
applications:

    available = sum(credit_limit) - sum(used_credit)     (ACTIVE locked assets)

Loans reserve credit earliest-locked-first. The allocation
{locked_asset_id: amount} is stored on the loan so release and liquidation
touch exactly the records that were reserved.

LockedAsset records are never deleted. Unlocking marks them RELEASED.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange, UnitState,
    TransactionOrigin, OriginType,
    UNIT_TYPE_ASSET, UNIT_TYPE_LOCKED_ASSET, ZERO,
    AssetNotFound, AssetAlreadyLocked, AssetNotLocked, CreditInUse,
    InsufficientCreditLimit, InvalidOwner, ValidationError, TransferRuleViolation,
    build_transaction, entity_unit, quantize_cash,
)
from ..policy import LendingPolicy, parse_amount


ASSET_STATUS_ACTIVE = "ACTIVE"
ASSET_STATUS_LOCKED = "LOCKED"

LOCK_STATUS_ACTIVE = "ACTIVE"
LOCK_STATUS_RELEASED = "RELEASED"

# Credit allocation for one loan: locked_asset_id -> reserved amount
Allocation = Dict[str, Decimal]


@dataclass(frozen=True, slots=True)
class CreditSummary:
    total: Decimal
    used: Decimal
    available: Decimal


# ============================================================================
# STATE RULES
# ============================================================================

def asset_state_rule(view: LedgerView, old: Optional[UnitState], new: UnitState) -> None:
    """Owner, type and value are fixed; liquidation only ever grows."""
    if new.get('status') not in (ASSET_STATUS_ACTIVE, ASSET_STATUS_LOCKED):
        raise TransferRuleViolation(f"asset {new.get('asset_id')}: bad status {new.get('status')!r}")
    if new['declared_value'] <= ZERO:
        raise TransferRuleViolation(f"asset {new['asset_id']}: declared_value must be positive")
    if old is None:
        if new['status'] != ASSET_STATUS_ACTIVE:
            raise TransferRuleViolation(f"asset {new['asset_id']}: must be declared ACTIVE")
        return
    for key in ('asset_id', 'owner_id', 'asset_type', 'declared_value', 'ltv_ratio'):
        if old.get(key) != new.get(key):
            raise TransferRuleViolation(f"asset {new['asset_id']}: {key} is immutable")
    if new['liquidated_value'] < old['liquidated_value']:
        raise TransferRuleViolation(f"asset {new['asset_id']}: liquidated_value cannot decrease")
    if new['liquidated_value'] > new['declared_value']:
        raise TransferRuleViolation(f"asset {new['asset_id']}: liquidated beyond declared value")


def locked_asset_state_rule(view: LedgerView, old: Optional[UnitState], new: UnitState) -> None:
    """0 <= used_credit <= credit_limit; RELEASED is terminal and needs used_credit == 0."""
    used = new['used_credit']
    limit = new['credit_limit']
    symbol = new['locked_asset_id']
    if limit < ZERO:
        raise TransferRuleViolation(f"{symbol}: credit_limit {limit} is negative")
    if used < ZERO:
        raise TransferRuleViolation(f"{symbol}: used_credit {used} is negative")
    if used > limit:
        raise TransferRuleViolation(f"{symbol}: used_credit {used} exceeds credit_limit {limit}")
    if old is None:
        if new['status'] != LOCK_STATUS_ACTIVE:
            raise TransferRuleViolation(f"{symbol}: must be created ACTIVE")
        return
    if old['status'] == LOCK_STATUS_RELEASED:
        raise TransferRuleViolation(f"{symbol}: released lock is immutable")
    if new['status'] == LOCK_STATUS_RELEASED and used != ZERO:
        raise TransferRuleViolation(f"{symbol}: cannot release with used_credit {used}")


# ============================================================================
# LOADERS
# ============================================================================

def load_asset(view: LedgerView, asset_id: str) -> UnitState:
    """
    Raises:
        AssetNotFound: If no asset with this id exists
    """
    if not view.has_unit(asset_id) or view.get_unit(asset_id).unit_type != UNIT_TYPE_ASSET:
        raise AssetNotFound(f"Asset {asset_id} not found")
    return view.get_unit_state(asset_id)


def load_locked_asset(view: LedgerView, locked_asset_id: str) -> UnitState:
    if (not view.has_unit(locked_asset_id)
            or view.get_unit(locked_asset_id).unit_type != UNIT_TYPE_LOCKED_ASSET):
        raise AssetNotFound(f"Locked asset {locked_asset_id} not found")
    return view.get_unit_state(locked_asset_id)


def user_assets(view: LedgerView, owner_id: str) -> List[UnitState]:
    states = (view.get_unit_state(s) for s in view.list_units(UNIT_TYPE_ASSET))
    return [s for s in states if s['owner_id'] == owner_id]


def user_locked_assets(view: LedgerView, user_id: str) -> List[UnitState]:
    """A user's ACTIVE locked assets, earliest-locked first (ties by id)."""
    locks = []
    for symbol in view.list_units(UNIT_TYPE_LOCKED_ASSET):
        state = view.get_unit_state(symbol)
        if state['user_id'] == user_id and state['status'] == LOCK_STATUS_ACTIVE:
            locks.append(state)
    locks.sort(key=lambda s: (s['locked_at'], s['locked_asset_id']))
    return locks


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_credit_limit(declared_value: Decimal, ltv_ratio: Decimal) -> Decimal:
    """declared_value * ltv_ratio at cash precision."""
    return quantize_cash(declared_value * ltv_ratio)


def calculate_allocation(locks: List[Tuple[str, Decimal]], amount: Decimal) -> Allocation:
    """
    Spread a reservation over (locked_asset_id, available) pairs in order.

    Raises:
        InsufficientCreditLimit: If the pairs cannot cover the amount
    """
    available = sum((avail for _, avail in locks), ZERO)
    if amount > available:
        raise InsufficientCreditLimit(amount, available)
    allocation: Allocation = {}
    remaining = amount
    for locked_id, avail in locks:
        if remaining <= ZERO:
            break
        take = min(avail, remaining)
        if take > ZERO:
            allocation[locked_id] = take
            remaining -= take
    return allocation


def get_credit_summary(view: LedgerView, user_id: str) -> CreditSummary:
    locks = user_locked_assets(view, user_id)
    total = sum((s['credit_limit'] for s in locks), ZERO)
    used = sum((s['used_credit'] for s in locks), ZERO)
    return CreditSummary(total=total, used=used, available=total - used)


def get_available_credit(view: LedgerView, user_id: str) -> Decimal:
    """Sum of credit_limit minus sum of used_credit over ACTIVE locked assets."""
    return get_credit_summary(view, user_id).available


def allocate_reservation(view: LedgerView, user_id: str, amount: Decimal) -> Allocation:
    """
    Choose which locked assets back a new loan (earliest-locked first).

    Raises:
        InsufficientCreditLimit: If amount exceeds the user's available credit
    """
    locks = [
        (s['locked_asset_id'], s['credit_limit'] - s['used_credit'])
        for s in user_locked_assets(view, user_id)
    ]
    return calculate_allocation(locks, amount)


def adjust_used_credit(view: LedgerView, allocation: Allocation, sign: int) -> List[UnitStateChange]:
    """State changes adding (sign=1) or removing (sign=-1) reserved credit."""
    changes = []
    for locked_id in sorted(allocation):
        state = load_locked_asset(view, locked_id)
        new_state = {**state, 'used_credit': state['used_credit'] + sign * allocation[locked_id]}
        changes.append(UnitStateChange(locked_id, state, new_state))
    return changes


def reserve_credit(view: LedgerView, allocation: Allocation) -> List[UnitStateChange]:
    return adjust_used_credit(view, allocation, 1)


def release_credit(view: LedgerView, allocation: Allocation) -> List[UnitStateChange]:
    return adjust_used_credit(view, allocation, -1)


# ============================================================================
# UNIT FACTORIES AND TRANSACTIONS
# ============================================================================

def create_asset_unit(
    asset_id: str,
    owner_id: str,
    asset_type: str,
    declared_value: Decimal,
    policy: LendingPolicy,
    declared_at: datetime,
    name: str = "",
) -> Unit:
    """
    Create an Asset record in ACTIVE status.

    Raises:
        ValidationError: If the type has no LTV ratio or the value is not positive
    """
    if not owner_id:
        raise ValidationError("owner_id cannot be empty")
    value = parse_amount(declared_value, "declared_value")
    asset_type = getattr(asset_type, 'value', asset_type)
    ltv = policy.ltv_for(asset_type)
    state = {
        'asset_id': asset_id,
        'owner_id': owner_id,
        'asset_type': asset_type,
        'name': name or f"{asset_type} {asset_id}",
        'declared_value': value,
        'currency': policy.currency,
        'ltv_ratio': ltv,
        'status': ASSET_STATUS_ACTIVE,
        'locked_at': None,
        'liquidated_value': ZERO,
        'locked_asset_id': None,
        'created_at': declared_at,
    }
    return entity_unit(asset_id, state['name'], UNIT_TYPE_ASSET, state, asset_state_rule)


def compute_declare_asset(
    view: LedgerView,
    asset_id: str,
    owner_id: str,
    asset_type: str,
    declared_value: Decimal,
    policy: LendingPolicy,
    name: str = "",
) -> PendingTransaction:
    unit = create_asset_unit(asset_id, owner_id, asset_type, declared_value, policy, view.current_time, name)
    origin = TransactionOrigin(OriginType.USER_ACTION, owner_id, asset_id, "DECLARE_ASSET")
    return build_transaction(view, [], [], origin, (unit,))


def compute_lock(
    view: LedgerView,
    asset_id: str,
    caller_id: str,
    wallet_ref: str,
    locked_asset_id: str,
) -> PendingTransaction:
    """
    Lock an asset as collateral.

    The asset goes ACTIVE -> LOCKED and a LockedAsset with
    credit_limit = declared_value * ltv_ratio is created, atomically.

    Raises:
        AssetNotFound: Unknown asset
        InvalidOwner: caller_id is not the owner
        AssetAlreadyLocked: Asset is not ACTIVE
    """
    asset = load_asset(view, asset_id)
    if asset['owner_id'] != caller_id:
        raise InvalidOwner(f"{caller_id} does not own asset {asset_id}")
    if asset['status'] != ASSET_STATUS_ACTIVE:
        raise AssetAlreadyLocked(f"Asset {asset_id} is {asset['status']}")

    pledgeable = asset['declared_value'] - asset['liquidated_value']
    if pledgeable <= ZERO:
        raise ValidationError(f"Asset {asset_id} has been fully liquidated")

    now = view.current_time
    credit_limit = calculate_credit_limit(pledgeable, asset['ltv_ratio'])
    lock_state = {
        'locked_asset_id': locked_asset_id,
        'asset_id': asset_id,
        'user_id': caller_id,
        'credit_limit': credit_limit,
        'used_credit': ZERO,
        'ltv_ratio': asset['ltv_ratio'],
        'wallet_ref': wallet_ref,
        'locked_at': now,
        'status': LOCK_STATUS_ACTIVE,
        'released_at': None,
        'liquidated_credit': ZERO,
    }
    lock_unit = entity_unit(
        locked_asset_id, f"Lock on {asset_id}", UNIT_TYPE_LOCKED_ASSET, lock_state, locked_asset_state_rule
    )
    new_asset = {
        **asset,
        'status': ASSET_STATUS_LOCKED,
        'locked_at': now,
        'locked_asset_id': locked_asset_id,
    }
    origin = TransactionOrigin(OriginType.USER_ACTION, caller_id, asset_id, "LOCK_ASSET")
    return build_transaction(
        view, [], [UnitStateChange(asset_id, asset, new_asset)], origin, (lock_unit,)
    )


def compute_unlock(view: LedgerView, asset_id: str, caller_id: str) -> PendingTransaction:
    """
    Release an asset's lock.

    Raises:
        AssetNotFound: Unknown asset
        InvalidOwner: caller_id is not the owner
        AssetNotLocked: Asset is not LOCKED
        CreditInUse: Some of the lock's credit backs an open loan
    """
    asset = load_asset(view, asset_id)
    if asset['owner_id'] != caller_id:
        raise InvalidOwner(f"{caller_id} does not own asset {asset_id}")
    if asset['status'] != ASSET_STATUS_LOCKED:
        raise AssetNotLocked(f"Asset {asset_id} is {asset['status']}")

    locked_id = asset['locked_asset_id']
    lock = load_locked_asset(view, locked_id)
    if lock['used_credit'] > ZERO:
        raise CreditInUse(f"Asset {asset_id} backs {lock['used_credit']} of open loans")

    now = view.current_time
    new_lock = {**lock, 'status': LOCK_STATUS_RELEASED, 'released_at': now}
    new_asset = {**asset, 'status': ASSET_STATUS_ACTIVE, 'locked_at': None, 'locked_asset_id': None}
    origin = TransactionOrigin(OriginType.USER_ACTION, caller_id, asset_id, "UNLOCK_ASSET")
    return build_transaction(view, [], [
        UnitStateChange(asset_id, asset, new_asset),
        UnitStateChange(locked_id, lock, new_lock),
    ], origin)
