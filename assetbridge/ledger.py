"""
ledger.py - In-memory lending ledger store

The Ledger class is the only object in the package that mutates state.
Everything else computes PendingTransactions from a read-only view.

Key responsibilities:
    - Implements the LedgerView / LedgerStore protocols
    - Executes transactions atomically (all moves and record changes or none)
    - Rejects stale writes: every state change carries the record it was
      computed from, and a mismatch yields ExecuteResult.CONFLICT
    - Runs unit transfer rules and state rules before anything is applied
    - Keeps the transaction log (audit trail, replay)

Thread Safety:
    All public methods are serialised on an internal re-entrant lock, so a
    single Ledger can be shared by concurrent service calls. Business-level
    serialisation (one operation per user or loan at a time) is the job of
    assetbridge.locks.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
import threading

from .core import (
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState,
    QUANTITY_EPSILON, SYSTEM_WALLET,
    LedgerError, TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    _freeze_state,
)


class Ledger:
    """
    Double-entry cash ledger plus entity record store.

    Design Principles:
        - Always validates: registration, timestamps, balance limits,
          transfer rules, state rules and optimistic preconditions.
        - Always logs: every applied transaction lands in transaction_log,
          which replay() can re-execute from scratch.

    Example:
        ledger = Ledger("main", verbose=False)
        ledger.register_unit(cash("INR", "Indian Rupee"))
        ledger.register_wallet("alice")
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "INR", SYSTEM_WALLET, "alice", "deposit:1")
        ])
        ledger.execute(tx)
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print every transaction outcome (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        self._lock = threading.RLock()
        self._local = threading.local()

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    @property
    def last_rejection(self) -> str:
        """Reason for the calling thread's most recent REJECTED/CONFLICT result."""
        return getattr(self._local, 'reason', "")

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        with self._lock:
            if wallet_id not in self.registered_wallets:
                raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
            if unit_symbol not in self.units:
                raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
            return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        with self._lock:
            if unit_symbol not in self.units:
                raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
            return copy.deepcopy(self.units[unit_symbol].state)

    def get_positions(self, unit_symbol: str) -> Positions:
        with self._lock:
            return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        with self._lock:
            return self.registered_wallets.copy()

    def list_units(self, unit_type: Optional[str] = None) -> List[str]:
        """List registered unit symbols, optionally only those of one type."""
        with self._lock:
            if unit_type is None:
                return sorted(self.units)
            return sorted(s for s, u in self.units.items() if u.unit_type == unit_type)

    def get_unit(self, symbol: str) -> Unit:
        with self._lock:
            if symbol not in self.units:
                raise UnitNotRegistered(f"Unit {symbol} not registered")
            return self.units[symbol]

    def has_unit(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self.units

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit's balances across all wallets, SYSTEM included.

        Always zero for cash that only ever entered through SYSTEM.
        """
        with self._lock:
            if unit_symbol not in self.units:
                raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
            return sum(
                (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
                Decimal("0"),
            )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-9")
    ) -> Dict[str, Any]:
        """
        Verify that conservation holds for every unit.

        Returns:
            Dict with 'valid', 'supplies' and 'discrepancies' (one entry per
            unit whose supply differs from expected_supplies).
        """
        with self._lock:
            supplies = {}
            discrepancies = []
            for unit_symbol in self.units:
                current_supply = self.total_supply(unit_symbol)
                supplies[unit_symbol] = current_supply
                if expected_supplies and unit_symbol in expected_supplies:
                    expected = expected_supplies[unit_symbol]
                    difference = abs(current_supply - expected)
                    if difference > tolerance:
                        discrepancies.append({
                            'unit': unit_symbol,
                            'expected': expected,
                            'actual': current_supply,
                            'difference': difference,
                        })
            return {
                'valid': len(discrepancies) == 0,
                'supplies': supplies,
                'discrepancies': discrepancies,
            }

    def is_registered(self, wallet_id: str) -> bool:
        with self._lock:
            return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time never moves backwards.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        with self._lock:
            if wallet_id in self.registered_wallets:
                raise ValueError(f"Wallet {wallet_id} already registered")
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
            return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        with self._lock:
            if wallet_id not in self.registered_wallets:
                self.register_wallet(wallet_id)
            return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a unit directly (currencies at setup time).

        Entities are created through PendingTransaction.units_to_create.

        Raises:
            ValueError: If unit symbol is already registered
        """
        with self._lock:
            if unit.symbol in self.units:
                raise ValueError(f"Unit {unit.symbol} already registered")
            self.units[unit.symbol] = unit
            if self.verbose:
                print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance. Bypasses double entry, test mode only.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances."
            )
        with self._lock:
            if wallet_id not in self.registered_wallets:
                raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
            if unit_symbol not in self.units:
                raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
            if not isinstance(quantity, Decimal):
                quantity = Decimal(str(quantity))
            self.balances[wallet_id][unit_symbol] = quantity
            self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        micros = int((self._current_time - datetime(1970, 1, 1)).total_seconds() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Args:
            pending: PendingTransaction to execute

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the same intent was executed before
            ExecuteResult.REJECTED if validation failed (see last_rejection)
            ExecuteResult.CONFLICT if a state change was computed from a
            record that has since changed
        """
        with self._lock:
            self._local.reason = ""
            if pending.is_empty():
                return ExecuteResult.APPLIED

            if pending.intent_id in self.seen_intent_ids:
                if self.verbose:
                    print(f"ALREADY_APPLIED: intent_id={pending.intent_id}")
                return ExecuteResult.ALREADY_APPLIED

            for unit in pending.units_to_create:
                if unit.symbol in self.units:
                    return self._refuse(ExecuteResult.REJECTED, f"unit already registered: {unit.symbol}")

            # Created units are visible during validation and removed again
            # if anything fails.
            created: List[str] = []
            for unit in pending.units_to_create:
                self.units[unit.symbol] = unit
                created.append(unit.symbol)

            result, reason = self._validate_pending(pending)
            if result is not None:
                for sym in created:
                    del self.units[sym]
                return self._refuse(result, reason)

            sequence = self._next_sequence
            self._next_sequence += 1
            tx = Transaction(
                moves=pending.moves,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=self._generate_exec_id(sequence),
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
                units_to_create=pending.units_to_create,
            )

            self._execute_moves(tx.moves)
            for sc in tx.state_changes:
                new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
                self.units[sc.unit] = replace(self.units[sc.unit], _frozen_state=_freeze_state(new_state))

            self.transaction_log.append(tx)
            self.seen_intent_ids.add(pending.intent_id)

            if self.verbose:
                self._print_tx_result(tx, "APPLIED", "✓")
            return ExecuteResult.APPLIED

    def _refuse(self, result: ExecuteResult, reason: str) -> ExecuteResult:
        self._local.reason = reason
        if self.verbose:
            print(f"✗ {result.name}: {reason}")
        return result

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        lines = tx.audit_lines()
        lines[0] = f"{icon} {result} {lines[0]}"
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[Optional[ExecuteResult], str]:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp (transaction must not be from the future)
        2. Unit and wallet registration
        3. Transfer rules
        4. Balance limits (SYSTEM is exempt)
        5. Optimistic preconditions on state changes (CONFLICT)
        6. State rules for created and changed units

        Returns:
            (None, "") when valid, otherwise (REJECTED or CONFLICT, reason)
        """
        if pending.timestamp > self._current_time:
            return ExecuteResult.REJECTED, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return ExecuteResult.REJECTED, f"unit not registered: {move.unit_symbol}"
            if move.source not in self.registered_wallets:
                return ExecuteResult.REJECTED, f"wallet not registered: {move.source}"
            if move.dest not in self.registered_wallets:
                return ExecuteResult.REJECTED, f"wallet not registered: {move.dest}"
            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return ExecuteResult.REJECTED, str(e)

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)
            if proposed < unit.min_balance:
                return ExecuteResult.REJECTED, f"{wallet} {unit_sym}: {proposed:.2f} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return ExecuteResult.REJECTED, f"{wallet} {unit_sym}: {proposed:.2f} > max {unit.max_balance}"

        seen: Set[str] = set()
        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return ExecuteResult.REJECTED, f"unit not registered: {sc.unit}"
            if sc.unit in seen:
                return ExecuteResult.REJECTED, f"duplicate state change for {sc.unit}"
            seen.add(sc.unit)
            current_state = self.units[sc.unit].state
            expected = sc.old_state if isinstance(sc.old_state, dict) else {}
            if expected != current_state:
                stale = sorted(
                    k for k in set(expected) | set(current_state)
                    if expected.get(k) != current_state.get(k)
                )
                return ExecuteResult.CONFLICT, f"stale state for {sc.unit}: {', '.join(stale)}"

        try:
            for unit in pending.units_to_create:
                if unit.state_rule:
                    unit.state_rule(self, None, unit.state)
            for sc in pending.state_changes:
                rule = self.units[sc.unit].state_rule
                if rule:
                    rule(self, sc.old_state, sc.new_state)
        except TransferRuleViolation as e:
            return ExecuteResult.REJECTED, str(e)

        return None, ""

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a fully independent deep copy of this ledger.

        Used for dry runs: apply a transaction to the clone, inspect the
        result, and discard it.
        """
        with self._lock:
            cloned = Ledger.__new__(Ledger)
            cloned.name = self.name
            cloned._current_time = self._current_time
            cloned.verbose = False
            cloned._test_mode = self._test_mode
            cloned._lock = threading.RLock()
            cloned._local = threading.local()
            cloned.units = {
                symbol: replace(unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state)))
                for symbol, unit in self.units.items()
            }
            cloned.registered_wallets = self.registered_wallets.copy()
            cloned.seen_intent_ids = self.seen_intent_ids.copy()
            cloned.transaction_log = list(self.transaction_log)
            cloned._next_sequence = self._next_sequence
            cloned.balances = {
                wallet: defaultdict(lambda: Decimal("0"), bals)
                for wallet, bals in self.balances.items()
            }
            cloned._positions_by_unit = defaultdict(dict)
            for unit_symbol, positions in self._positions_by_unit.items():
                cloned._positions_by_unit[unit_symbol] = dict(positions)
            return cloned

    def replay(self, from_tx: int = 0) -> Ledger:
        """
        Create a new ledger by re-executing the transaction log.

        Units registered directly keep the state they had before the first
        logged change; entities are recreated by their own transactions.
        Balances set via set_balance() are not replayed.

        Raises:
            LedgerError: If a logged transaction fails to re-apply
        """
        with self._lock:
            log = self.transaction_log[from_tx:]
            new_ledger = Ledger(
                name=f"{self.name}_replayed",
                initial_time=datetime(1970, 1, 1),
                verbose=False,
                test_mode=self._test_mode
            )

            created_in_log = {u.symbol for tx in log for u in tx.units_to_create}
            first_seen: Dict[str, UnitState] = {}
            for tx in log:
                for sc in tx.state_changes:
                    first_seen.setdefault(sc.unit, sc.old_state or {})

            for symbol, unit in self.units.items():
                if symbol in created_in_log:
                    continue
                initial = first_seen.get(symbol, unit.state)
                new_ledger.units[symbol] = replace(
                    unit, _frozen_state=_freeze_state(copy.deepcopy(initial))
                )

            for wallet in self.registered_wallets:
                if wallet != SYSTEM_WALLET:
                    new_ledger.register_wallet(wallet)

            for tx in log:
                if tx.timestamp > new_ledger.current_time:
                    new_ledger.advance_time(tx.timestamp)
                pending = PendingTransaction(
                    moves=tx.moves,
                    state_changes=tx.state_changes,
                    origin=tx.origin,
                    timestamp=tx.timestamp,
                    units_to_create=tx.units_to_create,
                )
                result = new_ledger.execute(pending)
                if result not in (ExecuteResult.APPLIED, ExecuteResult.ALREADY_APPLIED):
                    raise LedgerError(
                        f"Replay failed at tx {tx.exec_id}: {new_ledger.last_rejection}"
                    )

            if self._current_time > new_ledger.current_time:
                new_ledger.advance_time(self._current_time)
            new_ledger.verbose = self.verbose
            return new_ledger
