"""
fake_view.py - Test Helper for LedgerView

Provides a minimal, immutable LedgerView implementation for testing
compute_* functions without a full Ledger instance.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
import copy
from typing import Dict, Set, Optional, List, Iterable

from assetbridge.core import Unit, UnitState, UnitNotRegistered, WalletNotRegistered


class FakeView:
    """
    Minimal LedgerView implementation for testing compute functions.

    Example:
        view = FakeView(
            balances={'alice': {'INR': Decimal("1000")}},
            units=[create_asset_unit("A1", "alice", "FD", Decimal("100000"), policy, t0)],
            time=datetime(2025, 1, 1)
        )
    """

    def __init__(
        self,
        balances: Optional[Dict[str, Dict[str, Decimal]]] = None,
        units: Iterable[Unit] = (),
        time: Optional[datetime] = None,
    ):
        self._balances = balances or {}
        self._units: Dict[str, Unit] = {u.symbol: u for u in units}
        self._time = time or datetime(2025, 1, 1)

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, unit: str) -> Decimal:
        if wallet not in self._balances:
            raise WalletNotRegistered(wallet)
        return self._balances[wallet].get(unit, Decimal("0"))

    def get_unit_state(self, unit: str) -> UnitState:
        if unit not in self._units:
            raise UnitNotRegistered(unit)
        return copy.deepcopy(self._units[unit].state)

    def get_positions(self, unit: str) -> Dict[str, Decimal]:
        return {
            w: b[unit]
            for w, b in self._balances.items()
            if unit in b and b[unit] != 0
        }

    def list_wallets(self) -> Set[str]:
        return set(self._balances.keys())

    def list_units(self, unit_type: Optional[str] = None) -> List[str]:
        return sorted(s for s, u in self._units.items() if unit_type is None or u.unit_type == unit_type)

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self._units:
            raise UnitNotRegistered(symbol)
        return self._units[symbol]

    def has_unit(self, symbol: str) -> bool:
        return symbol in self._units
