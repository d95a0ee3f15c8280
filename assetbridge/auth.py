"""
auth.py - Role checks for service operations

The lending service accepts an optional Authorizer. Without one every
caller is trusted; identity and session handling live outside this package.
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, Iterable, Protocol, Set

from .core import NotAuthorized


class Role(str, Enum):
    ADMIN = "ADMIN"
    INVESTOR = "INVESTOR"
    BORROWER = "BORROWER"


class Authorizer(Protocol):
    def require(self, actor_id: str, role: Role) -> None:
        """Raise NotAuthorized unless actor_id holds role."""
        ...


class RoleAuthorizer:
    """
    In-memory role table.

    Example:
        auth = RoleAuthorizer({"root": {Role.ADMIN}})
        auth.grant("alice", Role.BORROWER, Role.INVESTOR)
        auth.require("alice", Role.ADMIN)   # raises NotAuthorized
    """

    def __init__(self, grants: Dict[str, Iterable[Role]] = None):
        self._roles: Dict[str, Set[Role]] = {}
        for actor_id, roles in (grants or {}).items():
            self.grant(actor_id, *roles)

    def grant(self, actor_id: str, *roles: Role) -> None:
        self._roles.setdefault(actor_id, set()).update(Role(r) for r in roles)

    def revoke(self, actor_id: str, role: Role) -> None:
        self._roles.get(actor_id, set()).discard(Role(role))

    def roles_of(self, actor_id: str) -> Set[Role]:
        return set(self._roles.get(actor_id, set()))

    def require(self, actor_id: str, role: Role) -> None:
        if Role(role) not in self._roles.get(actor_id, set()):
            raise NotAuthorized(f"{actor_id} is not {Role(role).value}")
