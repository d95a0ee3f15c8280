"""
conftest.py - Shared pytest fixtures for AssetBridge tests

Provides common fixtures used across unit, functional and conformance tests:
- Ledgers and policies
- Services with auto-approving, review-routing, guarded and partial-funding setups
- Lifecycle engine setup
"""

import pytest

from assetbridge import Ledger, LendingPolicy, LifecycleEngine, AiDecision

from tests.scenarios import T0, make_service


@pytest.fixture
def policy():
    return LendingPolicy()


@pytest.fixture
def ledger():
    """Fresh ledger at 2025-01-01."""
    return Ledger("test", T0, verbose=False, test_mode=True)


@pytest.fixture
def service():
    """Service whose risk assessor auto-approves every application."""
    return make_service()


@pytest.fixture
def review_service():
    """Service whose risk assessor routes every application to review."""
    return make_service(decision=AiDecision.REVIEW)


@pytest.fixture
def guarded_service():
    """Auto-approving service that dry-runs every commit through the consistency guard."""
    return make_service(LendingPolicy(check_invariants=True))


@pytest.fixture
def partial_service():
    """Service accepting partial investments."""
    return make_service(LendingPolicy(allow_partial_funding=True))


@pytest.fixture
def engine(service):
    return LifecycleEngine(service)
