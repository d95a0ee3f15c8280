"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending engine.
Any compliant LedgerStore / LendingService pairing MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Cash conservation and cross-entity consistency
2. atomicity.py - All-or-nothing operations
3. idempotency.py - Duplicate submission handling
4. determinism.py - Reproducible behavior and replay
5. credit_limit.py - Credit never exceeds the collateral line
6. concurrency.py - Serialized effects under parallel callers

Most of these tests use hypothesis for property-based testing.
"""
