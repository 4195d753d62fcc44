"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the vesting engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - locked <= held, locked == sum of Active remainders
2. atomicity.py - All-or-nothing operations, including failed transfers
3. idempotency.py - Repeated claims release nothing twice
4. determinism.py - Identical inputs give identical state and audit logs
5. temporal.py - Cliff gate, monotone vesting, monotone claims

These tests use hypothesis for property-based testing.
"""
