"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the confidential ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - A rejected operation leaves no trace
2. aggregates.py - Pool totals track the value that actually moved
3. binding.py - Attestations only verify against the state they were made for
4. idempotency.py - Duplicate execution handling
5. liquidation.py - A position is liquidated at most once
6. conservation.py - Double-entry accounting invariants
7. canonicalization.py - Content-addressable identity

These tests use hypothesis for property-based testing.
"""
