"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Token conservation and record/vault bookkeeping
2. atomicity.py - All-or-nothing instruction semantics
3. share_properties.py - Share accounting and exchange-rate bounds
4. determinism.py - Reproducible behavior
5. temporal.py - Clock, oracle staleness and interest ordering

These tests use hypothesis for property-based testing.
"""
