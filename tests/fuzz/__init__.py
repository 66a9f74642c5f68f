"""Fuzz testing infrastructure for pfsfuzz.

This package contains:
- shadow_cluster: In-memory reference cluster for differential testing
- test_harness_state_machine: Executor vs reference cluster state machine
- test_sequences_property: Generated sequences never produce findings

Python 3.13+.
"""
