"""Hypothesis strategies for pfsfuzz property-based testing.

Strategies are organized by domain:

- ops: names, payloads, operations and model-valid operation sequences

Usage:
    from tests.strategies import valid_sequences, operations
    from tests.strategies.ops import ByteProvider, put_files

Event-Emitting Strategies (HypoFuzz-Optimized):
    These strategies emit hypothesis.event() calls for coverage-guided fuzzing:
    - put_files, valid_sequences, oracle_sequences
"""

from .ops import (
    ByteProvider,
    byte_providers,
    extract_restores,
    file_names,
    names,
    operations,
    oracle_operations,
    oracle_sequences,
    put_files,
    valid_sequences,
)

__all__ = [
    "ByteProvider",
    "byte_providers",
    "extract_restores",
    "file_names",
    "names",
    "operations",
    "oracle_operations",
    "oracle_sequences",
    "put_files",
    "valid_sequences",
]
