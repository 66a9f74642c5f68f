"""Shared constants for pfsfuzz.

Constants are grouped by domain:
- Naming: identifier grammar and the base-64 substitution table
- Decoding limits: bounds on fuzz-generated sequences and parameters
- Oracle setup: fixed names and transforms for the extract/restore oracle
- Remote defaults: out-of-band configuration defaults

Python 3.13+. Zero external dependencies.
"""

import re

# ruff: noqa: RUF022 - __all__ organized by category for readability
__all__ = [
    # Naming
    "IDENTIFIER_PATTERN",
    "NAME_SUBSTITUTIONS",
    # Decoding limits
    "MAX_OPERATIONS",
    "MAX_NAME_BYTES",
    "MAX_PAYLOAD_BYTES",
    "MAX_PATTERN_CHARS",
    "MAX_TARGET_FILE_DATUMS",
    "MAX_TARGET_FILE_BYTES",
    "MAX_HEADER_RECORDS",
    "MAX_OVERWRITE_INDEX",
    "MAX_GET_FILE_BYTES",
    "MAX_LIST_COMMIT_NUMBER",
    "MIN_LIST_FILE_HISTORY",
    "MAX_LIST_FILE_HISTORY",
    "MAX_ORACLE_OPERATIONS",
    # Oracle setup
    "ORACLE_INPUT_REPO",
    "ORACLE_PIPELINE",
    "ORACLE_BRANCH",
    "ORACLE_FILE_PATH",
    "CORRUPTED_SENTINEL",
    "COPY_SCRIPT",
    "CORRUPT_SCRIPT",
    "ORACLE_GLOB",
    # Masking
    "VOLATILE_FIELDS",
    "UNORDERED_FIELDS",
    # Remote defaults
    "ADDRESS_ENV_VAR",
    "DEFAULT_PORT",
    "DEFAULT_GC_MEMORY_BYTES",
    "DEFAULT_JOB_HISTORY",
    "DEFAULT_PIPELINE_IMAGE",
]

# ============================================================================
# NAMING
# ============================================================================

# Repo, branch and file names accepted by the service.
IDENTIFIER_PATTERN: re.Pattern[str] = re.compile(r"^[A-Za-z0-9_-]+$")

# Base-64 characters outside the identifier grammar and their replacements.
# "+" and "/" both collapse onto "_", so the codec is not injective.
NAME_SUBSTITUTIONS: tuple[tuple[str, str], ...] = (
    ("+", "_"),
    ("/", "_"),
    ("=", "-"),
)

# ============================================================================
# DECODING LIMITS
# ============================================================================

MAX_OPERATIONS: int = 64
"""Longest candidate PFS sequence decoded from one fuzz input."""

MAX_NAME_BYTES: int = 32
MAX_PAYLOAD_BYTES: int = 256
MAX_PATTERN_CHARS: int = 16

MAX_TARGET_FILE_DATUMS: int = 8
MAX_TARGET_FILE_BYTES: int = 64
MAX_HEADER_RECORDS: int = 4
MAX_OVERWRITE_INDEX: int = 8
MAX_GET_FILE_BYTES: int = 1024
MAX_LIST_COMMIT_NUMBER: int = 16

# -1 asks for the full history of a path.
MIN_LIST_FILE_HISTORY: int = -1
MAX_LIST_FILE_HISTORY: int = 8

MAX_ORACLE_OPERATIONS: int = 16
"""Longest candidate extract/restore oracle sequence."""

# ============================================================================
# ORACLE SETUP
# ============================================================================

ORACLE_INPUT_REPO: str = "input"
ORACLE_PIPELINE: str = "copy"
ORACLE_BRANCH: str = "master"
ORACLE_FILE_PATH: str = "/test"
ORACLE_GLOB: str = "/*"

CORRUPTED_SENTINEL: bytes = b"corrupted"
"""Output written by the pipeline while its transform is corrupted."""

COPY_SCRIPT: str = f"cp -r /pfs/{ORACLE_INPUT_REPO}/* /pfs/out/"
CORRUPT_SCRIPT: str = (
    f"for f in /pfs/{ORACLE_INPUT_REPO}/*; do "
    f'printf %s {CORRUPTED_SENTINEL.decode()} > "/pfs/out/$(basename "$f")"; done'
)

# ============================================================================
# MASKING
# ============================================================================

# Timestamps that legitimately change across an extract/restore round trip.
VOLATILE_FIELDS: frozenset[str] = frozenset({"started", "finished"})

# Collections the round trip is allowed to reorder.
UNORDERED_FIELDS: frozenset[str] = frozenset({"provenance", "subvenance", "child_commits"})

# ============================================================================
# REMOTE DEFAULTS
# ============================================================================

ADDRESS_ENV_VAR: str = "PACHD_ADDRESS"
DEFAULT_PORT: int = 30650
DEFAULT_GC_MEMORY_BYTES: int = 10 * 1024 * 1024
DEFAULT_JOB_HISTORY: int = -1
DEFAULT_PIPELINE_IMAGE: str = "alpine:3.12"
