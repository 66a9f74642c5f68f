"""pfsfuzz - Stateful fuzz harness for the Pachyderm versioned filesystem.

Decodes random bytes into sequences of repo, branch, commit and file
operations, rejects sequences whose preconditions cannot hold against a local
shadow model, replays the rest against a live cluster, and classifies every
failure as a tolerable domain rejection or a defect. An extract, wipe and
restore oracle checks that backups round-trip surviving state exactly.

Public API:
    run_case - Validate and replay a PFS sequence between cluster wipes
    run_oracle_case - Validate and replay an extract/restore oracle sequence
    decode_operations - Decode fuzz input into a candidate PFS sequence
    validate_operations - Check a candidate sequence against the state model
    Executor - Replay validated sequences, returning an ExecutionReport
    ErrorClassifier - Tolerable versus fatal remote failures
    HarnessConfig - Out-of-band configuration (PACHD_ADDRESS)
    connect - Open a python_pachyderm-backed service

Exceptions:
    HarnessError - Base exception class
    DecodeError - Input too short or malformed to decode
    ValidationRejected - Sequence with unsatisfiable preconditions
    HarnessFinding - A discovered defect (fatal error, fsck or oracle mismatch)

Submodules:
    pfsfuzz.catalog - Operation variants and finding serialization
    pfsfuzz.model - Shadow state model
    pfsfuzz.oracle - Extract/restore differential oracle
    pfsfuzz.service - Remote service boundary protocol
"""

from .catalog import ops_from_json, ops_to_json
from .classifier import ErrorClassifier
from .client import connect
from .config import HarnessConfig
from .decoding import decode_operations, decode_oracle_operations
from .errors import DecodeError, HarnessError, HarnessFinding, ValidationRejected
from .executor import ExecutionReport, Executor
from .harness import run_case, run_oracle_case
from .validator import validate_operations, validate_oracle_operations

# Version information - Auto-populated from package metadata
# SINGLE SOURCE OF TRUTH: pyproject.toml [project] version
try:
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as _get_version
except ImportError as e:
    raise RuntimeError("importlib.metadata unavailable - Python version too old? " + str(e)) from e

try:
    __version__ = _get_version("pfsfuzz")
except PackageNotFoundError:
    # Development mode: package not installed yet
    __version__ = "0.0.0+dev"

__all__ = [
    "DecodeError",
    "ErrorClassifier",
    "ExecutionReport",
    "Executor",
    "HarnessConfig",
    "HarnessError",
    "HarnessFinding",
    "ValidationRejected",
    "__version__",
    "connect",
    "decode_operations",
    "decode_oracle_operations",
    "ops_from_json",
    "ops_to_json",
    "run_case",
    "run_oracle_case",
    "validate_operations",
    "validate_oracle_operations",
]
