"""Per-case driver: decode, validate, wipe, execute, wipe.

Each fuzz case runs against a freshly wiped cluster and wipes it again on the
way out, so cases never observe each other's state. Decode and validation
rejections propagate as `DecodeError` / `ValidationRejected` (the fuzz
targets swallow them); a finding propagates as its `HarnessFinding`.

Python 3.13+.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pfsfuzz.catalog import OpKind
from pfsfuzz.classifier import Classification, ErrorClassifier, Outcome
from pfsfuzz.decoding import decode_operations, decode_oracle_operations
from pfsfuzz.errors import FatalRemoteError
from pfsfuzz.executor import ExecutionReport, Executor
from pfsfuzz.service import RemoteError
from pfsfuzz.validator import validate_operations, validate_oracle_operations

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from pfsfuzz.catalog import Operation
    from pfsfuzz.config import HarnessConfig
    from pfsfuzz.decoding import DataProvider
    from pfsfuzz.service import VersionedFileService

__all__ = [
    "fuzz_oracle_input",
    "fuzz_pfs_input",
    "run_case",
    "run_oracle_case",
]

logger = logging.getLogger(__name__)


def _wipe(service: VersionedFileService) -> None:
    try:
        service.delete_all()
    except RemoteError as e:
        verdict = Classification(op_kind=OpKind.DELETE_ALL, outcome=Outcome.FATAL, error=e)
        raise FatalRemoteError(verdict) from e


def _bracketed(
    service: VersionedFileService,
    replay: Callable[[], ExecutionReport],
) -> ExecutionReport:
    _wipe(service)
    try:
        report = replay()
    finally:
        _wipe(service)
    if report.finding is not None:
        raise report.finding
    return report


def run_case(
    service: VersionedFileService,
    ops: Sequence[Operation],
    *,
    config: HarnessConfig | None = None,
    classifier: ErrorClassifier | None = None,
) -> ExecutionReport:
    """Validate and replay a PFS sequence between two cluster wipes.

    Raises:
        ValidationRejected: If the sequence is unsatisfiable (nothing runs)
        HarnessFinding: If a defect is found
    """
    validate_operations(ops)
    executor = Executor(service, classifier, config)
    logger.info("Running case with %d operations", len(ops))
    return _bracketed(service, lambda: executor.run(ops))


def run_oracle_case(
    service: VersionedFileService,
    ops: Sequence[Operation],
    *,
    config: HarnessConfig | None = None,
    classifier: ErrorClassifier | None = None,
) -> ExecutionReport:
    """Validate and replay an extract/restore oracle sequence between wipes.

    Raises:
        ValidationRejected: If the sequence is unsatisfiable (nothing runs)
        HarnessFinding: If a defect is found
    """
    validate_oracle_operations(ops)
    executor = Executor(service, classifier, config)
    logger.info("Running oracle case with %d operations", len(ops))
    return _bracketed(service, lambda: executor.run_oracle(ops))


def fuzz_pfs_input(
    service: VersionedFileService,
    provider: DataProvider,
    *,
    config: HarnessConfig | None = None,
) -> ExecutionReport:
    """Decode, validate and replay one PFS fuzz input."""
    return run_case(service, decode_operations(provider), config=config)


def fuzz_oracle_input(
    service: VersionedFileService,
    provider: DataProvider,
    *,
    config: HarnessConfig | None = None,
) -> ExecutionReport:
    """Decode, validate and replay one extract/restore oracle fuzz input."""
    return run_oracle_case(service, decode_oracle_operations(provider), config=config)
