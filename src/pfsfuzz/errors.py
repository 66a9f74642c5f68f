"""Harness exceptions.

Two error domains live here:

Rejections (silent to the fuzzing engine):
    DecodeError         - random input too short or malformed to decode
    ValidationRejected  - decodable sequence with unsatisfiable preconditions

Findings (surfaced to the fuzzing engine as crashes):
    HarnessFinding (base)
    ├─ FatalRemoteError       (remote call failed with a fatal classification)
    ├─ ConsistencyCheckError  (fsck reported structural corruption)
    └─ OracleMismatchError    (extract/restore changed surviving state)

Python 3.13+. Zero external dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, final

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pfsfuzz.catalog import Operation
    from pfsfuzz.classifier import Classification

__all__ = [
    "ConfigurationError",
    "ConsistencyCheckError",
    "DecodeError",
    "DecodeFailure",
    "FatalRemoteError",
    "HarnessError",
    "HarnessFinding",
    "OracleContext",
    "OracleMismatchError",
    "ValidationRejected",
]


class HarnessError(Exception):
    """Base exception for all pfsfuzz errors."""


class ConfigurationError(HarnessError):
    """Out-of-band configuration is missing or malformed."""


class DecodeFailure(StrEnum):
    """Why random input could not be decoded into a candidate value."""

    INSUFFICIENT_DATA = "insufficient data"
    INCORRECT_FORMAT = "incorrect format"


class DecodeError(HarnessError):
    """Random input could not be decoded.

    Attributes:
        reason: Which decode failure occurred
    """

    def __init__(self, reason: DecodeFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else str(reason))


class ValidationRejected(HarnessError):
    """A candidate sequence has an operation whose preconditions cannot hold.

    The whole sequence is rejected, never truncated.

    Attributes:
        index: Position of the first offending operation
        op: The offending operation
        reason: Human-readable precondition that failed
    """

    def __init__(self, index: int, op: Operation, reason: str) -> None:
        self.index = index
        self.op = op
        self.reason = reason
        super().__init__(f"operation {index} ({op.kind}) rejected: {reason}")


class HarnessFinding(HarnessError):
    """Base class for discovered defects."""


@final
class FatalRemoteError(HarnessFinding):
    """A remote call failed with an error classified as fatal.

    Attributes:
        classification: The classifier verdict, including the remote error
        index: Position of the operation in the executed sequence, if any
    """

    def __init__(self, classification: Classification, index: int | None = None) -> None:
        self.classification = classification
        self.index = index
        where = f" at operation {index}" if index is not None else ""
        super().__init__(f"unexpected error{where}: {classification}")


@final
class ConsistencyCheckError(HarnessFinding):
    """The service's structural consistency check reported problems."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = tuple(problems)
        preview = "; ".join(self.problems[:5])
        super().__init__(f"fsck reported {len(self.problems)} problem(s): {preview}")


@dataclass(frozen=True, slots=True)
class OracleContext:
    """Diagnostic context for an oracle mismatch.

    Attributes:
        phase: Oracle phase that detected the mismatch
        key: Snapshot entry that differs (commit, job, or file key)
        expected: Masked value before the round trip
        actual: Masked value after the round trip
        flags: Extract flags in effect
    """

    phase: str
    key: str
    expected: str | None = None
    actual: str | None = None
    flags: str | None = None


@final
class OracleMismatchError(HarnessFinding):
    """Extract, wipe and restore did not preserve surviving state."""

    def __init__(self, message: str, context: OracleContext) -> None:
        self.context = context
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.args[0]!r}, context={self.context!r})"
