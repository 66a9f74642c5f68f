"""Error classification: tolerable domain rejections versus defects.

The validator proves every executed call should succeed under the model, so
any failure at execution time is presumed to be a defect unless it matches a
small, enumerated set of tolerable (status code, domain reason) rules. Rules
match on structured data first; message fragments are a fallback for errors
the service only reports as UNKNOWN with free text.

Python 3.13+.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import TYPE_CHECKING

import grpc

from pfsfuzz.catalog import OpKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pfsfuzz.service import RemoteError

__all__ = [
    "DEFAULT_RULES",
    "Classification",
    "DomainReason",
    "ErrorClassifier",
    "Outcome",
    "TolerableRule",
]

logger = logging.getLogger(__name__)


class Outcome(Enum):
    SUCCESS = "success"
    TOLERABLE = "tolerable"
    FATAL = "fatal"


class DomainReason(StrEnum):
    """Why a remote failure is an acceptable domain rejection."""

    INVALID_PARAMETER = "invalid_parameter"
    MALFORMED_PATTERN = "malformed_pattern"


@dataclass(frozen=True, slots=True)
class TolerableRule:
    """One tolerable (status code, domain reason) pair.

    Attributes:
        reason: Domain reason this rule recognizes
        codes: Status codes the rule applies to
        op_kinds: Operations the rule applies to (empty means every operation)
        message_fragments: Required substrings for UNKNOWN codes (any match).
            Structured codes other than UNKNOWN match without a fragment.
    """

    reason: DomainReason
    codes: frozenset[grpc.StatusCode]
    op_kinds: frozenset[OpKind] = frozenset()
    message_fragments: tuple[str, ...] = ()

    def matches(self, op_kind: OpKind, error: RemoteError) -> bool:
        if error.code not in self.codes:
            return False
        if self.op_kinds and op_kind not in self.op_kinds:
            return False
        if error.code is grpc.StatusCode.UNKNOWN and self.message_fragments:
            details = error.details.lower()
            return any(fragment in details for fragment in self.message_fragments)
        return True


# Steps with no fuzzed parameters; INVALID_ARGUMENT from them is a defect.
_UNPARAMETERIZED = frozenset(
    {OpKind.DELETE_ALL, OpKind.EXTRACT_RESTORE, OpKind.WRITE_INPUT, OpKind.UPDATE_PIPELINE},
)

DEFAULT_RULES: tuple[TolerableRule, ...] = (
    TolerableRule(
        reason=DomainReason.INVALID_PARAMETER,
        codes=frozenset({grpc.StatusCode.INVALID_ARGUMENT}),
        op_kinds=frozenset(OpKind) - _UNPARAMETERIZED,
    ),
    TolerableRule(
        reason=DomainReason.MALFORMED_PATTERN,
        codes=frozenset({grpc.StatusCode.INVALID_ARGUMENT, grpc.StatusCode.UNKNOWN}),
        op_kinds=frozenset({OpKind.GLOB_FILE}),
        message_fragments=("pattern", "glob"),
    ),
)


@dataclass(frozen=True, slots=True)
class Classification:
    """Classifier verdict for one remote call."""

    op_kind: OpKind
    outcome: Outcome
    error: RemoteError | None = None
    reason: DomainReason | None = None

    @property
    def fatal(self) -> bool:
        return self.outcome is Outcome.FATAL

    def __str__(self) -> str:
        if self.error is None:
            return f"{self.op_kind}: {self.outcome.value}"
        suffix = f" ({self.reason})" if self.reason else ""
        return f"{self.op_kind}: {self.outcome.value}{suffix}: {self.error}"


@dataclass(slots=True)
class ErrorClassifier:
    """Maps remote failures into tolerable or fatal buckets.

    Anything not matched by a rule is fatal, including UNKNOWN, CANCELLED
    and DEADLINE_EXCEEDED. There are no retries.
    """

    rules: tuple[TolerableRule, ...] = DEFAULT_RULES
    counts: dict[Outcome, int] = field(default_factory=lambda: dict.fromkeys(Outcome, 0))

    @classmethod
    def with_rules(cls, extra: Iterable[TolerableRule]) -> ErrorClassifier:
        return cls(rules=(*DEFAULT_RULES, *extra))

    def success(self, op_kind: OpKind) -> Classification:
        self.counts[Outcome.SUCCESS] += 1
        return Classification(op_kind=op_kind, outcome=Outcome.SUCCESS)

    def classify(
        self, op_kind: OpKind, error: RemoteError, *, strict: bool = False,
    ) -> Classification:
        """Classify one failed call; with strict, no rule applies."""
        for rule in () if strict else self.rules:
            if rule.matches(op_kind, error):
                self.counts[Outcome.TOLERABLE] += 1
                logger.warning("Tolerated %s error (%s): %s", op_kind, rule.reason, error)
                return Classification(
                    op_kind=op_kind,
                    outcome=Outcome.TOLERABLE,
                    error=error,
                    reason=rule.reason,
                )
        self.counts[Outcome.FATAL] += 1
        logger.error("Unexpected %s error: %s", op_kind, error)
        return Classification(op_kind=op_kind, outcome=Outcome.FATAL, error=error)
