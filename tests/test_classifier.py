"""Error classifier tests.

Only enumerated (status code, domain reason) pairs are tolerable; every
other remote failure is a defect.
"""

import grpc
import pytest
from hypothesis import event, given
from hypothesis import strategies as st

from pfsfuzz.catalog import OpKind
from pfsfuzz.classifier import (
    DEFAULT_RULES,
    Classification,
    DomainReason,
    ErrorClassifier,
    Outcome,
    TolerableRule,
)
from pfsfuzz.service import RemoteError


class TestDefaultRules:
    """Tests for the default tolerable set."""

    def test_invalid_argument_tolerated_on_parameterized_ops(self) -> None:
        """INVALID_ARGUMENT is a parameter rejection for fuzzed operations."""
        verdict = ErrorClassifier().classify(
            OpKind.PUT_FILE, RemoteError(grpc.StatusCode.INVALID_ARGUMENT, "bad delimiter"),
        )
        assert verdict.outcome is Outcome.TOLERABLE
        assert verdict.reason is DomainReason.INVALID_PARAMETER

    @pytest.mark.parametrize(
        "kind", [OpKind.CREATE_REPO, OpKind.CREATE_BRANCH, OpKind.PUT_FILE],
    )
    def test_already_exists_fatal(self, kind: OpKind) -> None:
        """Validated names are unique, so ALREADY_EXISTS is a defect even on creates."""
        classifier = ErrorClassifier()
        assert classifier.classify(kind, RemoteError(grpc.StatusCode.ALREADY_EXISTS)).fatal
        assert classifier.classify(
            kind, RemoteError(grpc.StatusCode.UNKNOWN, "repo r already exists"),
        ).fatal

    @pytest.mark.parametrize(
        "kind",
        [
            OpKind.DELETE_ALL,
            OpKind.EXTRACT_RESTORE,
            OpKind.WRITE_INPUT,
            OpKind.UPDATE_PIPELINE,
        ],
    )
    def test_invalid_argument_fatal_without_parameters(self, kind: OpKind) -> None:
        """Steps with no fuzzed parameters cannot be rejected for their parameters."""
        verdict = ErrorClassifier().classify(
            kind, RemoteError(grpc.StatusCode.INVALID_ARGUMENT, "bad op"),
        )
        assert verdict.fatal

    def test_strict_ignores_rules(self) -> None:
        """A strict classification is fatal even for a tolerable error."""
        error = RemoteError(grpc.StatusCode.INVALID_ARGUMENT, "bad delimiter")
        classifier = ErrorClassifier()
        assert classifier.classify(OpKind.PUT_FILE, error, strict=True).fatal
        assert not classifier.classify(OpKind.PUT_FILE, error).fatal

    def test_unknown_needs_matching_message(self) -> None:
        """UNKNOWN is tolerated only when its message matches a rule."""
        classifier = ErrorClassifier()
        tolerated = classifier.classify(
            OpKind.GLOB_FILE, RemoteError(grpc.StatusCode.UNKNOWN, "bad Glob: unclosed ["),
        )
        fatal = classifier.classify(
            OpKind.GLOB_FILE, RemoteError(grpc.StatusCode.UNKNOWN, "etcd unavailable"),
        )
        assert tolerated.outcome is Outcome.TOLERABLE
        assert fatal.fatal

    def test_malformed_glob_tolerated(self) -> None:
        """A glob syntax error is a malformed pattern, not a defect."""
        verdict = ErrorClassifier().classify(
            OpKind.GLOB_FILE, RemoteError(grpc.StatusCode.UNKNOWN, "syntax error in pattern"),
        )
        assert verdict.reason is DomainReason.MALFORMED_PATTERN

    @pytest.mark.parametrize(
        "code",
        [
            grpc.StatusCode.NOT_FOUND,
            grpc.StatusCode.INTERNAL,
            grpc.StatusCode.CANCELLED,
            grpc.StatusCode.DEADLINE_EXCEEDED,
            grpc.StatusCode.FAILED_PRECONDITION,
        ],
    )
    def test_unmatched_codes_fatal(self, code: grpc.StatusCode) -> None:
        """Codes no rule covers are fatal, including cancellation and deadlines."""
        assert ErrorClassifier().classify(OpKind.GET_FILE, RemoteError(code)).fatal

    @given(
        st.sampled_from(OpKind),
        st.sampled_from(grpc.StatusCode),
        st.text(max_size=20),
    )
    def test_every_error_classified(
        self, kind: OpKind, code: grpc.StatusCode, details: str,
    ) -> None:
        """Property: errors are tolerable or fatal, never success."""
        verdict = ErrorClassifier().classify(kind, RemoteError(code, details))
        event(f"outcome={verdict.outcome.value}")
        assert verdict.outcome in (Outcome.TOLERABLE, Outcome.FATAL)
        assert (verdict.reason is None) == verdict.fatal


class TestClassifierBookkeeping:
    """Counts, extra rules and rendering."""

    def test_counts(self) -> None:
        """Every verdict is counted by outcome."""
        classifier = ErrorClassifier()
        classifier.success(OpKind.LIST_REPO)
        classifier.classify(OpKind.LIST_REPO, RemoteError(grpc.StatusCode.INTERNAL))
        classifier.classify(OpKind.LIST_REPO, RemoteError(grpc.StatusCode.INVALID_ARGUMENT))
        assert classifier.counts == {Outcome.SUCCESS: 1, Outcome.TOLERABLE: 1, Outcome.FATAL: 1}

    def test_with_rules_extends_defaults(self) -> None:
        """Extra rules apply after the defaults and only to their kinds."""
        extra = TolerableRule(
            reason=DomainReason.INVALID_PARAMETER,
            codes=frozenset({grpc.StatusCode.OUT_OF_RANGE}),
            op_kinds=frozenset({OpKind.GET_FILE}),
        )
        classifier = ErrorClassifier.with_rules([extra])
        assert classifier.rules == (*DEFAULT_RULES, extra)
        error = RemoteError(grpc.StatusCode.OUT_OF_RANGE)
        assert not classifier.classify(OpKind.GET_FILE, error).fatal
        assert classifier.classify(OpKind.LIST_FILE, error).fatal

    def test_str(self) -> None:
        """Verdicts render kind, outcome and the remote error."""
        ok = Classification(op_kind=OpKind.LIST_REPO, outcome=Outcome.SUCCESS)
        assert str(ok) == "list_repo: success"
        fatal = Classification(
            op_kind=OpKind.GET_FILE,
            outcome=Outcome.FATAL,
            error=RemoteError(grpc.StatusCode.INTERNAL, "boom"),
        )
        assert str(fatal) == "get_file: fatal: INTERNAL: boom"
