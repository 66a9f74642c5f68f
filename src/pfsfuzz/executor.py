"""Replay validated sequences against the remote service.

The executor keeps its own live copy of the state model so names and commit
ids thread from one call to the next: the object each call targets is
resolved from the model before the call, and the operation's effect is
applied after it. A tolerable failure applies the same effect as a success,
keeping the model in lockstep with what validation assumed. The first fatal
result stops the run; fatal results are returned as values on the report and
turned into exceptions by the harness driver.

Python 3.13+.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pfsfuzz.catalog import (
    CreateBranch,
    CreateRepo,
    Delimiter,
    DeleteAll,
    DeleteBranch,
    DeleteCommit,
    DeleteFile,
    DeleteRepo,
    DiffFile,
    ExtractRestore,
    FinishCommit,
    FlushCommit,
    GetFile,
    GlobFile,
    InspectBranch,
    InspectCommit,
    InspectFile,
    InspectRepo,
    ListBranch,
    ListCommit,
    ListFile,
    ListRepo,
    OpKind,
    PutFile,
    StartCommit,
    WalkFile,
)
from pfsfuzz.classifier import Classification, ErrorClassifier, Outcome
from pfsfuzz.config import HarnessConfig
from pfsfuzz.errors import ConsistencyCheckError, FatalRemoteError, HarnessFinding
from pfsfuzz.model import State
from pfsfuzz.oracle import ExtractRestoreCycle, PipelineOracle, RunContext, Snapshot, snapshot_state
from pfsfuzz.service import RemoteError
from pfsfuzz.validator import apply_operation

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from pfsfuzz.catalog import Operation
    from pfsfuzz.service import VersionedFileService

__all__ = ["ExecutionReport", "Executor"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutionReport:
    """What happened during one replay.

    Attributes:
        executed: Steps that completed (successfully or tolerably)
        outcomes: Classifier verdict of every remote step, in order
        finding: First defect found, if any
    """

    executed: int = 0
    outcomes: list[Classification] = field(default_factory=list)
    finding: HarnessFinding | None = None

    @property
    def ok(self) -> bool:
        return self.finding is None

    @property
    def tolerated(self) -> list[Classification]:
        return [c for c in self.outcomes if c.outcome is Outcome.TOLERABLE]


class Executor:
    """Runs validated sequences and classifies every remote result."""

    def __init__(
        self,
        service: VersionedFileService,
        classifier: ErrorClassifier | None = None,
        config: HarnessConfig | None = None,
    ) -> None:
        self.service = service
        self.classifier = classifier or ErrorClassifier()
        self.config = config or HarnessConfig(host="localhost")
        self.state = State()
        self._cycle = ExtractRestoreCycle(service, self.config.gc_memory_bytes)

    # --- stepping ---

    def _step(
        self,
        report: ExecutionReport,
        index: int | None,
        kind: OpKind,
        call: Callable[[], Any],
        done: Callable[[Any], None] | None = None,
        *,
        strict: bool = False,
    ) -> bool:
        """Run one remote step; return False when the run must stop.

        With strict, every remote failure is fatal.
        """
        logger.debug("Executing %s (step %s)", kind, index)
        result: Any = None
        try:
            result = call()
        except RemoteError as e:
            verdict = self.classifier.classify(kind, e, strict=strict)
            report.outcomes.append(verdict)
            if verdict.fatal:
                report.finding = FatalRemoteError(verdict, index)
                return False
        except HarnessFinding as e:
            logger.error("Finding at step %s (%s): %s", index, kind, e)
            report.finding = e
            return False
        else:
            report.outcomes.append(self.classifier.success(kind))
        if done is not None:
            done(result)
        report.executed += 1
        return True

    def _check_consistency(self, report: ExecutionReport) -> None:
        try:
            problems = self.service.fsck()
        except RemoteError as e:
            problems = [f"fsck failed: {e}"]
        if problems:
            report.finding = ConsistencyCheckError(problems)

    # --- PFS sequences ---

    def run(self, ops: Sequence[Operation]) -> ExecutionReport:
        """Replay a validated PFS sequence, then run fsck."""
        report = ExecutionReport()
        for index, op in enumerate(ops):
            if not self._step(
                report,
                index,
                op.kind,
                lambda: self._execute(op),  # noqa: B023
                lambda result: self._apply(op, result),  # noqa: B023
                strict=isinstance(op, ExtractRestore),
            ):
                return report
        self._check_consistency(report)
        return report

    def _apply(self, op: Operation, result: Any) -> None:
        target = self.state.closed_branch() if isinstance(op, StartCommit) else None
        apply_operation(self.state, op)
        if target is not None and isinstance(result, str):
            target.commit_id = result

    def _execute(self, op: Operation) -> Any:  # noqa: PLR0911, PLR0912
        service = self.service
        state = self.state
        match op:
            case CreateRepo(name=name, update=update):
                service.create_repo(name.identifier, update=update)

            case InspectRepo():
                return service.inspect_repo(state.repo().name.identifier)

            case ListRepo():
                return service.list_repo()

            case DeleteRepo(all=True, force=force):
                service.delete_all_repos(force=force)

            case DeleteRepo(force=force):
                service.delete_repo(state.repo().name.identifier, force=force)

            case StartCommit():
                branch = state.closed_branch()
                return service.start_commit(branch.repo_name.identifier, branch.name.identifier)

            case FinishCommit():
                branch = state.open_branch()
                service.finish_commit(branch.repo_name.identifier, branch.ref)

            case InspectCommit(block_state=block_state):
                branch = state.branch()
                return service.inspect_commit(
                    branch.repo_name.identifier, branch.ref, block_state=block_state,
                )

            case ListCommit(number=number, reverse=reverse):
                return service.list_commit(
                    state.repo().name.identifier, number=number, reverse=reverse,
                )

            case DeleteCommit():
                branch = state.branch()
                service.delete_commit(branch.repo_name.identifier, branch.ref)

            case FlushCommit():
                branch = state.closed_branch()
                return service.flush_commit(branch.repo_name.identifier, branch.name.identifier)

            case PutFile():
                branch = state.branch()
                service.put_file(
                    branch.repo_name.identifier,
                    branch.ref,
                    op.name.path,
                    op.data,
                    delimiter=None if op.delimiter is Delimiter.NONE else op.delimiter,
                    target_file_datums=op.target_file_datums,
                    target_file_bytes=op.target_file_bytes,
                    header_records=op.header_records,
                    overwrite_index=op.overwrite_index,
                )

            case GetFile(offset_bytes=offset_bytes, size_bytes=size_bytes):
                branch, file = state.top_file()
                return service.get_file(
                    branch.repo_name.identifier,
                    branch.ref,
                    file.path,
                    offset_bytes=offset_bytes,
                    size_bytes=size_bytes,
                )

            case InspectFile():
                branch, file = state.top_file()
                return service.inspect_file(branch.repo_name.identifier, branch.ref, file.path)

            case ListFile(full=full, history=history):
                branch = state.branch()
                return service.list_file(
                    branch.repo_name.identifier, branch.ref, "/", full=full, history=history,
                )

            case WalkFile():
                branch = state.branch()
                return service.walk_file(branch.repo_name.identifier, branch.ref, "/")

            case GlobFile(pattern=pattern):
                branch = state.branch()
                return service.glob_file(branch.repo_name.identifier, branch.ref, pattern)

            case DiffFile(shallow=shallow):
                (new_branch, new_file), (old_branch, old_file) = itertools.islice(
                    state.recent_files(), 2,
                )
                return service.diff_file(
                    (new_branch.repo_name.identifier, new_branch.ref, new_file.path),
                    (old_branch.repo_name.identifier, old_branch.ref, old_file.path),
                    shallow=shallow,
                )

            case DeleteFile():
                branch, file = state.top_file()
                service.delete_file(branch.repo_name.identifier, branch.ref, file.path)

            case CreateBranch(name=name, new=new):
                repo = state.repo()
                head = None if new else repo.closed_branch().name.identifier
                service.create_branch(repo.name.identifier, name.identifier, head=head)

            case InspectBranch():
                branch = state.branch()
                return service.inspect_branch(
                    branch.repo_name.identifier, branch.name.identifier,
                )

            case ListBranch(reverse=reverse):
                return service.list_branch(state.repo().name.identifier, reverse=reverse)

            case DeleteBranch(force=force):
                branch = state.branch()
                service.delete_branch(
                    branch.repo_name.identifier, branch.name.identifier, force=force,
                )

            case DeleteAll():
                service.delete_all()

            case ExtractRestore(no_repos=no_repos):
                return self._cycle.run(
                    op,
                    lambda: snapshot_state(service, state),
                    (lambda _: Snapshot()) if no_repos else None,
                )

            case _:
                msg = f"{op.kind} is not a PFS operation"
                raise ValueError(msg)
        return None

    # --- oracle sequences ---

    def run_oracle(
        self,
        ops: Sequence[Operation],
        context: RunContext | None = None,
    ) -> ExecutionReport:
        """Set up the pipeline oracle, replay its sequence, then run fsck."""
        oracle = PipelineOracle(self.service, self.config, context)
        report = ExecutionReport()
        if not self._step(
            report, None, OpKind.CREATE_REPO, oracle.create_input_repo, strict=True,
        ):
            return report
        if not self._step(
            report, None, OpKind.UPDATE_PIPELINE, oracle.create_pipeline, strict=True,
        ):
            return report
        for index, op in enumerate(ops):
            if not self._step(
                report, index, op.kind, lambda: oracle.apply(op), strict=True,  # noqa: B023
            ):
                return report
        self._check_consistency(report)
        return report
