"""Construction-time validation of candidate sequences.

The validator walks a whole candidate list once against a projection of the
state model, checking each operation's preconditions against the cumulative
effect of everything before it. A single unsatisfiable operation rejects the
whole sequence; nothing is truncated or repaired. Rejecting early biases the
mutation-based fuzzer toward self-consistent sequences over time.

Two walks exist: one for PFS sequences and one for the extract/restore
oracle's setup sequence.

Python 3.13+.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pfsfuzz.catalog import (
    BlockState,
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
    PutFile,
    StartCommit,
    UpdatePipeline,
    WalkFile,
    WriteInput,
)
from pfsfuzz.errors import ValidationRejected
from pfsfuzz.model import EmptyStackError, State
from pfsfuzz.payloads import check_put_file

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pfsfuzz.catalog import Operation

__all__ = [
    "OracleProjection",
    "PreconditionError",
    "apply_operation",
    "is_valid",
    "validate_operations",
    "validate_oracle_operations",
]

logger = logging.getLogger(__name__)


class PreconditionError(Exception):
    """A single operation cannot succeed against the projected state."""


def _require(condition: bool, reason: str) -> None:
    if not condition:
        raise PreconditionError(reason)


def apply_operation(state: State, op: Operation) -> None:  # noqa: PLR0912, PLR0915
    """Check one operation's preconditions and apply its effect to `state`.

    Raises:
        PreconditionError: If a precondition does not hold
        EmptyStackError: If the operation needs an object that is not modeled
    """
    match op:
        case CreateRepo(name=name):
            _require(state.find_repo(name) is None, f"repo {name} already exists")
            state.push_repo(name)

        case InspectRepo() | ListCommit() | ListBranch():
            state.repo()

        case ListRepo():
            pass

        case DeleteRepo(all=True):
            state.reset()

        case DeleteRepo():
            state.pop_repo()

        case StartCommit():
            state.closed_branch().start()

        case FinishCommit():
            state.open_branch().finish()

        case InspectCommit(block_state=block_state):
            branch = state.branch()
            _require(branch.has_head, "branch has no head commit")
            # Blocking on READY/FINISHED for an open commit never returns.
            _require(
                not branch.open or block_state is BlockState.STARTED,
                f"would block on {block_state.value} for an open commit",
            )

        case DeleteCommit():
            repo = state.branch_repo()
            branch = state.pop_branch()
            _require(branch.has_head, "branch has no head commit")
            # Other branches would lose commits they still point at.
            _require(not branch.forked, "branch shares commits with another branch")
            # The branch survives on the service, pointing at the parent commit.
            repo.retired.add(branch.name.identifier)

        case FlushCommit():
            _require(state.closed_branch().has_head, "branch has no head commit")

        case PutFile(name=name, delimiter=delimiter, overwrite_index=overwrite_index):
            branch = state.branch()
            reason = check_put_file(op)
            _require(reason is None, reason or "")
            split = delimiter is not Delimiter.NONE
            existing = branch.find_any(name)
            _require(
                existing is None or existing.split == split,
                "file/directory clash at the same path",
            )
            _require(
                overwrite_index is None
                or overwrite_index <= (existing.writes if existing else 0),
                "overwrite_index past the end of the file",
            )
            branch.push_file(name, split=split, overwrite_index=overwrite_index)
            branch.record_write()

        case GetFile():
            _require(not state.file().split, "cannot get a split file")

        case InspectFile():
            state.file()

        case ListFile() | WalkFile() | GlobFile():
            _require(state.branch().has_head, "branch has no head commit")

        case DiffFile():
            # Both files stay on the service; only the stack forgets them.
            for _ in range(2):
                branch, file = state.pop_file()
                branch.detach(file)

        case DeleteFile():
            branch, _ = state.pop_file()
            branch.record_write()

        case CreateBranch(name=name, new=new):
            repo = state.repo()
            _require(not repo.name_taken(name), f"branch {name} already exists")
            source = None
            if not new:
                source = repo.closed_branch()
                _require(source.has_head, "source branch has no head commit")
            repo.push_branch(name, source)

        case InspectBranch():
            state.branch()

        case DeleteBranch(force=force):
            branch = state.pop_branch()
            _require(
                force or (not branch.open and branch.has_head),
                "branch head must be closed and non-empty without force",
            )

        case DeleteAll():
            state.reset()

        case ExtractRestore(no_repos=no_repos):
            _require(state.counts().open_commits == 0, "open commits cannot be extracted")
            if no_repos:
                state.reset()

        case _:
            raise PreconditionError(f"{op.kind} is not a PFS operation")


def validate_operations(ops: Sequence[Operation], state: State | None = None) -> State:
    """Validate a PFS sequence, returning the projected final state.

    The caller's state is never mutated.

    Raises:
        ValidationRejected: On the first operation whose preconditions fail
    """
    projection = state.projection() if state is not None else State()
    for index, op in enumerate(ops):
        try:
            apply_operation(projection, op)
        except (PreconditionError, EmptyStackError) as e:
            logger.debug("Rejected candidate at %d (%s): %s", index, op.kind, e)
            raise ValidationRejected(index, op, str(e)) from None
    return projection


def is_valid(ops: Sequence[Operation], state: State | None = None) -> bool:
    try:
        validate_operations(ops, state)
    except ValidationRejected:
        return False
    return True


@dataclass(slots=True)
class OracleProjection:
    """What survives of the oracle's setup while its sequence is walked."""

    input_repo: bool = True
    pipeline: bool = True
    writes: int = 0


def validate_oracle_operations(ops: Sequence[Operation]) -> OracleProjection:
    """Validate an extract/restore oracle sequence.

    Raises:
        ValidationRejected: On the first operation whose preconditions fail
    """
    projection = OracleProjection()
    for index, op in enumerate(ops):
        match op:
            case WriteInput():
                if not projection.input_repo:
                    raise ValidationRejected(index, op, "input repo was not restored")
                projection.writes += 1
            case UpdatePipeline():
                if not projection.pipeline:
                    raise ValidationRejected(index, op, "pipeline was not restored")
            case ExtractRestore(no_repos=True, no_pipelines=False):
                if projection.pipeline:
                    raise ValidationRejected(
                        index, op, "pipelines cannot be restored without their input repo",
                    )
                projection.input_repo = False
            case ExtractRestore(no_repos=no_repos, no_pipelines=no_pipelines):
                if no_repos:
                    projection.input_repo = False
                if no_pipelines:
                    projection.pipeline = False
            case _:
                raise ValidationRejected(index, op, f"{op.kind} is not an oracle operation")
    return projection
