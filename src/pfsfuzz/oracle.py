"""Differential extract/restore oracle.

An extract, wipe and restore round trip must be invisible: every masked
record of surviving state reads back exactly as it did before. Snapshots are
compared key by key after masking fields the round trip may legitimately
change (timestamps) and sorting collections it may reorder (provenance).

Two drivers share the same cycle:

- `snapshot_state` covers the repos, branches and files tracked by the PFS
  state model.
- `PipelineOracle` sets up an input repo and a copying pipeline, populates
  them, and additionally checks job history and the pipeline's output bytes
  against the value it expects from the writes it made.

Python 3.13+.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import grpc

from pfsfuzz.catalog import ExtractRestore, UpdatePipeline, WriteInput
from pfsfuzz.config import HarnessConfig
from pfsfuzz.constants import (
    COPY_SCRIPT,
    CORRUPT_SCRIPT,
    CORRUPTED_SENTINEL,
    DEFAULT_GC_MEMORY_BYTES,
    ORACLE_BRANCH,
    ORACLE_FILE_PATH,
    ORACLE_GLOB,
    ORACLE_INPUT_REPO,
    ORACLE_PIPELINE,
    UNORDERED_FIELDS,
    VOLATILE_FIELDS,
)
from pfsfuzz.errors import ConsistencyCheckError, OracleContext, OracleMismatchError
from pfsfuzz.service import RemoteError

if TYPE_CHECKING:
    from collections.abc import Callable

    from pfsfuzz.catalog import Operation
    from pfsfuzz.model import State
    from pfsfuzz.service import Record, VersionedFileService

__all__ = [
    "ExtractRestoreCycle",
    "PipelineOracle",
    "RunContext",
    "Snapshot",
    "SnapshotDiff",
    "canonical_json",
    "diff_snapshots",
    "mask_record",
    "snapshot_state",
]

logger = logging.getLogger(__name__)


# ============================================================================
# MASKING
# ============================================================================


def canonical_json(value: Any) -> str:
    """Stable text form used for sorting and comparing records."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def mask_record(record: Any) -> Any:
    """Clear volatile fields and sort unordered collections, recursively.

    Cleared fields keep their key with a None value, so a field that appears
    or disappears across the round trip is still a difference.
    """
    match record:
        case dict():
            masked: dict[str, Any] = {}
            for key, value in record.items():
                if key in VOLATILE_FIELDS:
                    masked[key] = None
                    continue
                value = mask_record(value)  # noqa: PLW2901
                if key in UNORDERED_FIELDS and isinstance(value, list):
                    value = sorted(value, key=canonical_json)  # noqa: PLW2901
                masked[key] = value
            return masked
        case list() | tuple():
            return [mask_record(item) for item in record]
        case _:
            return record


def _masked(record: Any) -> str:
    return canonical_json(mask_record(record))


# ============================================================================
# SNAPSHOTS
# ============================================================================


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Masked view of surviving cluster state.

    Values of None mark entries that were tracked but not found.
    """

    repos: tuple[str, ...] = ()
    pipelines: tuple[str, ...] = ()
    commits: dict[str, str | None] = field(default_factory=dict)
    jobs: dict[str, str | None] = field(default_factory=dict)
    files: dict[str, bytes | None] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SnapshotDiff:
    key: str
    expected: str | None
    actual: str | None


def _show(value: object) -> str | None:
    match value:
        case None:
            return None
        case bytes():
            return repr(value)
        case _:
            return str(value)


def _diff_section[V](
    section: str, expected: dict[str, V], actual: dict[str, V],
) -> list[SnapshotDiff]:
    return [
        SnapshotDiff(f"{section}:{key}", _show(expected.get(key)), _show(actual.get(key)))
        for key in sorted(expected.keys() | actual.keys())
        if key not in expected or key not in actual or expected[key] != actual[key]
    ]


def diff_snapshots(expected: Snapshot, actual: Snapshot) -> list[SnapshotDiff]:
    """Every entry that differs between two snapshots, in a stable order."""
    diffs: list[SnapshotDiff] = []
    if expected.repos != actual.repos:
        diffs.append(SnapshotDiff("repos", ",".join(expected.repos), ",".join(actual.repos)))
    if expected.pipelines != actual.pipelines:
        diffs.append(
            SnapshotDiff(
                "pipelines", ",".join(expected.pipelines), ",".join(actual.pipelines),
            ),
        )
    diffs.extend(_diff_section("commits", expected.commits, actual.commits))
    diffs.extend(_diff_section("jobs", expected.jobs, actual.jobs))
    diffs.extend(_diff_section("files", expected.files, actual.files))
    return diffs


def _names(records: list[Record], kind: str) -> tuple[str, ...]:
    return tuple(sorted(record.get(kind, {}).get("name", "") for record in records))


def _read_or_none[T](read: Callable[[], T]) -> T | None:
    try:
        return read()
    except RemoteError as e:
        if e.code is grpc.StatusCode.NOT_FOUND:
            return None
        raise


def snapshot_state(service: VersionedFileService, state: State) -> Snapshot:
    """Snapshot every repo, branch head and unsplit file the model tracks."""
    repos = _names(service.list_repo(), "repo")
    commits: dict[str, str | None] = {}
    files: dict[str, bytes | None] = {}
    for repo in state.repos:
        repo_name = repo.name.identifier
        if repo_name not in repos:
            continue
        commits[repo_name] = _masked(service.list_commit(repo_name))
        for branch in repo.branches:
            if not branch.has_head:
                continue
            branch_name = branch.name.identifier
            key = f"{repo_name}@{branch_name}"
            info = _read_or_none(lambda: service.inspect_commit(repo_name, branch_name))  # noqa: B023
            commits[key] = None if info is None else _masked(info)
            for file in branch.files:
                if file.split:
                    continue
                files[f"{key}:{file.path}"] = _read_or_none(
                    lambda: service.get_file(repo_name, branch_name, file.path),  # noqa: B023
                )
    return Snapshot(repos=repos, commits=commits, files=files)


# ============================================================================
# CYCLE
# ============================================================================


class ExtractRestoreCycle:
    """Snapshot, extract, wipe, restore, fsck, snapshot, compare."""

    def __init__(
        self,
        service: VersionedFileService,
        gc_memory_bytes: int = DEFAULT_GC_MEMORY_BYTES,
    ) -> None:
        self._service = service
        self._gc_memory_bytes = gc_memory_bytes

    def run(
        self,
        flags: ExtractRestore,
        snapshot: Callable[[], Snapshot],
        expected: Callable[[Snapshot], Snapshot] | None = None,
    ) -> Snapshot:
        """Run one round trip and return the post-restore snapshot.

        Args:
            flags: Extract exclusions
            snapshot: Reads the current state
            expected: Derives the post-restore expectation from the
                pre-extract snapshot; defaults to identity

        Raises:
            RemoteError: If a remote call fails
            ConsistencyCheckError: If fsck reports problems after restore
            OracleMismatchError: If surviving state differs
        """
        service = self._service
        logger.info("Extract/restore round trip (%s)", flags.describe())
        before = snapshot()
        records = service.extract(
            no_objects=flags.no_objects,
            no_repos=flags.no_repos,
            no_pipelines=flags.no_pipelines,
        )
        logger.info("Extracted %d records; wiping cluster", len(records))
        service.delete_all()
        if flags.no_objects:
            service.garbage_collect(self._gc_memory_bytes)
        service.restore(records)
        problems = service.fsck()
        if problems:
            raise ConsistencyCheckError(problems)
        after = snapshot()
        want = expected(before) if expected is not None else before
        _compare(want, after, phase="restore", flags=flags)
        logger.info("Round trip preserved %d commit and %d file entries",
                    len(after.commits), len(after.files))
        return after


def _compare(want: Snapshot, got: Snapshot, *, phase: str, flags: ExtractRestore) -> None:
    diffs = diff_snapshots(want, got)
    if not diffs:
        return
    first = diffs[0]
    context = OracleContext(
        phase=phase,
        key=first.key,
        expected=first.expected,
        actual=first.actual,
        flags=flags.describe(),
    )
    msg = f"{len(diffs)} snapshot entries differ after {phase}; first: {first.key}"
    raise OracleMismatchError(msg, context)


# ============================================================================
# PIPELINE ORACLE
# ============================================================================


@dataclass(slots=True)
class RunContext:
    """Run-scoped bookkeeping for the pipeline oracle.

    Attributes:
        writes: Input writes made so far; the next value written is its text
        last_value: Bytes of the most recent input write
        corrupt: Whether the pipeline currently runs the corrupting transform
        output: Bytes the pipeline's output file should hold
        input_repo: Whether the input repo still exists
        pipeline: Whether the pipeline still exists
    """

    writes: int = 0
    last_value: bytes | None = None
    corrupt: bool = False
    output: bytes | None = None
    input_repo: bool = True
    pipeline: bool = True

    def next_value(self) -> bytes:
        return str(self.writes).encode("ascii")

    def _transform(self, value: bytes) -> bytes:
        return CORRUPTED_SENTINEL if self.corrupt else value

    def record_write(self, value: bytes) -> None:
        self.writes += 1
        self.last_value = value
        if self.pipeline:
            self.output = self._transform(value)

    def record_update(self, *, corrupt: bool, reprocess: bool) -> None:
        self.corrupt = corrupt
        # Without reprocess, already-processed input keeps its old output.
        if reprocess and self.last_value is not None:
            self.output = self._transform(self.last_value)

    def record_restore(self, flags: ExtractRestore) -> None:
        if flags.no_repos:
            self.input_repo = False
            self.last_value = None
            self.output = None
        if flags.no_pipelines:
            self.pipeline = False


_INPUT_FILE_KEY = f"{ORACLE_INPUT_REPO}@{ORACLE_BRANCH}:{ORACLE_FILE_PATH}"
_OUTPUT_FILE_KEY = f"{ORACLE_PIPELINE}@{ORACLE_BRANCH}:{ORACLE_FILE_PATH}"


class PipelineOracle:
    """Input repo plus copying pipeline, checked across round trips."""

    def __init__(
        self,
        service: VersionedFileService,
        config: HarnessConfig | None = None,
        context: RunContext | None = None,
    ) -> None:
        self._service = service
        self._config = config or HarnessConfig(host="localhost")
        self.context = context or RunContext()
        self._cycle = ExtractRestoreCycle(service, self._config.gc_memory_bytes)

    # --- setup ---

    def create_input_repo(self) -> None:
        logger.info("Creating oracle input repo %s", ORACLE_INPUT_REPO)
        self._service.create_repo(ORACLE_INPUT_REPO)

    def create_pipeline(self) -> None:
        logger.info("Creating oracle pipeline %s", ORACLE_PIPELINE)
        self._deploy(COPY_SCRIPT)

    def setup(self) -> None:
        self.create_input_repo()
        self.create_pipeline()

    def _deploy(self, script: str, *, update: bool = False, reprocess: bool = False) -> None:
        self._service.create_pipeline(
            ORACLE_PIPELINE,
            input_repo=ORACLE_INPUT_REPO,
            glob=ORACLE_GLOB,
            script=script,
            image=self._config.pipeline_image,
            update=update,
            reprocess=reprocess,
        )

    # --- population ---

    def write_input(self, *, flush: bool = False) -> None:
        value = self.context.next_value()
        # Overwrite from index 0 so the file holds only the latest value.
        self._service.put_file(
            ORACLE_INPUT_REPO,
            ORACLE_BRANCH,
            ORACLE_FILE_PATH,
            value,
            overwrite_index=0,
        )
        self.context.record_write(value)
        if flush:
            self._service.flush_commit(ORACLE_INPUT_REPO, ORACLE_BRANCH)

    def update_pipeline(self, *, corrupt: bool = False, reprocess: bool = False) -> None:
        self._deploy(
            CORRUPT_SCRIPT if corrupt else COPY_SCRIPT,
            update=True,
            reprocess=reprocess,
        )
        self.context.record_update(corrupt=corrupt, reprocess=reprocess)

    def apply(self, op: Operation) -> None:
        match op:
            case WriteInput(flush=flush):
                self.write_input(flush=flush)
            case UpdatePipeline(corrupt=corrupt, reprocess=reprocess):
                self.update_pipeline(corrupt=corrupt, reprocess=reprocess)
            case ExtractRestore():
                self.extract_restore(op)
            case _:
                msg = f"{op.kind} is not an oracle operation"
                raise ValueError(msg)

    # --- consistency ---

    def snapshot(self) -> Snapshot:
        """Flush pending jobs, then snapshot commits, jobs and files."""
        service = self._service
        repos = _names(service.list_repo(), "repo")
        if ORACLE_INPUT_REPO in repos and self.context.writes:
            service.flush_commit(ORACLE_INPUT_REPO, ORACLE_BRANCH)
        pipelines = _names(service.list_pipeline(), "pipeline")
        commits: dict[str, str | None] = {}
        jobs: dict[str, str | None] = {}
        files: dict[str, bytes | None] = {}
        for repo, key in ((ORACLE_INPUT_REPO, _INPUT_FILE_KEY), (ORACLE_PIPELINE, _OUTPUT_FILE_KEY)):
            if repo not in repos:
                continue
            commits[repo] = _masked(service.list_commit(repo))
            files[key] = _read_or_none(
                lambda: service.get_file(repo, ORACLE_BRANCH, ORACLE_FILE_PATH),  # noqa: B023
            )
        if ORACLE_PIPELINE in pipelines:
            jobs[ORACLE_PIPELINE] = _masked(
                service.list_job(ORACLE_PIPELINE, history=self._config.job_history),
            )
        return Snapshot(
            repos=repos, pipelines=pipelines, commits=commits, jobs=jobs, files=files,
        )

    def expected_files(self, repos: tuple[str, ...]) -> dict[str, bytes | None]:
        """File bytes the model expects, for whichever oracle repos exist."""
        files: dict[str, bytes | None] = {}
        if ORACLE_INPUT_REPO in repos:
            files[_INPUT_FILE_KEY] = self.context.last_value
        if ORACLE_PIPELINE in repos:
            files[_OUTPUT_FILE_KEY] = self.context.output
        return files

    def extract_restore(self, flags: ExtractRestore) -> Snapshot:
        """Round-trip the cluster and check what survives.

        Raises:
            RemoteError: If a remote call fails
            ConsistencyCheckError: If fsck reports problems after restore
            OracleMismatchError: If surviving state or file bytes differ
        """

        def expected(before: Snapshot) -> Snapshot:
            _compare(
                Snapshot(
                    repos=before.repos,
                    pipelines=before.pipelines,
                    commits=before.commits,
                    jobs=before.jobs,
                    files=self.expected_files(before.repos),
                ),
                before,
                phase="extract",
                flags=flags,
            )
            self.context.record_restore(flags)
            repos = () if flags.no_repos else before.repos
            return Snapshot(
                repos=repos,
                pipelines=() if flags.no_pipelines else before.pipelines,
                commits={} if flags.no_repos else before.commits,
                jobs={} if flags.no_pipelines else before.jobs,
                files=self.expected_files(repos),
            )

        return self._cycle.run(flags, self.snapshot, expected)
