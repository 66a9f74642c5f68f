"""Hypothesis strategies for operations and operation sequences.

Provides strategies for names, well-formed PutFile payloads for every
delimiter, single operations of every variant, and sequences that the state
model accepts. Sequence strategies build candidates incrementally against a
projection, so every drawn sequence passes validation by construction.

Usage:
    from hypothesis import given
    from tests.strategies.ops import valid_sequences

    @given(ops=valid_sequences())
    def test_replay(ops):
        ...
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from hypothesis import event
from hypothesis import strategies as st
from hypothesis.strategies import composite

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
from pfsfuzz.constants import (
    MAX_LIST_COMMIT_NUMBER,
    MAX_LIST_FILE_HISTORY,
    MAX_NAME_BYTES,
    MAX_TARGET_FILE_BYTES,
    MAX_TARGET_FILE_DATUMS,
    MIN_LIST_FILE_HISTORY,
)
from pfsfuzz.errors import ValidationRejected
from pfsfuzz.model import EmptyStackError, State
from pfsfuzz.names import Name
from pfsfuzz.validator import PreconditionError, apply_operation, validate_oracle_operations

if TYPE_CHECKING:
    from hypothesis.strategies import DrawFn, SearchStrategy

    from pfsfuzz.catalog import Operation

# ============================================================================
# BYTE-DRIVEN DATA PROVIDER
# ============================================================================


class ByteProvider:
    """Deterministic stand-in for atheris.FuzzedDataProvider.

    Consumes a fixed buffer front to back. Exhausted reads return the
    smallest legal value, matching the Atheris provider's behavior.
    """

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def _take(self, count: int) -> bytes:
        chunk = self._data[self._pos : self._pos + max(count, 0)]
        self._pos += len(chunk)
        return chunk

    def ConsumeIntInRange(self, min: int, max: int) -> int:  # noqa: N802, A002
        span = max - min
        if span <= 0:
            return min
        width = (span.bit_length() + 7) // 8
        raw = self._take(width)
        if not raw:
            return min
        return min + int.from_bytes(raw, "big") % (span + 1)

    def ConsumeBool(self) -> bool:  # noqa: N802
        raw = self._take(1)
        return bool(raw and raw[0] & 1)

    def ConsumeBytes(self, count: int) -> bytes:  # noqa: N802
        return self._take(count)

    def ConsumeUnicodeNoSurrogates(self, count: int) -> str:  # noqa: N802
        return self._take(count).decode("latin-1")

    def remaining_bytes(self) -> int:
        return len(self._data) - self._pos


byte_providers: SearchStrategy[ByteProvider] = st.binary(max_size=512).map(ByteProvider)


# ============================================================================
# NAMES
# ============================================================================

# A small pool makes collisions and reuse likely enough to matter.
_POOL: list[Name] = [Name(b"a"), Name(b"b"), Name(b"c"), Name(b"\xfb\xff")]

names: SearchStrategy[Name] = st.one_of(
    st.sampled_from(_POOL),
    st.binary(min_size=1, max_size=MAX_NAME_BYTES).map(Name),
)

# Files share one pool so DiffFile and overwrite paths hit existing entries.
file_names: SearchStrategy[Name] = st.sampled_from(_POOL)


# ============================================================================
# PAYLOADS
# ============================================================================

_words = st.from_regex(r"[a-z0-9]{1,6}", fullmatch=True)


@composite
def _line_payload(draw: DrawFn) -> bytes:
    lines = draw(st.lists(_words, min_size=1, max_size=6))
    return "".join(f"{line}\n" for line in lines).encode()


@composite
def _json_payload(draw: DrawFn) -> bytes:
    values = draw(
        st.lists(
            st.one_of(st.integers(-1000, 1000), _words, st.dictionaries(_words, st.booleans())),
            min_size=1,
            max_size=5,
        ),
    )
    return "\n".join(json.dumps(v) for v in values).encode()


@composite
def _csv_payload(draw: DrawFn) -> bytes:
    rows = draw(st.lists(st.lists(_words, min_size=1, max_size=3), min_size=1, max_size=6))
    return "".join(",".join(row) + "\n" for row in rows).encode()


@composite
def _sql_payload(draw: DrawFn) -> bytes:
    rows = draw(st.lists(_words, min_size=1, max_size=6))
    body = "".join(f"{row}\t{len(row)}\n" for row in rows)
    return f"COPY t (a, b) FROM stdin;\n{body}\\.\n".encode()


_PAYLOADS: dict[Delimiter, SearchStrategy[bytes]] = {
    Delimiter.LINE: _line_payload(),
    Delimiter.JSON: _json_payload(),
    Delimiter.CSV: _csv_payload(),
    Delimiter.SQL: _sql_payload(),
}


@composite
def put_files(draw: DrawFn) -> PutFile:
    """PutFile with a payload that splits under its delimiter."""
    name = draw(file_names)
    delimiter = draw(st.sampled_from(Delimiter))
    event(f"put_file_delimiter={delimiter.value}")
    if delimiter is Delimiter.NONE:
        return PutFile(
            name=name,
            data=draw(st.binary(max_size=64)),
            overwrite_index=draw(st.none() | st.integers(0, 2)),
        )
    data = draw(_PAYLOADS[delimiter])
    headers = 0
    if delimiter in (Delimiter.CSV, Delimiter.SQL):
        headers = draw(st.integers(0, 2))
    return PutFile(
        name=name,
        data=data,
        delimiter=delimiter,
        target_file_datums=draw(st.integers(0, MAX_TARGET_FILE_DATUMS)),
        target_file_bytes=draw(st.integers(0, MAX_TARGET_FILE_BYTES)),
        header_records=headers,
    )


# ============================================================================
# OPERATIONS
# ============================================================================

_bools = st.booleans()

extract_restores: SearchStrategy[ExtractRestore] = st.builds(
    ExtractRestore, no_objects=_bools, no_repos=_bools, no_pipelines=_bools,
)

_glob_patterns = st.sampled_from(["*", "/*", "a*", "/[ab]*", "?", "**"])

operations: SearchStrategy[Operation] = st.one_of(
    st.builds(CreateRepo, name=names, update=_bools),
    st.just(InspectRepo()),
    st.just(ListRepo()),
    st.builds(DeleteRepo, force=_bools),
    st.just(StartCommit()),
    st.just(FinishCommit()),
    st.builds(InspectCommit, block_state=st.sampled_from(BlockState)),
    st.builds(ListCommit, number=st.integers(0, MAX_LIST_COMMIT_NUMBER), reverse=_bools),
    st.just(DeleteCommit()),
    st.just(FlushCommit()),
    put_files(),
    st.builds(GetFile, offset_bytes=st.integers(0, 8), size_bytes=st.integers(0, 8)),
    st.just(InspectFile()),
    st.builds(
        ListFile,
        full=_bools,
        history=st.integers(MIN_LIST_FILE_HISTORY, MAX_LIST_FILE_HISTORY),
    ),
    st.just(WalkFile()),
    st.builds(GlobFile, pattern=_glob_patterns),
    st.builds(DiffFile, shallow=_bools),
    st.just(DeleteFile()),
    st.builds(CreateBranch, name=names, new=_bools),
    st.just(InspectBranch()),
    st.builds(ListBranch, reverse=_bools),
    st.builds(DeleteBranch, force=_bools),
)
"""Every PFS variant except the cluster-wide ones (see valid_sequences)."""

_cluster_operations: SearchStrategy[Operation] = st.one_of(
    st.just(DeleteAll()),
    st.just(DeleteRepo(all=True)),
    extract_restores,
)


@composite
def valid_sequences(
    draw: DrawFn,
    max_size: int = 20,
    *,
    cluster_ops: bool = True,
) -> list[Operation]:
    """Operation sequences the state model accepts, built one step at a time."""
    candidates = operations
    if cluster_ops:
        candidates = st.one_of(operations, operations, operations, _cluster_operations)
    target = draw(st.integers(0, max_size))
    state = State()
    ops: list[Operation] = []
    for _ in range(target * 4):
        if len(ops) >= target:
            break
        op = draw(candidates)
        projection = state.projection()
        try:
            apply_operation(projection, op)
        except (PreconditionError, EmptyStackError):
            continue
        state = projection
        ops.append(op)
    event(f"sequence_length={len(ops) // 5 * 5}+")
    counts = state.counts()
    event(f"final_repos={min(counts.repos, 3)}")
    return ops


# ============================================================================
# ORACLE OPERATIONS
# ============================================================================

oracle_operations: SearchStrategy[Operation] = st.one_of(
    st.builds(WriteInput, flush=_bools),
    st.builds(WriteInput, flush=_bools),
    st.builds(UpdatePipeline, corrupt=_bools, reprocess=_bools),
    extract_restores,
)


@composite
def oracle_sequences(draw: DrawFn, max_size: int = 8) -> list[Operation]:
    """Oracle sequences that pass oracle validation."""
    target = draw(st.integers(1, max_size))
    ops: list[Operation] = []
    for _ in range(target * 4):
        if len(ops) >= target:
            break
        op = draw(oracle_operations)
        try:
            validate_oracle_operations([*ops, op])
        except ValidationRejected:
            continue
        ops.append(op)
    event(f"oracle_extracts={sum(isinstance(op, ExtractRestore) for op in ops)}")
    return ops
