"""Decode random bytes into candidate operation sequences.

The decoder is a pure function of the bytes it consumes: it builds candidate
values and never consults the state model. Whether a candidate can run is the
validator's job. Input is consumed through the FuzzedDataProvider interface,
so Atheris providers plug in directly and crash files stay self-contained.

Python 3.13+.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from pfsfuzz.catalog import (
    ORACLE_OPERATIONS,
    PFS_OPERATIONS,
    BlockState,
    CreateBranch,
    CreateRepo,
    Delimiter,
    DeleteBranch,
    DeleteRepo,
    DiffFile,
    ExtractRestore,
    GetFile,
    GlobFile,
    InspectCommit,
    ListBranch,
    ListCommit,
    ListFile,
    Operation,
    PutFile,
    UpdatePipeline,
    WriteInput,
)
from pfsfuzz.constants import (
    MAX_GET_FILE_BYTES,
    MAX_HEADER_RECORDS,
    MAX_LIST_COMMIT_NUMBER,
    MAX_LIST_FILE_HISTORY,
    MAX_NAME_BYTES,
    MAX_OPERATIONS,
    MAX_ORACLE_OPERATIONS,
    MAX_OVERWRITE_INDEX,
    MAX_PATTERN_CHARS,
    MAX_PAYLOAD_BYTES,
    MAX_TARGET_FILE_BYTES,
    MAX_TARGET_FILE_DATUMS,
    MIN_LIST_FILE_HISTORY,
)
from pfsfuzz.errors import DecodeError, DecodeFailure
from pfsfuzz.names import Name

__all__ = [
    "DataProvider",
    "decode_name",
    "decode_operation",
    "decode_operations",
    "decode_oracle_operations",
]


class DataProvider(Protocol):
    """The subset of atheris.FuzzedDataProvider the decoder consumes."""

    def ConsumeIntInRange(self, min: int, max: int) -> int: ...  # noqa: N802, A002

    def ConsumeBool(self) -> bool: ...  # noqa: N802

    def ConsumeBytes(self, count: int) -> bytes: ...  # noqa: N802

    def ConsumeUnicodeNoSurrogates(self, count: int) -> str: ...  # noqa: N802

    def remaining_bytes(self) -> int: ...


def _choose[T](provider: DataProvider, options: tuple[T, ...]) -> T:
    return options[provider.ConsumeIntInRange(0, len(options) - 1)]


def decode_name(provider: DataProvider) -> Name:
    """Decode a non-empty name.

    Raises:
        DecodeError: If the input runs out before any name byte
    """
    length = provider.ConsumeIntInRange(1, MAX_NAME_BYTES)
    data = provider.ConsumeBytes(length)
    if not data:
        raise DecodeError(DecodeFailure.INSUFFICIENT_DATA, "empty name")
    return Name(data)


def _decode_put_file(provider: DataProvider) -> PutFile:
    name = decode_name(provider)
    data = provider.ConsumeBytes(provider.ConsumeIntInRange(0, MAX_PAYLOAD_BYTES))
    delimiter = _choose(provider, tuple(Delimiter))
    overwrite = provider.ConsumeBool()
    return PutFile(
        name=name,
        data=data,
        delimiter=delimiter,
        target_file_datums=provider.ConsumeIntInRange(0, MAX_TARGET_FILE_DATUMS),
        target_file_bytes=provider.ConsumeIntInRange(0, MAX_TARGET_FILE_BYTES),
        header_records=provider.ConsumeIntInRange(0, MAX_HEADER_RECORDS),
        overwrite_index=(
            provider.ConsumeIntInRange(0, MAX_OVERWRITE_INDEX) if overwrite else None
        ),
    )


def _decode_glob_file(provider: DataProvider) -> GlobFile:
    pattern = provider.ConsumeUnicodeNoSurrogates(
        provider.ConsumeIntInRange(1, MAX_PATTERN_CHARS),
    )
    if not pattern:
        raise DecodeError(DecodeFailure.INSUFFICIENT_DATA, "empty glob pattern")
    if "\x00" in pattern:
        raise DecodeError(DecodeFailure.INCORRECT_FORMAT, "NUL in glob pattern")
    return GlobFile(pattern=pattern)


def _decode_extract_restore(provider: DataProvider) -> ExtractRestore:
    return ExtractRestore(
        no_objects=provider.ConsumeBool(),
        no_repos=provider.ConsumeBool(),
        no_pipelines=provider.ConsumeBool(),
    )


# Variants with parameters; parameterless variants are built with cls().
_DECODERS: dict[type[Operation], Callable[[DataProvider], Operation]] = {
    CreateRepo: lambda p: CreateRepo(name=decode_name(p), update=p.ConsumeBool()),
    DeleteRepo: lambda p: DeleteRepo(force=p.ConsumeBool(), all=p.ConsumeBool()),
    InspectCommit: lambda p: InspectCommit(block_state=_choose(p, tuple(BlockState))),
    ListCommit: lambda p: ListCommit(
        number=p.ConsumeIntInRange(0, MAX_LIST_COMMIT_NUMBER),
        reverse=p.ConsumeBool(),
    ),
    PutFile: _decode_put_file,
    GetFile: lambda p: GetFile(
        offset_bytes=p.ConsumeIntInRange(0, MAX_GET_FILE_BYTES),
        size_bytes=p.ConsumeIntInRange(0, MAX_GET_FILE_BYTES),
    ),
    ListFile: lambda p: ListFile(
        full=p.ConsumeBool(),
        history=p.ConsumeIntInRange(MIN_LIST_FILE_HISTORY, MAX_LIST_FILE_HISTORY),
    ),
    GlobFile: _decode_glob_file,
    DiffFile: lambda p: DiffFile(shallow=p.ConsumeBool()),
    CreateBranch: lambda p: CreateBranch(name=decode_name(p), new=p.ConsumeBool()),
    ListBranch: lambda p: ListBranch(reverse=p.ConsumeBool()),
    DeleteBranch: lambda p: DeleteBranch(force=p.ConsumeBool()),
    ExtractRestore: _decode_extract_restore,
    WriteInput: lambda p: WriteInput(flush=p.ConsumeBool()),
    UpdatePipeline: lambda p: UpdatePipeline(
        corrupt=p.ConsumeBool(),
        reprocess=p.ConsumeBool(),
    ),
}


def decode_operation(
    provider: DataProvider,
    catalog: tuple[type[Operation], ...] = PFS_OPERATIONS,
) -> Operation:
    """Decode one operation drawn from `catalog`."""
    cls = _choose(provider, catalog)
    decoder = _DECODERS.get(cls)
    return decoder(provider) if decoder is not None else cls()


def _decode_sequence(
    provider: DataProvider,
    catalog: tuple[type[Operation], ...],
    max_operations: int,
) -> list[Operation]:
    ops: list[Operation] = []
    while provider.remaining_bytes() and len(ops) < max_operations:
        ops.append(decode_operation(provider, catalog))
    if not ops:
        raise DecodeError(DecodeFailure.INSUFFICIENT_DATA, "no operations")
    return ops


def decode_operations(
    provider: DataProvider,
    max_operations: int = MAX_OPERATIONS,
) -> list[Operation]:
    """Decode a candidate PFS sequence.

    Decoding stops when input runs out between operations. Running out in
    the middle of a name, or before the first operation, rejects the input.

    Raises:
        DecodeError: If the input is too short or malformed
    """
    return _decode_sequence(provider, PFS_OPERATIONS, max_operations)


def decode_oracle_operations(
    provider: DataProvider,
    max_operations: int = MAX_ORACLE_OPERATIONS,
) -> list[Operation]:
    """Decode a candidate extract/restore oracle sequence.

    Raises:
        DecodeError: If the input is too short or malformed
    """
    return _decode_sequence(provider, ORACLE_OPERATIONS, max_operations)
