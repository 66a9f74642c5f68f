"""Operation catalog.

A closed set of tagged operation variants, one per remote capability the
harness exercises. Each variant carries exactly the parameters needed to
build one remote call; the object it acts on is never part of the variant
because the state model always selects the most recently created object of
the relevant kind.

Adding a capability means adding a variant here plus matching arms in the
decoder, validator and executor. CopyFile is deliberately unmodeled.

Python 3.13+.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Any, ClassVar

from pfsfuzz.names import Name

__all__ = [
    "ORACLE_OPERATIONS",
    "PFS_OPERATIONS",
    "BlockState",
    "CreateBranch",
    "CreateRepo",
    "Delimiter",
    "DeleteAll",
    "DeleteBranch",
    "DeleteCommit",
    "DeleteFile",
    "DeleteRepo",
    "DiffFile",
    "ExtractRestore",
    "FinishCommit",
    "FlushCommit",
    "GetFile",
    "GlobFile",
    "InspectBranch",
    "InspectCommit",
    "InspectFile",
    "InspectRepo",
    "ListBranch",
    "ListCommit",
    "ListFile",
    "ListRepo",
    "OpKind",
    "Operation",
    "PutFile",
    "StartCommit",
    "UpdatePipeline",
    "WalkFile",
    "WriteInput",
    "op_from_dict",
    "op_to_dict",
    "ops_from_json",
    "ops_to_json",
]


class OpKind(StrEnum):
    """Tag of every operation variant."""

    CREATE_REPO = "create_repo"
    INSPECT_REPO = "inspect_repo"
    LIST_REPO = "list_repo"
    DELETE_REPO = "delete_repo"

    START_COMMIT = "start_commit"
    FINISH_COMMIT = "finish_commit"
    INSPECT_COMMIT = "inspect_commit"
    LIST_COMMIT = "list_commit"
    DELETE_COMMIT = "delete_commit"
    FLUSH_COMMIT = "flush_commit"

    PUT_FILE = "put_file"
    GET_FILE = "get_file"
    INSPECT_FILE = "inspect_file"
    LIST_FILE = "list_file"
    WALK_FILE = "walk_file"
    GLOB_FILE = "glob_file"
    DIFF_FILE = "diff_file"
    DELETE_FILE = "delete_file"

    CREATE_BRANCH = "create_branch"
    INSPECT_BRANCH = "inspect_branch"
    LIST_BRANCH = "list_branch"
    DELETE_BRANCH = "delete_branch"

    DELETE_ALL = "delete_all"
    EXTRACT_RESTORE = "extract_restore"

    WRITE_INPUT = "write_input"
    UPDATE_PIPELINE = "update_pipeline"


class Delimiter(Enum):
    """Record delimiter for PutFile."""

    NONE = "NONE"
    JSON = "JSON"
    LINE = "LINE"
    SQL = "SQL"
    CSV = "CSV"


class BlockState(Enum):
    """Commit state InspectCommit blocks on."""

    STARTED = "STARTED"
    READY = "READY"
    FINISHED = "FINISHED"


# ============================================================================
# REPOS
# ============================================================================


@dataclass(frozen=True, slots=True)
class CreateRepo:
    kind: ClassVar[OpKind] = OpKind.CREATE_REPO

    name: Name
    update: bool = False


@dataclass(frozen=True, slots=True)
class InspectRepo:
    kind: ClassVar[OpKind] = OpKind.INSPECT_REPO


@dataclass(frozen=True, slots=True)
class ListRepo:
    kind: ClassVar[OpKind] = OpKind.LIST_REPO


@dataclass(frozen=True, slots=True)
class DeleteRepo:
    """Delete the top repo, or every repo when `all` is set."""

    kind: ClassVar[OpKind] = OpKind.DELETE_REPO

    force: bool = False
    all: bool = False


# ============================================================================
# COMMITS
# ============================================================================


@dataclass(frozen=True, slots=True)
class StartCommit:
    kind: ClassVar[OpKind] = OpKind.START_COMMIT


@dataclass(frozen=True, slots=True)
class FinishCommit:
    kind: ClassVar[OpKind] = OpKind.FINISH_COMMIT


@dataclass(frozen=True, slots=True)
class InspectCommit:
    kind: ClassVar[OpKind] = OpKind.INSPECT_COMMIT

    block_state: BlockState = BlockState.STARTED


@dataclass(frozen=True, slots=True)
class ListCommit:
    kind: ClassVar[OpKind] = OpKind.LIST_COMMIT

    number: int = 0
    reverse: bool = False


@dataclass(frozen=True, slots=True)
class DeleteCommit:
    kind: ClassVar[OpKind] = OpKind.DELETE_COMMIT


@dataclass(frozen=True, slots=True)
class FlushCommit:
    kind: ClassVar[OpKind] = OpKind.FLUSH_COMMIT


# ============================================================================
# FILES
# ============================================================================


@dataclass(frozen=True, slots=True)
class PutFile:
    """Write `data` at `/<name>` on the top branch.

    With a delimiter other than NONE the service splits the payload into
    record chunks stored under a directory at the path.
    """

    kind: ClassVar[OpKind] = OpKind.PUT_FILE

    name: Name
    data: bytes = b""
    delimiter: Delimiter = Delimiter.NONE
    target_file_datums: int = 0
    target_file_bytes: int = 0
    header_records: int = 0
    overwrite_index: int | None = None


@dataclass(frozen=True, slots=True)
class GetFile:
    kind: ClassVar[OpKind] = OpKind.GET_FILE

    offset_bytes: int = 0
    size_bytes: int = 0


@dataclass(frozen=True, slots=True)
class InspectFile:
    kind: ClassVar[OpKind] = OpKind.INSPECT_FILE


@dataclass(frozen=True, slots=True)
class ListFile:
    kind: ClassVar[OpKind] = OpKind.LIST_FILE

    full: bool = False
    history: int = 0


@dataclass(frozen=True, slots=True)
class WalkFile:
    kind: ClassVar[OpKind] = OpKind.WALK_FILE


@dataclass(frozen=True, slots=True)
class GlobFile:
    kind: ClassVar[OpKind] = OpKind.GLOB_FILE

    pattern: str = "*"


@dataclass(frozen=True, slots=True)
class DiffFile:
    """Diff the two top files; both leave the model afterwards."""

    kind: ClassVar[OpKind] = OpKind.DIFF_FILE

    shallow: bool = False


@dataclass(frozen=True, slots=True)
class DeleteFile:
    kind: ClassVar[OpKind] = OpKind.DELETE_FILE


# ============================================================================
# BRANCHES
# ============================================================================


@dataclass(frozen=True, slots=True)
class CreateBranch:
    """Create a branch in the top repo.

    With `new` unset the branch starts at the head of the top closed branch
    of the same repo.
    """

    kind: ClassVar[OpKind] = OpKind.CREATE_BRANCH

    name: Name
    new: bool = True


@dataclass(frozen=True, slots=True)
class InspectBranch:
    kind: ClassVar[OpKind] = OpKind.INSPECT_BRANCH


@dataclass(frozen=True, slots=True)
class ListBranch:
    kind: ClassVar[OpKind] = OpKind.LIST_BRANCH

    reverse: bool = False


@dataclass(frozen=True, slots=True)
class DeleteBranch:
    kind: ClassVar[OpKind] = OpKind.DELETE_BRANCH

    force: bool = False


# ============================================================================
# CLUSTER
# ============================================================================


@dataclass(frozen=True, slots=True)
class DeleteAll:
    kind: ClassVar[OpKind] = OpKind.DELETE_ALL


@dataclass(frozen=True, slots=True)
class ExtractRestore:
    """Extract the whole cluster, wipe it, and restore from the extract."""

    kind: ClassVar[OpKind] = OpKind.EXTRACT_RESTORE

    no_objects: bool = False
    no_repos: bool = False
    no_pipelines: bool = False

    def describe(self) -> str:
        return (
            f"no_objects={self.no_objects} "
            f"no_repos={self.no_repos} "
            f"no_pipelines={self.no_pipelines}"
        )


# ============================================================================
# ORACLE SETUP
# ============================================================================


@dataclass(frozen=True, slots=True)
class WriteInput:
    """Write the next counter value to the oracle's input file."""

    kind: ClassVar[OpKind] = OpKind.WRITE_INPUT

    flush: bool = False


@dataclass(frozen=True, slots=True)
class UpdatePipeline:
    """Swap the oracle pipeline's transform between copy and corrupt."""

    kind: ClassVar[OpKind] = OpKind.UPDATE_PIPELINE

    corrupt: bool = False
    reprocess: bool = False


type Operation = (
    CreateRepo
    | InspectRepo
    | ListRepo
    | DeleteRepo
    | StartCommit
    | FinishCommit
    | InspectCommit
    | ListCommit
    | DeleteCommit
    | FlushCommit
    | PutFile
    | GetFile
    | InspectFile
    | ListFile
    | WalkFile
    | GlobFile
    | DiffFile
    | DeleteFile
    | CreateBranch
    | InspectBranch
    | ListBranch
    | DeleteBranch
    | DeleteAll
    | ExtractRestore
    | WriteInput
    | UpdatePipeline
)

# Decoding order. Appending keeps existing corpora decodable; reordering does not.
PFS_OPERATIONS: tuple[type[Operation], ...] = (
    CreateRepo,
    InspectRepo,
    ListRepo,
    DeleteRepo,
    StartCommit,
    FinishCommit,
    InspectCommit,
    ListCommit,
    DeleteCommit,
    FlushCommit,
    PutFile,
    GetFile,
    InspectFile,
    ListFile,
    WalkFile,
    GlobFile,
    DiffFile,
    DeleteFile,
    CreateBranch,
    InspectBranch,
    ListBranch,
    DeleteBranch,
    DeleteAll,
    ExtractRestore,
)

ORACLE_OPERATIONS: tuple[type[Operation], ...] = (
    WriteInput,
    UpdatePipeline,
    ExtractRestore,
)

_BY_KIND: dict[OpKind, type[Operation]] = {
    cls.kind: cls for cls in (*PFS_OPERATIONS, *ORACLE_OPERATIONS)
}


# ============================================================================
# SERIALIZATION (finding artifacts)
# ============================================================================


def _encode_value(value: object) -> Any:
    match value:
        case Name():
            return value.data.hex()
        case bytes():
            return value.hex()
        case Enum():
            return value.value
        case _:
            return value


_FIELD_DECODERS: dict[str, Any] = {
    "name": lambda raw: Name(bytes.fromhex(raw)),
    "data": bytes.fromhex,
    "delimiter": Delimiter,
    "block_state": BlockState,
}


def op_to_dict(op: Operation) -> dict[str, Any]:
    """Convert an operation to a JSON-compatible dict."""
    result: dict[str, Any] = {"op": op.kind.value}
    for f in dataclasses.fields(op):
        result[f.name] = _encode_value(getattr(op, f.name))
    return result


def op_from_dict(raw: dict[str, Any]) -> Operation:
    """Rebuild an operation from `op_to_dict` output.

    Raises:
        ValueError: If the tag is unknown or fields do not match the variant
    """
    fields = dict(raw)
    kind = OpKind(fields.pop("op"))
    cls = _BY_KIND[kind]
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(fields) - known
    if unknown:
        msg = f"unknown fields for {kind}: {sorted(unknown)}"
        raise ValueError(msg)
    kwargs = {
        key: _FIELD_DECODERS[key](value) if key in _FIELD_DECODERS else value
        for key, value in fields.items()
    }
    return cls(**kwargs)


def ops_to_json(ops: list[Operation]) -> str:
    return json.dumps([op_to_dict(op) for op in ops], indent=2)


def ops_from_json(text: str) -> list[Operation]:
    return [op_from_dict(raw) for raw in json.loads(text)]
