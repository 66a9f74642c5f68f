"""Pachyderm adapter for the service boundary.

Wraps `python_pachyderm.Client`: commits are passed as (repo, ref) tuples,
protobuf responses become dicts keyed by proto field name, and every
`grpc.RpcError` becomes a `RemoteError` carrying its status code. Extract
records stay as protobuf messages because restore replays them verbatim.

Python 3.13+.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any

import grpc
from google.protobuf.json_format import MessageToDict
from google.protobuf.message import Message

from pfsfuzz.catalog import Delimiter
from pfsfuzz.service import RemoteError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from pfsfuzz.catalog import BlockState
    from pfsfuzz.config import HarnessConfig
    from pfsfuzz.service import FileRef, Record

__all__ = ["PachydermService", "connect", "to_record"]

logger = logging.getLogger(__name__)


def to_record(value: Any) -> Record:
    """Convert a response message to a dict; non-messages pass through."""
    if isinstance(value, Message):
        return MessageToDict(value, preserving_proto_field_name=True)
    return value


def _to_records(values: Iterable[Any] | None) -> list[Record]:
    if values is None:
        return []
    return [to_record(v) for v in values]


def _remote[**P, R](method: Callable[P, R]) -> Callable[P, R]:
    """Translate gRPC failures raised by `method` into RemoteError."""

    @functools.wraps(method)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return method(*args, **kwargs)
        except grpc.RpcError as e:
            code = e.code() if callable(getattr(e, "code", None)) else grpc.StatusCode.UNKNOWN
            details = e.details() if callable(getattr(e, "details", None)) else str(e)
            raise RemoteError(code, details or "") from e

    return wrapper


class PachydermService:
    """`VersionedFileService` backed by a python_pachyderm client."""

    def __init__(self, client: Any) -> None:
        self._client = client
        # Imported here so the rest of the package works without a cluster SDK.
        from python_pachyderm.proto.admin import admin_pb2  # noqa: PLC0415
        from python_pachyderm.proto.pfs import pfs_pb2  # noqa: PLC0415
        from python_pachyderm.service import Service  # noqa: PLC0415

        self._admin_pb2 = admin_pb2
        self._pfs_pb2 = pfs_pb2
        self._service = Service

    # --- repos ---

    @_remote
    def create_repo(self, repo: str, *, update: bool = False) -> None:
        self._client.create_repo(repo, update=update)

    @_remote
    def inspect_repo(self, repo: str) -> Record:
        return to_record(self._client.inspect_repo(repo))

    @_remote
    def list_repo(self) -> list[Record]:
        return _to_records(self._client.list_repo())

    @_remote
    def delete_repo(self, repo: str, *, force: bool = False) -> None:
        self._client.delete_repo(repo, force=force)

    @_remote
    def delete_all_repos(self, *, force: bool = False) -> None:
        if not force:
            self._client.delete_all_repos()
            return
        # The client helper does not expose force for the all-repos form.
        self._client._req(self._service.PFS, "DeleteRepo", all=True, force=True)  # noqa: SLF001

    # --- commits ---

    @_remote
    def start_commit(self, repo: str, branch: str) -> str:
        return self._client.start_commit(repo, branch=branch).id

    @_remote
    def finish_commit(self, repo: str, commit: str) -> None:
        self._client.finish_commit((repo, commit))

    @_remote
    def inspect_commit(
        self, repo: str, commit: str, *, block_state: BlockState | None = None,
    ) -> Record:
        state = None
        if block_state is not None:
            state = self._pfs_pb2.CommitState.Value(block_state.value)
        return to_record(self._client.inspect_commit((repo, commit), block_state=state))

    @_remote
    def list_commit(self, repo: str, *, number: int = 0, reverse: bool = False) -> list[Record]:
        return _to_records(self._client.list_commit(repo, number=number, reverse=reverse))

    @_remote
    def delete_commit(self, repo: str, commit: str) -> None:
        self._client.delete_commit((repo, commit))

    @_remote
    def flush_commit(self, repo: str, commit: str) -> list[Record]:
        return _to_records(self._client.flush_commit([(repo, commit)]))

    # --- files ---

    @_remote
    def put_file(  # noqa: PLR0913
        self,
        repo: str,
        commit: str,
        path: str,
        data: bytes,
        *,
        delimiter: Delimiter | None = None,
        target_file_datums: int = 0,
        target_file_bytes: int = 0,
        header_records: int = 0,
        overwrite_index: int | None = None,
    ) -> None:
        kind = delimiter or Delimiter.NONE
        self._client.put_file_bytes(
            (repo, commit),
            path,
            data,
            delimiter=self._pfs_pb2.Delimiter.Value(kind.value),
            target_file_datums=target_file_datums,
            target_file_bytes=target_file_bytes,
            header_records=header_records,
            overwrite_index=overwrite_index,
        )

    @_remote
    def get_file(
        self, repo: str, commit: str, path: str, *, offset_bytes: int = 0, size_bytes: int = 0,
    ) -> bytes:
        content = self._client.get_file(
            (repo, commit), path, offset_bytes=offset_bytes, size_bytes=size_bytes,
        )
        if hasattr(content, "read"):
            return content.read()
        return b"".join(content)

    @_remote
    def inspect_file(self, repo: str, commit: str, path: str) -> Record:
        return to_record(self._client.inspect_file((repo, commit), path))

    @_remote
    def list_file(
        self, repo: str, commit: str, path: str, *, full: bool = False, history: int = 0,
    ) -> list[Record]:
        return _to_records(
            self._client.list_file((repo, commit), path, history=history, include_contents=full),
        )

    @_remote
    def walk_file(self, repo: str, commit: str, path: str) -> list[Record]:
        return _to_records(self._client.walk_file((repo, commit), path))

    @_remote
    def glob_file(self, repo: str, commit: str, pattern: str) -> list[Record]:
        return _to_records(self._client.glob_file((repo, commit), pattern))

    @_remote
    def diff_file(
        self, new: FileRef, old: FileRef, *, shallow: bool = False,
    ) -> tuple[list[Record], list[Record]]:
        new_repo, new_commit, new_path = new
        old_repo, old_commit, old_path = old
        new_files, old_files = self._client.diff_file(
            (new_repo, new_commit),
            new_path,
            old_commit=(old_repo, old_commit),
            old_path=old_path,
            shallow=shallow,
        )
        return _to_records(new_files), _to_records(old_files)

    @_remote
    def delete_file(self, repo: str, commit: str, path: str) -> None:
        self._client.delete_file((repo, commit), path)

    # --- branches ---

    @_remote
    def create_branch(self, repo: str, branch: str, *, head: str | None = None) -> None:
        commit = (repo, head) if head is not None else None
        self._client.create_branch(repo, branch, commit=commit)

    @_remote
    def inspect_branch(self, repo: str, branch: str) -> Record:
        return to_record(self._client.inspect_branch(repo, branch))

    @_remote
    def list_branch(self, repo: str, *, reverse: bool = False) -> list[Record]:
        return _to_records(self._client.list_branch(repo, reverse=reverse))

    @_remote
    def delete_branch(self, repo: str, branch: str, *, force: bool = False) -> None:
        self._client.delete_branch(repo, branch, force=force)

    # --- pipelines ---

    @_remote
    def create_pipeline(  # noqa: PLR0913
        self,
        pipeline: str,
        *,
        input_repo: str,
        glob: str,
        script: str,
        image: str,
        update: bool = False,
        reprocess: bool = False,
    ) -> None:
        import python_pachyderm  # noqa: PLC0415

        self._client.create_pipeline(
            pipeline,
            transform=python_pachyderm.Transform(cmd=["sh"], stdin=[script], image=image),
            input=python_pachyderm.Input(
                pfs=python_pachyderm.PFSInput(repo=input_repo, glob=glob),
            ),
            update=update,
            reprocess=reprocess,
        )

    @_remote
    def list_pipeline(self) -> list[Record]:
        response = to_record(self._client.list_pipeline())
        return list(response.get("pipeline_info", []))

    @_remote
    def list_job(self, pipeline: str, *, history: int = 0) -> list[Record]:
        return _to_records(self._client.list_job(pipeline_name=pipeline, history=history))

    # --- cluster ---

    @_remote
    def delete_all(self) -> None:
        self._client.delete_all_pipelines()
        self._client.delete_all_repos()

    @_remote
    def extract(
        self, *, no_objects: bool = False, no_repos: bool = False, no_pipelines: bool = False,
    ) -> list[Any]:
        return list(
            self._client.extract(
                no_objects=no_objects, no_repos=no_repos, no_pipelines=no_pipelines,
            ),
        )

    @_remote
    def restore(self, records: Sequence[Any]) -> None:
        self._client.restore(self._admin_pb2.RestoreRequest(op=op) for op in records)

    @_remote
    def garbage_collect(self, memory_bytes: int) -> None:
        self._client.garbage_collect(memory_bytes=memory_bytes)

    @_remote
    def fsck(self) -> list[str]:
        return [
            record["error"]
            for record in _to_records(self._client.fsck())
            if record.get("error")
        ]


def connect(config: HarnessConfig) -> PachydermService:
    """Open a client against the configured cluster."""
    import python_pachyderm  # noqa: PLC0415

    logger.info("Connecting to pachd at %s", config.address)
    return PachydermService(python_pachyderm.Client(host=config.host, port=config.port))
