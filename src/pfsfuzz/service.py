"""Remote service boundary.

`VersionedFileService` lists every capability the harness drives, in the
harness's own vocabulary: names are rendered identifiers, commits are
addressed as (repo, branch-or-commit-id), and responses are plain
JSON-compatible records keyed by protobuf field name. The production adapter
lives in `pfsfuzz.client`; tests supply an in-memory reference cluster.

Every method raises `RemoteError` when the call fails on the service side.

Python 3.13+.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    import grpc

    from pfsfuzz.catalog import BlockState, Delimiter

__all__ = ["FileRef", "Record", "RemoteError", "VersionedFileService"]

type Record = dict[str, Any]
"""A response message converted to a dict (protobuf field names)."""

type FileRef = tuple[str, str, str]
"""(repo, branch-or-commit-id, path)."""


class RemoteError(Exception):
    """A remote call failed.

    Attributes:
        code: gRPC status code reported by the service
        details: Free-text error details
    """

    def __init__(self, code: grpc.StatusCode, details: str = "") -> None:
        self.code = code
        self.details = details
        super().__init__(f"{code.name}: {details}" if details else code.name)


class VersionedFileService(Protocol):
    """Capabilities of a versioned-filesystem cluster used by the harness."""

    # --- repos ---

    def create_repo(self, repo: str, *, update: bool = False) -> None: ...

    def inspect_repo(self, repo: str) -> Record: ...

    def list_repo(self) -> list[Record]: ...

    def delete_repo(self, repo: str, *, force: bool = False) -> None: ...

    def delete_all_repos(self, *, force: bool = False) -> None: ...

    # --- commits ---

    def start_commit(self, repo: str, branch: str) -> str:
        """Open a commit on `branch`, returning its id."""
        ...

    def finish_commit(self, repo: str, commit: str) -> None: ...

    def inspect_commit(
        self, repo: str, commit: str, *, block_state: BlockState | None = None,
    ) -> Record: ...

    def list_commit(
        self, repo: str, *, number: int = 0, reverse: bool = False,
    ) -> list[Record]: ...

    def delete_commit(self, repo: str, commit: str) -> None: ...

    def flush_commit(self, repo: str, commit: str) -> list[Record]: ...

    # --- files ---

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
    ) -> None: ...

    def get_file(
        self, repo: str, commit: str, path: str, *, offset_bytes: int = 0, size_bytes: int = 0,
    ) -> bytes: ...

    def inspect_file(self, repo: str, commit: str, path: str) -> Record: ...

    def list_file(
        self, repo: str, commit: str, path: str, *, full: bool = False, history: int = 0,
    ) -> list[Record]: ...

    def walk_file(self, repo: str, commit: str, path: str) -> list[Record]: ...

    def glob_file(self, repo: str, commit: str, pattern: str) -> list[Record]: ...

    def diff_file(
        self, new: FileRef, old: FileRef, *, shallow: bool = False,
    ) -> tuple[list[Record], list[Record]]:
        """Return (new_files, old_files)."""
        ...

    def delete_file(self, repo: str, commit: str, path: str) -> None: ...

    # --- branches ---

    def create_branch(self, repo: str, branch: str, *, head: str | None = None) -> None:
        """Create `branch`, pointing at `head` (a branch or commit id) when given."""
        ...

    def inspect_branch(self, repo: str, branch: str) -> Record: ...

    def list_branch(self, repo: str, *, reverse: bool = False) -> list[Record]: ...

    def delete_branch(self, repo: str, branch: str, *, force: bool = False) -> None: ...

    # --- pipelines ---

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
        """Create (or update) a pipeline running `script` under `sh`."""
        ...

    def list_pipeline(self) -> list[Record]: ...

    def list_job(self, pipeline: str, *, history: int = 0) -> list[Record]: ...

    # --- cluster ---

    def delete_all(self) -> None:
        """Delete every pipeline, repo and commit."""
        ...

    def extract(
        self, *, no_objects: bool = False, no_repos: bool = False, no_pipelines: bool = False,
    ) -> list[Any]:
        """Serialize the cluster into opaque restore records."""
        ...

    def restore(self, records: Sequence[Any]) -> None: ...

    def garbage_collect(self, memory_bytes: int) -> None: ...

    def fsck(self) -> list[str]:
        """Run the structural consistency check, returning problems found."""
        ...
