"""Shadow state model of the remote hierarchy.

The harness's local belief about what exists on the service: repos, each
owning branches, each owning at most one open commit and the files of its
head. Every level is a stack and operations always act on the most recently
created object of the relevant kind. This trades addressing generality for a
state space small enough to validate cheaply; acting on older objects is a
known coverage limitation, not something to generalize here.

The same model backs construction-time validation (on a private projection)
and execution (on the live copy), so both agree on which object an operation
targets.

Python 3.13+.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pfsfuzz.names import Name

__all__ = ["Branch", "EmptyStackError", "File", "Repo", "State", "StateCounts"]


class EmptyStackError(LookupError):
    """No object of the requested kind is currently modeled."""


@dataclass(slots=True)
class File:
    """A file in a branch's head commit."""

    repo_name: Name
    branch_name: Name
    name: Name
    # Written with a record delimiter: a directory of chunks on the service.
    split: bool = False
    # Objects appended to the path; bounds a later overwrite_index.
    writes: int = 1

    @property
    def path(self) -> str:
        return self.name.path


@dataclass(slots=True)
class Branch:
    """A branch and the lineage of its head.

    Attributes:
        repo_name: Owning repo
        name: Branch name, unique within the repo
        open: Whether the head commit is open for writes
        history: Closed commits reachable from the head
        commit_id: Service-assigned id of the open commit, when known
        forked: Shares commits with another branch through CreateBranch
        files: Files in the head commit, most recent last
        detached: Files still in the head commit but no longer on the stack
    """

    repo_name: Name
    name: Name
    open: bool = False
    history: int = 0
    commit_id: str | None = None
    forked: bool = False
    files: list[File] = field(default_factory=list)
    detached: list[File] = field(default_factory=list)

    @property
    def has_head(self) -> bool:
        return self.open or self.history > 0

    def find_file(self, name: Name) -> File | None:
        return next((f for f in self.files if f.name.identifier == name.identifier), None)

    def find_any(self, name: Name) -> File | None:
        """Find a file whether or not it is still on the stack."""
        return self.find_file(name) or next(
            (f for f in self.detached if f.name.identifier == name.identifier), None,
        )

    def detach(self, file: File) -> None:
        self.detached = [f for f in self.detached if f.name.identifier != file.name.identifier]
        self.detached.append(file)

    def push_file(
        self,
        name: Name,
        *,
        split: bool = False,
        overwrite_index: int | None = None,
    ) -> File:
        """Add a file, replacing any entry already at the same path."""
        existing = self.find_any(name)
        if overwrite_index is not None:
            writes = overwrite_index + 1
        else:
            writes = (existing.writes if existing is not None else 0) + 1
        self.files = [f for f in self.files if f.name.identifier != name.identifier]
        self.detached = [f for f in self.detached if f.name.identifier != name.identifier]
        file = File(
            repo_name=self.repo_name,
            branch_name=self.name,
            name=name,
            split=split,
            writes=writes,
        )
        self.files.append(file)
        return file

    def record_write(self) -> None:
        """Account for a write; a closed branch gets an implicit commit."""
        if not self.open:
            self.history += 1

    def start(self, commit_id: str | None = None) -> None:
        self.open = True
        self.commit_id = commit_id

    @property
    def ref(self) -> str:
        """Commit reference for calls: the open commit's id when known."""
        if self.open and self.commit_id:
            return self.commit_id
        return self.name.identifier

    def finish(self) -> None:
        self.open = False
        self.commit_id = None
        self.history += 1


@dataclass(slots=True)
class Repo:
    name: Name
    branches: list[Branch] = field(default_factory=list)
    # Branches dropped from the stack that still exist on the service.
    retired: set[str] = field(default_factory=set)

    def _copy_file(self, file: File, branch_name: Name) -> File:
        return File(
            repo_name=self.name,
            branch_name=branch_name,
            name=file.name,
            split=file.split,
            writes=file.writes,
        )

    def find_branch(self, name: Name) -> Branch | None:
        return next((b for b in self.branches if b.name.identifier == name.identifier), None)

    def name_taken(self, name: Name) -> bool:
        return self.find_branch(name) is not None or name.identifier in self.retired

    def push_branch(self, name: Name, source: Branch | None = None) -> Branch:
        """Add a branch, optionally pointing at the head of `source`."""
        branch = Branch(repo_name=self.name, name=name)
        if source is not None:
            source.forked = True
            branch.forked = True
            branch.history = source.history
            branch.files = [self._copy_file(f, name) for f in source.files]
            branch.detached = [self._copy_file(f, name) for f in source.detached]
        self.branches.append(branch)
        return branch

    def closed_branch(self) -> Branch:
        for branch in reversed(self.branches):
            if not branch.open:
                return branch
        msg = f"repo {self.name} has no closed branch"
        raise EmptyStackError(msg)


@dataclass(frozen=True, slots=True)
class StateCounts:
    repos: int
    branches: int
    open_commits: int
    files: int


@dataclass(slots=True)
class State:
    """Stacks of repos, branches, open commits and files."""

    repos: list[Repo] = field(default_factory=list)

    def reset(self) -> None:
        self.repos.clear()

    def projection(self) -> State:
        """Independent copy for construction-time validation."""
        return copy.deepcopy(self)

    def counts(self) -> StateCounts:
        branches = list(self.iter_branches())
        return StateCounts(
            repos=len(self.repos),
            branches=len(branches),
            open_commits=sum(1 for b in branches if b.open),
            files=sum(len(b.files) for b in branches),
        )

    # --- repos ---

    def repo(self) -> Repo:
        if not self.repos:
            msg = "no repo"
            raise EmptyStackError(msg)
        return self.repos[-1]

    def find_repo(self, name: Name) -> Repo | None:
        return next((r for r in self.repos if r.name.identifier == name.identifier), None)

    def push_repo(self, name: Name) -> Repo:
        repo = Repo(name=name)
        self.repos.append(repo)
        return repo

    def pop_repo(self) -> Repo:
        if not self.repos:
            msg = "no repo"
            raise EmptyStackError(msg)
        return self.repos.pop()

    # --- branches ---

    def iter_branches(self) -> Iterator[Branch]:
        for repo in self.repos:
            yield from repo.branches

    def branch_repo(self) -> Repo:
        """The repo owning the top branch."""
        for repo in reversed(self.repos):
            if repo.branches:
                return repo
        msg = "no branch"
        raise EmptyStackError(msg)

    def branch(self) -> Branch:
        return self.branch_repo().branches[-1]

    def open_branch(self) -> Branch:
        for branch in reversed(list(self.iter_branches())):
            if branch.open:
                return branch
        msg = "no branch with an open commit"
        raise EmptyStackError(msg)

    def closed_branch(self) -> Branch:
        for branch in reversed(list(self.iter_branches())):
            if not branch.open:
                return branch
        msg = "no branch without an open commit"
        raise EmptyStackError(msg)

    def pop_branch(self) -> Branch:
        for repo in reversed(self.repos):
            if repo.branches:
                return repo.branches.pop()
        msg = "no branch"
        raise EmptyStackError(msg)

    # --- files ---

    def recent_files(self) -> Iterator[tuple[Branch, File]]:
        """Files in the order successive `pop_file` calls would remove them."""
        for branch in reversed(list(self.iter_branches())):
            for file in reversed(branch.files):
                yield branch, file

    def top_file(self) -> tuple[Branch, File]:
        """The top file with its owning branch, without removing it."""
        for entry in self.recent_files():
            return entry
        msg = "no file"
        raise EmptyStackError(msg)

    def file(self) -> File:
        return self.top_file()[1]

    def pop_file(self) -> tuple[Branch, File]:
        """Remove the top file, returning it with its owning branch."""
        for branch in reversed(list(self.iter_branches())):
            if branch.files:
                return branch, branch.files.pop()
        msg = "no file"
        raise EmptyStackError(msg)
