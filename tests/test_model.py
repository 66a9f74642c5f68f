"""Shadow state model tests."""

import pytest

from pfsfuzz.model import EmptyStackError, State
from pfsfuzz.names import Name

_R1, _R2 = Name(b"r1"), Name(b"r2")
_B1, _B2 = Name(b"b1"), Name(b"b2")
_F1, _F2 = Name(b"f1"), Name(b"f2")


def _state_with_branch() -> State:
    state = State()
    state.push_repo(_R1).push_branch(_B1)
    return state


class TestStacks:
    """Every level acts on its most recently created object."""

    def test_empty_state(self) -> None:
        """Every accessor raises on an empty model."""
        state = State()
        for lookup in (state.repo, state.branch, state.file, state.pop_file):
            with pytest.raises(EmptyStackError):
                lookup()

    def test_branch_comes_from_newest_repo_with_branches(self) -> None:
        """A repo without branches does not hide older branches."""
        state = _state_with_branch()
        state.push_repo(_R2)
        assert state.branch().name == _B1
        assert state.branch_repo().name == _R1

    def test_open_and_closed_branch_selection(self) -> None:
        """Open and closed lookups pick the newest matching branch."""
        state = _state_with_branch()
        state.repo().push_branch(_B2)
        state.branch().start("abc")
        assert state.open_branch().name == _B2
        assert state.closed_branch().name == _B1

    def test_pop_branch(self) -> None:
        """Popping drains the branch stack."""
        state = _state_with_branch()
        assert state.pop_branch().name == _B1
        with pytest.raises(EmptyStackError):
            state.pop_branch()

    def test_counts(self) -> None:
        """Counts cover repos, branches, open commits and files."""
        state = _state_with_branch()
        state.branch().push_file(_F1)
        state.branch().start()
        counts = state.counts()
        assert (counts.repos, counts.branches, counts.open_commits, counts.files) == (1, 1, 1, 1)

    def test_projection_is_independent(self) -> None:
        """Mutating a projection leaves the live model untouched."""
        state = _state_with_branch()
        projection = state.projection()
        projection.branch().push_file(_F1)
        assert state.branch().files == []


class TestCommits:
    """Commit lifecycle on a branch."""

    def test_write_to_closed_branch_is_implicit_commit(self) -> None:
        """A write without an open commit adds one to history."""
        state = _state_with_branch()
        branch = state.branch()
        assert not branch.has_head
        branch.record_write()
        assert branch.history == 1
        assert branch.has_head

    def test_write_to_open_branch_does_not_commit(self) -> None:
        """A write into an open commit leaves history alone."""
        branch = _state_with_branch().branch()
        branch.start("c0")
        branch.record_write()
        assert branch.history == 0
        assert branch.has_head

    def test_ref_prefers_open_commit_id(self) -> None:
        """Calls address the open commit by id, otherwise the branch."""
        branch = _state_with_branch().branch()
        assert branch.ref == _B1.identifier
        branch.start("c0")
        assert branch.ref == "c0"
        branch.finish()
        assert branch.ref == _B1.identifier
        assert branch.history == 1

    def test_open_commit_without_id_uses_branch(self) -> None:
        """An open commit with no known id falls back to the branch name."""
        branch = _state_with_branch().branch()
        branch.start()
        assert branch.ref == _B1.identifier


class TestFiles:
    """File stack and detached files."""

    def test_push_replaces_same_path(self) -> None:
        """Rewriting a path moves it to the top and counts the write."""
        branch = _state_with_branch().branch()
        branch.push_file(_F1)
        branch.push_file(_F2)
        file = branch.push_file(_F1)
        assert [f.name for f in branch.files] == [_F2, _F1]
        assert file.writes == 2

    def test_overwrite_index_resets_writes(self) -> None:
        """An overwrite index truncates the object count."""
        branch = _state_with_branch().branch()
        branch.push_file(_F1)
        branch.push_file(_F1)
        assert branch.push_file(_F1, overwrite_index=0).writes == 1

    def test_recent_files_order_matches_pop(self) -> None:
        """recent_files yields in pop order across branches."""
        state = _state_with_branch()
        state.branch().push_file(_F1)
        state.repo().push_branch(_B2).push_file(_F2)
        recent = [(b.name, f.name) for b, f in state.recent_files()]
        assert recent == [(_B2, _F2), (_B1, _F1)]
        branch, file = state.pop_file()
        assert (branch.name, file.name) == (_B2, _F2)
        assert state.top_file()[1].name == _F1

    def test_detached_files_still_found(self) -> None:
        """Detached files are off the stack but still in the head."""
        branch = _state_with_branch().branch()
        file = branch.push_file(_F1, split=True)
        branch.files.remove(file)
        branch.detach(file)
        assert branch.find_file(_F1) is None
        found = branch.find_any(_F1)
        assert found is not None
        assert found.split

    def test_push_reclaims_detached(self) -> None:
        """Writing a detached path puts it back on the stack."""
        branch = _state_with_branch().branch()
        file = branch.push_file(_F1)
        branch.files.remove(file)
        branch.detach(file)
        assert branch.push_file(_F1).writes == 2
        assert branch.detached == []


class TestForks:
    """Branches created from another branch's head."""

    def test_fork_copies_head_files(self) -> None:
        """A fork shares history and files with its source."""
        state = _state_with_branch()
        repo = state.repo()
        source = state.branch()
        source.push_file(_F1)
        source.record_write()
        fork = repo.push_branch(_B2, source)
        assert fork.forked
        assert source.forked
        assert fork.history == 1
        assert [f.branch_name for f in fork.files] == [_B2]

    def test_retired_names_taken(self) -> None:
        """Live and retired branch names are both taken."""
        repo = _state_with_branch().repo()
        repo.retired.add(_B2.identifier)
        assert repo.name_taken(_B1)
        assert repo.name_taken(_B2)
        assert not repo.name_taken(Name(b"b3"))

    def test_closed_branch_in_repo(self) -> None:
        """A repo whose only branch is open has no closed branch."""
        repo = _state_with_branch().repo()
        repo.branches[0].start()
        with pytest.raises(EmptyStackError):
            repo.closed_branch()
