"""Operation catalog tests.

Validates variant tags, decoding tables, and the JSON form used for
finding artifacts.
"""

import json

import pytest
from hypothesis import event, given

from pfsfuzz.catalog import (
    ORACLE_OPERATIONS,
    PFS_OPERATIONS,
    BlockState,
    CreateRepo,
    Delimiter,
    ExtractRestore,
    InspectCommit,
    OpKind,
    PutFile,
    op_from_dict,
    op_to_dict,
    ops_from_json,
    ops_to_json,
)
from pfsfuzz.names import Name
from tests.strategies import operations, oracle_operations


class TestOpKind:
    """Tests for operation tags."""

    def test_tags_unique(self) -> None:
        """Every variant class has its own tag."""
        kinds = [cls.kind for cls in (*PFS_OPERATIONS, *ORACLE_OPERATIONS)]
        assert len(set(kinds)) == len(set(PFS_OPERATIONS) | set(ORACLE_OPERATIONS))

    def test_every_kind_has_a_variant(self) -> None:
        """Every tag belongs to some variant."""
        kinds = {cls.kind for cls in (*PFS_OPERATIONS, *ORACLE_OPERATIONS)}
        assert kinds == set(OpKind)

    def test_extract_restore_in_both_catalogs(self) -> None:
        """Round trips decode in both PFS and oracle sequences."""
        assert ExtractRestore in PFS_OPERATIONS
        assert ExtractRestore in ORACLE_OPERATIONS


class TestSerialization:
    """Tests for the finding artifact format."""

    def test_put_file_dict(self) -> None:
        """Names and payloads are hex encoded; enums use their value."""
        op = PutFile(name=Name(b"\x01"), data=b"ab", delimiter=Delimiter.LINE)
        assert op_to_dict(op) == {
            "op": "put_file",
            "name": "01",
            "data": "6162",
            "delimiter": "LINE",
            "target_file_datums": 0,
            "target_file_bytes": 0,
            "header_records": 0,
            "overwrite_index": None,
        }

    def test_parameterless_dict(self) -> None:
        """Enum fields serialize by member name."""
        assert op_to_dict(InspectCommit(BlockState.READY)) == {
            "op": "inspect_commit",
            "block_state": "READY",
        }

    def test_unknown_field_rejected(self) -> None:
        """Artifacts with extra fields are refused."""
        with pytest.raises(ValueError, match="unknown fields"):
            op_from_dict({"op": "list_repo", "bogus": 1})

    def test_unknown_tag_rejected(self) -> None:
        """Artifacts naming an unmodeled operation are refused."""
        with pytest.raises(ValueError):
            op_from_dict({"op": "copy_file"})

    def test_json_is_a_list(self) -> None:
        """A sequence serializes to a JSON list in order."""
        text = ops_to_json([CreateRepo(name=Name(b"r")), ExtractRestore(no_objects=True)])
        raw = json.loads(text)
        assert [entry["op"] for entry in raw] == ["create_repo", "extract_restore"]

    @given(operations)
    def test_pfs_operation_survives_artifact(self, op: object) -> None:
        """Property: a finding artifact reproduces the exact operation."""
        event(f"op={op.kind}")  # type: ignore[attr-defined]
        assert ops_from_json(ops_to_json([op])) == [op]  # type: ignore[list-item]

    @given(oracle_operations)
    def test_oracle_operation_survives_artifact(self, op: object) -> None:
        """Property: oracle operations serialize the same way."""
        event(f"op={op.kind}")  # type: ignore[attr-defined]
        assert ops_from_json(ops_to_json([op])) == [op]  # type: ignore[list-item]
