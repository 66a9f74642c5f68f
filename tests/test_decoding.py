"""Decoder tests.

The decoder is a pure function of the bytes it consumes: it either builds a
candidate sequence or raises DecodeError, and it never consults the model.
"""

import pytest
from hypothesis import event, given

from pfsfuzz.catalog import ORACLE_OPERATIONS, PFS_OPERATIONS, CreateRepo, GlobFile, ListRepo
from pfsfuzz.constants import MAX_NAME_BYTES, MAX_OPERATIONS, MAX_ORACLE_OPERATIONS
from pfsfuzz.decoding import (
    decode_name,
    decode_operation,
    decode_operations,
    decode_oracle_operations,
)
from pfsfuzz.errors import DecodeError, DecodeFailure
from pfsfuzz.names import Name
from tests.strategies import ByteProvider, byte_providers

_LIST_REPO = PFS_OPERATIONS.index(ListRepo)
_CREATE_REPO = PFS_OPERATIONS.index(CreateRepo)
_GLOB_FILE = PFS_OPERATIONS.index(GlobFile)


class TestDecodeName:
    """Tests for decode_name."""

    def test_consumes_requested_length(self) -> None:
        """Length byte then that many name bytes."""
        provider = ByteProvider(bytes([2]) + b"xyz")
        name = decode_name(provider)
        # 2 % 32 + 1 == 3 bytes
        assert name.data == b"xyz"
        assert provider.remaining_bytes() == 0

    def test_truncated_name_keeps_available_bytes(self) -> None:
        """A short tail still yields a non-empty name."""
        provider = ByteProvider(bytes([MAX_NAME_BYTES - 1]) + b"ab")
        assert decode_name(provider).data == b"ab"

    def test_exhausted_input_rejected(self) -> None:
        """No bytes left for the name body is insufficient data."""
        with pytest.raises(DecodeError) as exc_info:
            decode_name(ByteProvider(bytes([0])))
        assert exc_info.value.reason is DecodeFailure.INSUFFICIENT_DATA


class TestDecodeOperations:
    """Tests for whole-sequence decoding."""

    def test_empty_input_rejected(self) -> None:
        """Input with no operations is insufficient data."""
        with pytest.raises(DecodeError, match="no operations"):
            decode_operations(ByteProvider(b""))

    def test_parameterless_variant(self) -> None:
        """A selector byte alone decodes a parameterless variant."""
        assert decode_operations(ByteProvider(bytes([_LIST_REPO]))) == [ListRepo()]

    def test_create_repo(self) -> None:
        """Selector, name length, name bytes, update flag."""
        data = bytes([_CREATE_REPO, 0]) + b"r" + bytes([1])
        assert decode_operations(ByteProvider(data)) == [
            CreateRepo(name=Name(b"r"), update=True),
        ]

    def test_name_running_out_rejects_whole_input(self) -> None:
        """Running out inside a name rejects, never truncates."""
        data = bytes([_LIST_REPO, _CREATE_REPO, 5])
        with pytest.raises(DecodeError):
            decode_operations(ByteProvider(data))

    def test_length_capped(self) -> None:
        """Decoding stops at the operation cap."""
        data = bytes([_LIST_REPO]) * (MAX_OPERATIONS + 10)
        assert len(decode_operations(ByteProvider(data))) == MAX_OPERATIONS

    def test_oracle_catalog(self) -> None:
        """The oracle decoder only draws oracle operations."""
        ops = decode_oracle_operations(ByteProvider(bytes(range(40))))
        assert 0 < len(ops) <= MAX_ORACLE_OPERATIONS
        assert all(type(op) in ORACLE_OPERATIONS for op in ops)

    def test_selector_wraps_into_catalog(self) -> None:
        """A selector past the catalog end wraps instead of failing."""
        data = bytes([len(PFS_OPERATIONS) + _LIST_REPO])
        assert decode_operation(ByteProvider(data)) == ListRepo()

    def test_nul_in_glob_is_incorrect_format(self) -> None:
        """A NUL inside a glob pattern is the one malformed-format rejection."""
        # 1 % 16 + 1 == 2 pattern characters
        data = bytes([_GLOB_FILE, 1]) + b"a\x00"
        with pytest.raises(DecodeError) as exc_info:
            decode_operation(ByteProvider(data))
        assert exc_info.value.reason is DecodeFailure.INCORRECT_FORMAT

    @given(byte_providers)
    def test_total(self, provider: ByteProvider) -> None:
        """Property: decoding either succeeds or raises DecodeError."""
        try:
            ops = decode_operations(provider)
        except DecodeError as e:
            event(f"outcome=rejected:{e.reason.name}")
            return
        event(f"outcome=decoded:{min(len(ops), 10)}")
        assert 0 < len(ops) <= MAX_OPERATIONS
        assert all(type(op) in PFS_OPERATIONS for op in ops)

    @given(byte_providers)
    def test_single_operation_from_catalog(self, provider: ByteProvider) -> None:
        """Property: decode_operation draws from the catalog it is given."""
        try:
            op = decode_operation(provider, ORACLE_OPERATIONS)
        except DecodeError:
            return
        event(f"op={op.kind}")
        assert type(op) in ORACLE_OPERATIONS
