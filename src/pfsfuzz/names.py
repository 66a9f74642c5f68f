"""Name codec: arbitrary bytes to service identifiers.

Repo, branch and file names come out of the fuzzer as raw bytes. They are
rendered with standard base-64 and the three characters the service rejects
are substituted. The mapping is deterministic and total over non-empty input
but not injective ("+" and "/" collapse), which is acceptable because validation
compares names by their rendered identifier.

Python 3.13+.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Self

from pfsfuzz.constants import IDENTIFIER_PATTERN, NAME_SUBSTITUTIONS
from pfsfuzz.errors import DecodeError, DecodeFailure

__all__ = ["Name", "encode_name", "is_identifier"]


def encode_name(data: bytes) -> str:
    """Render non-empty bytes as a valid service identifier.

    Raises:
        DecodeError: If data is empty (insufficient data)
    """
    if not data:
        raise DecodeError(DecodeFailure.INSUFFICIENT_DATA, "empty name")
    rendered = base64.b64encode(data).decode("ascii")
    for reserved, replacement in NAME_SUBSTITUTIONS:
        rendered = rendered.replace(reserved, replacement)
    return rendered


def is_identifier(candidate: str) -> bool:
    """Check a string against the service's identifier grammar."""
    return IDENTIFIER_PATTERN.fullmatch(candidate) is not None


@dataclass(frozen=True, slots=True)
class Name:
    """A fuzz-generated repo, branch, or file name.

    Equality is on the raw bytes; use `identifier` when comparing what the
    service will actually see.
    """

    data: bytes

    def __post_init__(self) -> None:
        if not self.data:
            raise DecodeError(DecodeFailure.INSUFFICIENT_DATA, "empty name")

    @classmethod
    def from_bytes(cls, data: bytes) -> Self:
        return cls(bytes(data))

    @property
    def identifier(self) -> str:
        return encode_name(self.data)

    @property
    def path(self) -> str:
        """File path form used when the name addresses a file."""
        return "/" + self.identifier

    def __str__(self) -> str:
        return self.identifier

    def __repr__(self) -> str:
        return f"Name({self.identifier})"
