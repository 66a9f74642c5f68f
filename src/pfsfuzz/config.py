"""Out-of-band harness configuration.

The cluster address is the only value read from the environment; everything
else has a fixed default that fuzz targets may override.

Python 3.13+. Zero external dependencies.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Self

from pfsfuzz.constants import (
    ADDRESS_ENV_VAR,
    DEFAULT_GC_MEMORY_BYTES,
    DEFAULT_JOB_HISTORY,
    DEFAULT_PIPELINE_IMAGE,
    DEFAULT_PORT,
)
from pfsfuzz.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = ["HarnessConfig", "parse_address"]

_SCHEME = "grpc://"


def parse_address(raw: str) -> tuple[str, int]:
    """Split `host[:port]` (optionally `grpc://`-prefixed) into host and port.

    Raises:
        ConfigurationError: If the address is empty or the port is invalid
    """
    address = raw.strip()
    address = address.removeprefix(_SCHEME)
    host, sep, port_text = address.rpartition(":")
    if not sep:
        host, port_text = address, ""
    if not host:
        msg = f"malformed {ADDRESS_ENV_VAR}: {raw!r}"
        raise ConfigurationError(msg)
    if not port_text:
        return host, DEFAULT_PORT
    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        msg = f"invalid port in {ADDRESS_ENV_VAR}: {raw!r}"
        raise ConfigurationError(msg)
    return host, int(port_text)


@dataclass(frozen=True, slots=True)
class HarnessConfig:
    """Connection and oracle settings for one fuzzing process.

    Attributes:
        host: Cluster host name
        port: Cluster gRPC port
        gc_memory_bytes: Memory budget passed to garbage collection
        job_history: History depth used when listing oracle jobs
        pipeline_image: Container image of the oracle pipeline
    """

    host: str
    port: int = DEFAULT_PORT
    gc_memory_bytes: int = DEFAULT_GC_MEMORY_BYTES
    job_history: int = DEFAULT_JOB_HISTORY
    pipeline_image: str = DEFAULT_PIPELINE_IMAGE

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        """Build a config from `PACHD_ADDRESS`.

        Raises:
            ConfigurationError: If the variable is unset or malformed
        """
        env = os.environ if environ is None else environ
        raw = env.get(ADDRESS_ENV_VAR)
        if not raw:
            msg = f"{ADDRESS_ENV_VAR} is not set"
            raise ConfigurationError(msg)
        host, port = parse_address(raw)
        return cls(host=host, port=port)
