from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .constants import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_ECHOSTS,
    DEFAULT_ECPORT,
    DEFAULT_TRY_COUNT,
    DEFAULT_TRY_DELAY,
    MAX_HOSTNAMES,
)
from .errors import ParameterError


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Connection and transfer tunables shared by the connector and the handoff."""

    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    try_count: int = DEFAULT_TRY_COUNT
    try_delay: float = DEFAULT_TRY_DELAY
    buffer_size: int = DEFAULT_BUFFER_SIZE
    max_hosts: int = MAX_HOSTNAMES
    reshuffle_each_round: bool = True
    bind_reserved_port: bool = True

    def __post_init__(self) -> None:
        if self.connect_timeout <= 0:
            raise ParameterError("connect timeout must be positive")
        if self.try_count <= 0:
            raise ParameterError("try count must be positive")
        if self.try_delay < 0:
            raise ParameterError("try delay must not be negative")
        if self.buffer_size <= 0:
            raise ParameterError("buffer size must be a positive integer")
        if self.max_hosts <= 0:
            raise ParameterError("max hosts must be positive")


@dataclass(frozen=True, slots=True)
class Coordinator:
    hosts: str
    port: str
    requested: str = "[default]"

    @classmethod
    def resolve(
        cls,
        echost: Optional[str] = None,
        ecport: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Coordinator":
        env = os.environ if environ is None else environ
        requested = echost if echost is not None else "[default]"
        hosts = echost or env.get("ECHOST") or DEFAULT_ECHOSTS
        port = ecport or env.get("ECPORT") or DEFAULT_ECPORT
        return cls(hosts=hosts, port=str(port), requested=requested)


def default_caller(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if environ is None else environ
    return env.get("EC_job_stdout")
