from __future__ import annotations


class EcpdsError(Exception):
    """Base class for every failure reported by the client."""


class ConnectError(EcpdsError):
    def __init__(self, hosts: list[str], port: str):
        self.hosts = list(hosts)
        self.port = port
        super().__init__(f"connection failed to [{','.join(self.hosts)}]:{port}")


class ProtocolError(EcpdsError):
    """Malformed or oversized line."""


class RemoteError(EcpdsError):
    """The peer answered with a ``-reason`` line."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class LinkError(EcpdsError, OSError):
    """Short read/write or connection closed by the peer."""


class ParameterError(EcpdsError, ValueError):
    pass


class SourceError(EcpdsError):
    pass
