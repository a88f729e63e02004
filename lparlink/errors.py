"""Exception hierarchy shared by the transport, transfer and table layers.

Would-block conditions never appear here: primitive steps signal them with
the builtin ``BlockingIOError`` and ``retry_would_block`` absorbs them.
Everything below propagates immediately; a session that raised one of these
should be closed and reopened by the caller.
"""

from __future__ import annotations


class LinkError(Exception):
    """Base class for every error raised by lparlink."""


class ConnectError(LinkError):
    """Raised when the remote host cannot be reached.

    This covers:
    - DNS resolution failure
    - every resolved address refusing or timing out
    - SSH protocol handshake failure
    """

    def __init__(self, host: str, message: str, suggestion: str | None = None):
        self.host = host
        self.suggestion = suggestion
        super().__init__(message)


class AuthError(LinkError):
    """Raised when no credential was accepted or none could be obtained."""


class ProtocolError(LinkError):
    """A channel step failed with something other than would-block."""


class RemoteFileNotFound(ProtocolError):
    """The inbound copy channel could not be opened.

    The correspondence table treats this as "no persisted table yet".
    """

    def __init__(self, remote_path: str, reason: str = ""):
        self.remote_path = remote_path
        self.reason = reason
        message = f"Remote file not available: {remote_path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class EntryNotFound(LinkError, KeyError):
    """No live correspondence entry exists for a partition id."""

    def __init__(self, partition_id: int):
        self.partition_id = partition_id
        super().__init__(partition_id)

    def __str__(self) -> str:
        return f"No UUID recorded for partition id {self.partition_id}"


class ParseError(LinkError, ValueError):
    """Command output did not contain the integer(s) the caller expected."""


class ConsistencyError(LinkError):
    """Two views of the remote inventory, or of the persisted table, disagree."""


class TableStateError(LinkError):
    """The correspondence table was used before it became ready."""


class InvalidURIError(LinkError, ValueError):
    """A connection URI is malformed or carries unsafe characters."""


class LinkIOError(LinkError, OSError):
    """Local filesystem failure, or failure of the readiness wait itself."""


__all__ = [
    "AuthError",
    "ConnectError",
    "ConsistencyError",
    "EntryNotFound",
    "InvalidURIError",
    "LinkError",
    "LinkIOError",
    "ParseError",
    "ProtocolError",
    "RemoteFileNotFound",
    "TableStateError",
]
