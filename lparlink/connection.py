"""Connection handle: one authenticated session plus everything built on it.

A :class:`Connection` is an explicit value; several may be open at once, each
with its own socket, executor, transfer channel and correspondence table.

URI form::

    lpar://[user@]host[:port][/managed_system]

Example:
    >>> with Connection.open("lpar://hscroot@hmc01/Server-9117-MMA") as conn:
    ...     out, rc = conn.execute("lssyscfg -r sys -F name")
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import unquote, urlsplit

from lparlink import settings
from lparlink.errors import InvalidURIError, ParseError, ProtocolError
from lparlink.remote.executor import CommandExecutor
from lparlink.remote.session import AuthCallback, Session
from lparlink.remote.transfer import FileTransferChannel
from lparlink.table.correspondence import CorrespondenceTable

logger = logging.getLogger(__name__)

URI_SCHEME = "lpar"

# Characters the remote shell would interpret
SPECIAL_CHARACTERS = "&;`@\"|*?~<>^()[]{}$%#\\\n\r\t"

_SPECIAL_RE = re.compile("[" + re.escape(SPECIAL_CHARACTERS) + "]")
_LINE_INT_RE = re.compile(rb"^\s*([+-]?\d+)")


def contains_special_characters(text: str) -> bool:
    """True if ``text`` holds any character with meaning to the remote shell."""
    return _SPECIAL_RE.search(text) is not None


def strip_special_characters(text: str) -> str:
    return _SPECIAL_RE.sub("", text)


# ============================================================================
# URI
# ============================================================================


@dataclass(frozen=True)
class ConnectionURI:
    host: str
    port: int
    username: str | None = None
    managed_system: str | None = None

    @classmethod
    def parse(cls, uri: str) -> ConnectionURI:
        """Parse ``lpar://[user@]host[:port][/managed_system]``.

        Only the first path component names the managed system.

        Raises:
            InvalidURIError: Wrong scheme, no host, bad port, or a managed
                system name containing shell special characters.
        """
        parts = urlsplit(uri)
        if parts.scheme != URI_SCHEME:
            raise InvalidURIError(f"Unsupported URI scheme {parts.scheme!r} in {uri!r}")
        if not parts.hostname:
            raise InvalidURIError(f"Missing host in {uri!r}")
        try:
            port = parts.port or settings.get_ssh_port()
        except ValueError as e:
            raise InvalidURIError(f"Invalid port in {uri!r}: {e}") from e

        path = unquote(parts.path)
        if contains_special_characters(path):
            raise InvalidURIError(f"Managed system name contains special characters: {path!r}")
        managed_system = path.strip("/").split("/", 1)[0] or None

        username = unquote(parts.username) if parts.username else None
        return cls(
            host=parts.hostname,
            port=port,
            username=username,
            managed_system=managed_system,
        )


# ============================================================================
# Live inventory
# ============================================================================


class LiveInventory(Protocol):
    """Two independent enumerations of the partitions on the remote host."""

    def count_ids(self, executor: CommandExecutor) -> int: ...

    def list_ids(self, executor: CommandExecutor) -> list[int]: ...


class CommandInventory:
    """Inventory backed by two shell commands.

    Args:
        count_command: Prints the number of partitions on its first line.
        list_command: Prints one partition id at the start of each line.
    """

    def __init__(self, count_command: str, list_command: str):
        self.count_command = count_command
        self.list_command = list_command

    def count_ids(self, executor: CommandExecutor) -> int:
        return executor.execute_int(self.count_command)

    def list_ids(self, executor: CommandExecutor) -> list[int]:
        output, exit_status = executor.execute(self.list_command)
        if exit_status != 0:
            raise ProtocolError(
                f"Partition listing exited with status {exit_status}: {self.list_command!r}"
            )
        ids = []
        for line in output.splitlines():
            if not line.strip():
                continue
            match = _LINE_INT_RE.match(line)
            if match is None:
                raise ParseError(f"Cannot parse partition id from {line!r}")
            ids.append(int(match.group(1)))
        return ids


# ============================================================================
# Connection
# ============================================================================


class Connection:
    """An open link to one partition manager."""

    def __init__(
        self,
        uri: ConnectionURI,
        session: Session,
        executor: CommandExecutor,
        transfer: FileTransferChannel,
        table: CorrespondenceTable,
    ):
        self.uri = uri
        self.session: Session | None = session
        self.executor = executor
        self.transfer = transfer
        self.table = table

    @classmethod
    def open(
        cls,
        uri: str,
        auth_callback: AuthCallback | None = None,
        inventory: LiveInventory | None = None,
    ) -> Connection:
        """Connect, authenticate and prepare the correspondence table.

        Args:
            uri: ``lpar://`` connection URI.
            auth_callback: Supplies a username and password when needed.
            inventory: When given, the table is initialized from it.

        Raises:
            InvalidURIError: The URI is malformed.
            ConnectError: The host is unreachable.
            AuthError: Authentication failed.
            ConsistencyError: The inventory enumerations disagree with each
                other or with the persisted table.
        """
        parsed = ConnectionURI.parse(uri)
        session = Session.connect(parsed.host, parsed.port)
        try:
            username = session.authenticate(parsed.username, auth_callback)
            executor = CommandExecutor(session)
            transfer = FileTransferChannel(session)
            table = CorrespondenceTable(
                transfer,
                local_path=settings.get_local_table_path(username, parsed.host),
                remote_path=settings.get_remote_table_path(username),
            )
            conn = cls(parsed, session, executor, transfer, table)
            if inventory is not None:
                conn.init_table(inventory)
        except Exception:
            session.close()
            raise
        return conn

    def init_table(self, inventory: LiveInventory) -> None:
        """Initialize the correspondence table from the live partition set."""
        expected = inventory.count_ids(self.executor)
        live_ids = inventory.list_ids(self.executor)
        logger.debug("Inventory reports %d partition(s): %s", expected, live_ids)
        self.table.init(live_ids, expected_count=expected)

    # -------------------------
    # properties
    # -------------------------
    @property
    def host(self) -> str:
        return self.uri.host

    @property
    def username(self) -> str | None:
        return self.session.username if self.session is not None else self.uri.username

    @property
    def managed_system(self) -> str | None:
        return self.uri.managed_system

    def is_alive(self) -> bool:
        return self.session is not None and self.session.is_active()

    def is_encrypted(self) -> bool:
        return True

    def is_secure(self) -> bool:
        return True

    # -------------------------
    # commands
    # -------------------------
    def execute(self, command: str) -> tuple[bytes, int]:
        return self.executor.execute(command)

    def execute_trimmed(self, command: str) -> tuple[bytes, int]:
        return self.executor.execute_trimmed(command)

    def execute_int(self, command: str) -> int:
        return self.executor.execute_int(command)

    # -------------------------
    # lifecycle
    # -------------------------
    def close(self) -> None:
        if self.session is None:
            return
        self.session.close()
        self.session = None

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_alive() else "closed"
        return f"<Connection {self.username}@{self.host} ({state})>"
