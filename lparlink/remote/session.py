"""SSH session and channel primitives in non-blocking mode.

A :class:`Session` owns exactly one TCP socket and one ``paramiko.Transport``.
It is switched to non-blocking mode as soon as the handshake completes, so
channel steps never sit inside a single I/O call. A step that cannot finish
right away records which way it is waiting (see :class:`Direction`) and raises
``BlockingIOError``; callers hand the step to ``retry_would_block`` together
with :meth:`Session.wait_ready`, the only place this package suspends.

Only one :class:`SSHChannel` may be open on a session at a time. Channels are
never pooled: each command or file transfer opens one, drives it to the end
and frees it.
"""

from __future__ import annotations

import logging
import selectors
import socket
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import paramiko

from lparlink import settings
from lparlink.errors import AuthError, ConnectError, LinkIOError, ProtocolError
from lparlink.remote.retry import Direction

logger = logging.getLogger(__name__)


# ============================================================================
# Credentials
# ============================================================================


@dataclass(frozen=True)
class CredentialRequest:
    """What an authentication callback is being asked for."""

    kind: Literal["username", "password"]
    hostname: str
    username: str | None = None
    service: str = "ssh"

    @property
    def prompt(self) -> str:
        if self.kind == "username":
            return f"Enter username for {self.hostname}"
        return f"Enter {self.username}'s password for {self.hostname}"


# Returns the requested secret, or None when the user declines.
AuthCallback = Callable[[CredentialRequest], str | None]


# ============================================================================
# Channel
# ============================================================================


class SSHChannel:
    """One transient channel on a non-blocking session.

    Each method is a single primitive step. In non-blocking mode a step that
    would have to wait raises ``BlockingIOError`` after declaring its wait
    direction on the owning session.
    """

    def __init__(self, session: Session, channel: paramiko.Channel):
        self._session = session
        self._chan = channel
        self._chan.setblocking(not session.nonblocking)
        self._remote_done = False

    def fileno(self) -> int:
        # paramiko signals this pipe on incoming data, EOF and close
        return self._chan.fileno()

    def setblocking(self, blocking: bool) -> None:
        self._chan.setblocking(blocking)

    def _blocked(self, direction: Direction) -> BlockingIOError:
        self._session.declare_blocked(direction)
        return BlockingIOError(f"channel {self._chan.get_id()} would block")

    def _require_session(self, step: str) -> None:
        if not self._session.is_active():
            raise ProtocolError(f"SSH session lost during channel {step}")

    def exec(self, command: str) -> None:
        """Request execution of ``command`` on this channel."""
        try:
            self._chan.exec_command(command)
        except socket.timeout:
            raise self._blocked(Direction.INBOUND) from None
        except (paramiko.SSHException, OSError) as e:
            raise ProtocolError(f"Remote exec request failed: {e}") from e

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes of stdout; ``b""`` means end-of-stream."""
        try:
            return self._chan.recv(size)
        except socket.timeout:
            self._require_session("read")
            raise self._blocked(Direction.INBOUND) from None
        except (paramiko.SSHException, OSError) as e:
            raise ProtocolError(f"Channel read failed: {e}") from e

    def drain_stderr(self) -> bytes:
        """Return whatever stderr is buffered without ever waiting."""
        chunks: list[bytes] = []
        while self._chan.recv_stderr_ready():
            chunk = self._chan.recv_stderr(65536)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def write(self, data: bytes) -> int:
        """Write some prefix of ``data``; returns how many bytes were accepted."""
        try:
            return self._chan.send(data)
        except socket.timeout:
            self._require_session("write")
            raise self._blocked(Direction.OUTBOUND) from None
        except (paramiko.SSHException, OSError) as e:
            raise ProtocolError(f"Channel write failed: {e}") from e

    def send_eof(self) -> None:
        try:
            self._chan.shutdown_write()
        except (paramiko.SSHException, OSError) as e:
            raise ProtocolError(f"Sending EOF failed: {e}") from e

    def wait_eof(self) -> None:
        """Complete once the remote side has sent its EOF."""
        if not self._chan.eof_received:
            self._require_session("EOF wait")
            raise self._blocked(Direction.INBOUND)

    def wait_closed(self) -> None:
        """Complete once the remote side has closed the channel."""
        if not self._chan.closed:
            self._require_session("close wait")
            raise self._blocked(Direction.INBOUND)

    def close(self) -> None:
        """Close gracefully once the remote has reported its exit or closed.

        EOF alone is not enough: sshd may send ``exit-status`` after it.

        Raises:
            ProtocolError: The session died before the channel could close.
        """
        self._require_session("close")
        if not (self._chan.exit_status_ready() or self._chan.closed):
            raise self._blocked(Direction.INBOUND)
        self._remote_done = True
        self._chan.close()

    def exit_status(self) -> int:
        """Remote exit status after a successful :meth:`close`.

        A remote that closed without reporting a status counts as 0.

        Raises:
            ProtocolError: The channel has not been closed yet.
        """
        if not self._remote_done:
            raise ProtocolError("Exit status requested before the channel closed")
        if self._chan.exit_status_ready() and self._chan.exit_status >= 0:
            return int(self._chan.exit_status)
        return 0

    def free(self) -> None:
        """Release the channel unconditionally and detach it from the session."""
        try:
            self._chan.close()
        finally:
            self._session.release_channel(self)


# ============================================================================
# Session
# ============================================================================


def _check_host_key(hostname: str, port: int, transport: paramiko.Transport) -> None:
    """Reject a server key that contradicts ~/.ssh/known_hosts."""
    server_key = transport.get_remote_server_key()
    known_hosts = Path.home() / ".ssh" / "known_hosts"
    host_keys = paramiko.HostKeys()
    if known_hosts.exists():
        try:
            host_keys.load(str(known_hosts))
        except (OSError, paramiko.SSHException) as e:
            logger.debug("Could not read %s: %s", known_hosts, e)

    lookup_name = hostname if port == 22 else f"[{hostname}]:{port}"
    entry = host_keys.lookup(lookup_name)
    if entry is None or server_key.get_name() not in entry:
        logger.warning(
            "Host key for %s is not in known_hosts (%s %s)",
            lookup_name,
            server_key.get_name(),
            server_key.get_base64()[:16],
        )
        return
    if entry[server_key.get_name()] != server_key:
        raise ConnectError(
            hostname,
            f"Host key for {lookup_name} does not match known_hosts",
            suggestion="Verify the host identity, then remove the stale entry",
        )


class Session:
    """An authenticated-or-not SSH session over one socket."""

    def __init__(
        self,
        hostname: str,
        sock: socket.socket,
        transport: paramiko.Transport,
    ):
        self.hostname = hostname
        self.sock = sock
        self.transport = transport
        self.username: str | None = None
        self.nonblocking = False
        self._directions = Direction.NONE
        self._channel: SSHChannel | None = None

    # -------------------------
    # connection
    # -------------------------
    @classmethod
    def connect(cls, hostname: str, port: int | None = None) -> Session:
        """Connect to the first resolved address that accepts, then handshake.

        Raises:
            ConnectError: Resolution failed, every candidate address failed,
                or the SSH handshake failed.
        """
        port = port or settings.get_ssh_port()
        try:
            candidates = socket.getaddrinfo(
                hostname,
                str(port),
                type=socket.SOCK_STREAM,
                flags=socket.AI_ADDRCONFIG | socket.AI_NUMERICSERV,
            )
        except socket.gaierror as e:
            raise ConnectError(
                hostname,
                f"Error while getting {hostname} address info: {e}",
                suggestion="Check DNS or VPN connection",
            ) from e

        sock: socket.socket | None = None
        for family, socktype, proto, _canonname, address in candidates:
            try:
                candidate = socket.socket(family, socktype, proto)
            except OSError as e:
                logger.debug("Cannot create socket for %s: %s", address, e)
                continue
            try:
                candidate.connect(address)
            except OSError as e:
                logger.debug("Connection to %s via %s failed: %s", hostname, address, e)
                candidate.close()
                continue
            sock = candidate
            break

        if sock is None:
            raise ConnectError(
                hostname,
                f"Failed to connect to {hostname}",
                suggestion="Check that sshd is listening and the host is reachable",
            )

        transport = paramiko.Transport(sock)
        try:
            transport.start_client()
            _check_host_key(hostname, port, transport)
        except (paramiko.SSHException, OSError, EOFError) as e:
            transport.close()
            sock.close()
            raise ConnectError(
                hostname, f"Failure establishing SSH session with {hostname}: {e}"
            ) from e
        except ConnectError:
            transport.close()
            sock.close()
            raise

        session = cls(hostname, sock, transport)
        session.set_blocking(False)
        logger.info("SSH session established with %s:%d", hostname, port)
        return session

    def authenticate(
        self,
        username: str | None = None,
        auth_callback: AuthCallback | None = None,
    ) -> str:
        """Authenticate by public key, falling back to an interactive password.

        Args:
            username: Explicit user; requested through ``auth_callback`` if None.
            auth_callback: Supplies the username and password on demand.

        Returns:
            The authenticated username.

        Raises:
            AuthError: No callback when one is needed, both methods rejected,
                or a fatal transport error during key authentication.
        """
        if username is None:
            if auth_callback is None:
                raise AuthError("No authentication callback provided.")
            username = auth_callback(CredentialRequest("username", self.hostname))
            if not username:
                raise AuthError("Username request failed")

        if not self._auth_public_key(username):
            self._auth_password(username, auth_callback)

        self.username = username
        logger.info("Authenticated to %s as %s", self.hostname, username)
        return username

    def _auth_public_key(self, username: str) -> bool:
        """Try the default key pair. False means "fall back to password"."""
        private_key = settings.get_private_key_path()
        public_key = settings.get_public_key_path()
        if not (private_key.exists() and public_key.exists()):
            logger.debug("No key pair at %s, skipping public-key auth", private_key)
            return False

        try:
            pkey = paramiko.RSAKey.from_private_key_file(str(private_key))
        except paramiko.PasswordRequiredException:
            logger.debug("Key %s is passphrase protected", private_key)
            return False
        except (paramiko.SSHException, OSError) as e:
            logger.debug("Key %s could not be loaded: %s", private_key, e)
            return False

        try:
            self.transport.auth_publickey(username, pkey)
        except paramiko.AuthenticationException as e:
            logger.debug("Public key rejected for %s@%s: %s", username, self.hostname, e)
            return False
        except (MemoryError, socket.timeout, OSError, paramiko.SSHException, EOFError) as e:
            raise AuthError(f"Public-key authentication aborted: {e}") from e
        return self.transport.is_authenticated()

    def _auth_password(self, username: str, auth_callback: AuthCallback | None) -> None:
        if auth_callback is None:
            raise AuthError("No authentication callback provided.")
        password = auth_callback(
            CredentialRequest("password", self.hostname, username=username)
        )
        if password is None:
            raise AuthError("Password request failed")
        try:
            self.transport.auth_password(username, password)
        except paramiko.AuthenticationException as e:
            raise AuthError("Authentication failed") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise AuthError(f"Password authentication aborted: {e}") from e
        if not self.transport.is_authenticated():
            raise AuthError("Authentication failed")

    # -------------------------
    # non-blocking machinery
    # -------------------------
    def set_blocking(self, blocking: bool) -> None:
        self.nonblocking = not blocking
        if self._channel is not None:
            self._channel.setblocking(blocking)

    def declare_blocked(self, direction: Direction) -> None:
        """Record which way the last blocked step is waiting."""
        self._directions = direction

    def block_directions(self) -> Direction:
        return self._directions

    def wait_ready(self) -> None:
        """Block until the socket is ready in the declared direction(s).

        There is no timeout. EINTR is retried by the interpreter (PEP 475).

        Raises:
            LinkIOError: The multiplexed wait itself failed.
        """
        directions = self._directions or Direction.INBOUND
        interest: dict[object, int] = {}
        if Direction.INBOUND in directions:
            inbound = self._channel if self._channel is not None else self.sock
            interest[inbound] = interest.get(inbound, 0) | selectors.EVENT_READ
        if Direction.OUTBOUND in directions:
            interest[self.sock] = interest.get(self.sock, 0) | selectors.EVENT_WRITE

        selector = selectors.DefaultSelector()
        try:
            for fileobj, events in interest.items():
                selector.register(fileobj, events)
            selector.select()
        except (OSError, ValueError) as e:
            raise LinkIOError(f"unable to wait on SSH socket: {e}") from e
        finally:
            selector.close()
            self._directions = Direction.NONE

    # -------------------------
    # channels
    # -------------------------
    def open_channel(self) -> SSHChannel:
        """Open a session channel (primitive step).

        paramiko completes the open request on its own reader thread, so on a
        live transport this step does not report would-block.
        """
        if self._channel is not None:
            raise ProtocolError("A channel is already open on this session")
        if not self.is_active():
            raise ProtocolError(f"SSH session to {self.hostname} is not active")
        try:
            chan = self.transport.open_session()
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise ProtocolError(f"Unable to open channel: {e}") from e
        self._channel = SSHChannel(self, chan)
        return self._channel

    def release_channel(self, channel: SSHChannel) -> None:
        if self._channel is channel:
            self._channel = None

    # -------------------------
    # lifecycle
    # -------------------------
    def is_active(self) -> bool:
        return self.transport.is_active()

    def close(self) -> None:
        """Disconnect and free the socket; safe to call more than once."""
        if self._channel is not None:
            try:
                self._channel.free()
            except Exception as e:
                logger.debug("Ignoring error freeing channel on close: %s", e)
        self.transport.close()
        self.sock.close()
        logger.info("SSH session with %s closed", self.hostname)

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
