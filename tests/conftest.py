"""Shared fixtures: an in-memory SSH session and remote peer.

Nothing here touches the network. ``FakeRemote`` plays the remote host: it
answers plain commands from a table, and runs a minimal ``scp -t`` sink and
``scp -f`` source over ``FakeChannel`` so transfers exercise the real
protocol code in ``lparlink.remote.transfer``.

Fixtures:
- fake_remote: the remote host (files, command outputs, blocking knobs)
- fake_session: a session bound to fake_remote that counts readiness waits
- isolated_settings: clears the settings cache and points caches at tmp_path
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field

import pytest

from lparlink import settings
from lparlink.errors import ProtocolError
from lparlink.remote.retry import Direction

# Consecutive would-block reports before a fake channel declares a deadlock
_MAX_IDLE_BLOCKS = 1000

_HEADER_RE = re.compile(rb"^C([0-7]{4}) (\d+) (.+)$")


# =============================================================================
# Remote peer
# =============================================================================


@dataclass
class FakeRemote:
    """State of the remote host shared by every channel of a session."""

    files: dict[str, bytes] = field(default_factory=dict)
    commands: dict[str, tuple[bytes, int]] = field(default_factory=dict)
    stderr: dict[str, bytes] = field(default_factory=dict)
    # Every read and write step reports would-block once before succeeding
    interleave_blocks: bool = False
    # Leading would-block reports on the first read of every channel
    initial_read_blocks: int = 0
    # Largest number of bytes a single write accepts
    max_write: int | None = None
    reject_push: str | None = None
    fail_close: bool = False
    executed: list[str] = field(default_factory=list)
    pushes: list[str] = field(default_factory=list)
    pulls: list[str] = field(default_factory=list)
    headers: list[bytes] = field(default_factory=list)

    @property
    def transfers(self) -> int:
        return len(self.pushes) + len(self.pulls)


class FakeChannel:
    """Channel double speaking the same step interface as ``SSHChannel``."""

    def __init__(self, session: FakeSession, remote: FakeRemote):
        self.session = session
        self.remote = remote
        self.command: str | None = None
        self.inbox = bytearray()
        self.outbox = bytearray()
        self.errbox = bytearray()
        self.exit_code = 0
        self.remote_eof = False
        self.eof_sent = False
        self.closed = False
        self.freed = False
        self.read_blocks = remote.initial_read_blocks
        self.read_sizes: list[int] = []
        self._skip_block = False
        self._idle = 0
        self._scp = None

    # -------------------------
    # blocking simulation
    # -------------------------
    def _block(self, direction: Direction) -> BlockingIOError:
        self.session.declare_blocked(direction)
        return BlockingIOError("fake channel would block")

    def _maybe_interleave(self, direction: Direction) -> None:
        if not self.remote.interleave_blocks:
            return
        if self._skip_block:
            self._skip_block = False
            return
        self._skip_block = True
        raise self._block(direction)

    # -------------------------
    # steps
    # -------------------------
    def exec(self, command: str) -> None:
        self.command = command
        self.remote.executed.append(command)
        argv = shlex.split(command)
        if argv[:2] == ["scp", "-t"]:
            self._scp = _ScpSink(self, argv[2])
        elif argv[:2] == ["scp", "-f"]:
            self._scp = _ScpSource(self, argv[2])
        else:
            output, self.exit_code = self.remote.commands.get(command, (b"", 127))
            self.outbox += output
            self.errbox += self.remote.stderr.get(command, b"")
            self.remote_eof = True

    def read(self, size: int) -> bytes:
        self.read_sizes.append(size)
        if self.read_blocks:
            self.read_blocks -= 1
            raise self._block(Direction.INBOUND)
        self._maybe_interleave(Direction.INBOUND)
        if self.outbox:
            self._idle = 0
            data = bytes(self.outbox[:size])
            del self.outbox[:size]
            return data
        if self.remote_eof:
            return b""
        self._idle += 1
        if self._idle > _MAX_IDLE_BLOCKS:
            raise AssertionError(f"fake channel deadlocked on {self.command!r}")
        raise self._block(Direction.INBOUND)

    def drain_stderr(self) -> bytes:
        data = bytes(self.errbox)
        self.errbox.clear()
        return data

    def write(self, data: bytes) -> int:
        self._maybe_interleave(Direction.OUTBOUND)
        accepted = len(data)
        if self.remote.max_write is not None:
            accepted = min(accepted, self.remote.max_write)
        self.inbox += data[:accepted]
        if self._scp is not None:
            self._scp.feed()
        return accepted

    def send_eof(self) -> None:
        self.eof_sent = True
        if self._scp is not None:
            self._scp.client_eof()

    def wait_eof(self) -> None:
        if not self.remote_eof:
            raise self._block(Direction.INBOUND)

    def wait_closed(self) -> None:
        if not self.remote_eof:
            raise self._block(Direction.INBOUND)

    def close(self) -> None:
        if self.remote.fail_close:
            raise ProtocolError("SSH session lost during channel close")
        self.closed = True

    def exit_status(self) -> int:
        return self.exit_code

    def free(self) -> None:
        self.closed = True
        self.freed = True
        self.session.release_channel(self)


class _ScpSink:
    """Remote ``scp -t``: acknowledges header and data, stores the file."""

    def __init__(self, channel: FakeChannel, path: str):
        self.channel = channel
        self.path = path
        self.state = "header"
        self.size = 0
        channel.outbox += b"\x00"

    def feed(self) -> None:
        inbox = self.channel.inbox
        remote = self.channel.remote
        if self.state == "header" and b"\n" in inbox:
            line, _, rest = bytes(inbox).partition(b"\n")
            inbox[:] = rest
            match = _HEADER_RE.match(line)
            if match is None or remote.reject_push:
                reason = remote.reject_push or "protocol error"
                self.channel.outbox += b"\x02scp: " + reason.encode() + b"\n"
                self.state = "failed"
                return
            remote.headers.append(line)
            self.size = int(match.group(2))
            self.channel.outbox += b"\x00"
            self.state = "data"
        if self.state == "data" and len(inbox) >= self.size + 1:
            remote.files[self.path] = bytes(inbox[: self.size])
            assert inbox[self.size : self.size + 1] == b"\x00"
            del inbox[: self.size + 1]
            remote.pushes.append(self.path)
            self.channel.outbox += b"\x00"
            self.state = "done"

    def client_eof(self) -> None:
        self.channel.remote_eof = True


class _ScpSource:
    """Remote ``scp -f``: sends header, data and trailer on acknowledgement."""

    def __init__(self, channel: FakeChannel, path: str):
        self.channel = channel
        self.path = path
        self.state = "start"

    def feed(self) -> None:
        channel = self.channel
        remote = channel.remote
        while channel.inbox:
            ack = channel.inbox[:1]
            del channel.inbox[:1]
            assert ack == b"\x00", f"unexpected byte {ack!r} from client"
            if self.state == "start":
                if self.path not in remote.files:
                    channel.outbox += (
                        f"\x01scp: {self.path}: No such file or directory\n".encode()
                    )
                    channel.remote_eof = True
                    self.state = "failed"
                    return
                data = remote.files[self.path]
                name = self.path.rsplit("/", 1)[-1]
                channel.outbox += f"C0644 {len(data)} {name}\n".encode()
                self.state = "header"
            elif self.state == "header":
                channel.outbox += remote.files[self.path] + b"\x00"
                self.state = "data"
            elif self.state == "data":
                remote.pulls.append(self.path)
                channel.remote_eof = True
                self.state = "done"

    def client_eof(self) -> None:
        pass


# =============================================================================
# Session
# =============================================================================


class FakeSession:
    """Session double: one channel at a time, counted readiness waits."""

    def __init__(self, remote: FakeRemote, hostname: str = "hmc01"):
        self.remote = remote
        self.hostname = hostname
        self.username = "hscroot"
        self.active = True
        self.wait_calls = 0
        self.open_channel_error: Exception | None = None
        # Would-block reports before each channel open succeeds
        self.open_channel_blocks = 0
        self._open_blocks_seen = 0
        self.channels: list[FakeChannel] = []
        self._channel: FakeChannel | None = None
        self._directions = Direction.NONE

    def open_channel(self) -> FakeChannel:
        if self.open_channel_error is not None:
            raise self.open_channel_error
        if self._channel is None and self._open_blocks_seen < self.open_channel_blocks:
            self._open_blocks_seen += 1
            self.declare_blocked(Direction.INBOUND)
            raise BlockingIOError("fake session would block on channel open")
        self._open_blocks_seen = 0
        if self._channel is not None:
            raise ProtocolError("A channel is already open on this session")
        self._channel = FakeChannel(self, self.remote)
        self.channels.append(self._channel)
        return self._channel

    def release_channel(self, channel: FakeChannel) -> None:
        if self._channel is channel:
            self._channel = None

    def declare_blocked(self, direction: Direction) -> None:
        self._directions = direction

    def block_directions(self) -> Direction:
        return self._directions

    def wait_ready(self) -> None:
        assert self._directions != Direction.NONE, "wait without a declared direction"
        self.wait_calls += 1
        self._directions = Direction.NONE

    def is_active(self) -> bool:
        return self.active

    def close(self) -> None:
        self.active = False


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def fake_session(fake_remote) -> FakeSession:
    return FakeSession(fake_remote)


@pytest.fixture
def isolated_settings(monkeypatch, tmp_path):
    """Fresh settings with every cache path under tmp_path."""
    settings._load_pyproject_settings.cache_clear()
    for name in (
        "LPARLINK_SSH_PORT",
        "LPARLINK_SSH_KEY",
        "LPARLINK_TABLE_FILENAME",
        "LPARLINK_REMOTE_HOME",
        "LPARLINK_BLOCK_SIZE",
        "LPARLINK_READ_BUFFER",
        "LPARLINK_USERNAME",
        "LPARLINK_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LPARLINK_CACHE_DIR", str(tmp_path / "cache"))
    yield tmp_path
    settings._load_pyproject_settings.cache_clear()
