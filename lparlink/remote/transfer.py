"""Small-file copy to and from the remote host over the SCP protocol.

Both directions run the remote ``scp`` binary on one exec channel of the
existing session, so no second connection or SFTP subsystem is needed:

- push: ``scp -t <path>`` (sink). We send a ``C<mode> <size> <name>`` header,
  the data in fixed-size blocks, then a zero byte; the sink acknowledges
  each stage with a zero byte.
- pull: ``scp -f <path>`` (source). We send zero bytes to pull the header,
  then the data, then the source's trailing status byte.

A status byte of 1 (warning) or 2 (fatal) is followed by a message line,
e.g. ``scp: /home/x/file: No such file or directory``.

Every step goes through ``retry_would_block`` with the session's readiness
wait.
"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from pathlib import Path
from typing import TYPE_CHECKING

from lparlink import settings
from lparlink.errors import LinkIOError, ProtocolError, RemoteFileNotFound
from lparlink.remote.retry import retry_would_block

if TYPE_CHECKING:
    from lparlink.remote.session import Session, SSHChannel

logger = logging.getLogger(__name__)

_OK = b"\x00"
_WARNING = b"\x01"
_FATAL = b"\x02"

_MAX_CONTROL_LINE = 4096

_FILE_HEADER_RE = re.compile(rb"^C([0-7]{4}) (\d+) (.+)$")


class FileTransferChannel:
    """Pushes and pulls single files over the session's channels."""

    def __init__(self, session: Session, block_size: int | None = None):
        self.session = session
        self.block_size = block_size or settings.get_transfer_block_size()

    # -------------------------
    # stream helpers
    # -------------------------
    def _read_exact(self, channel: SSHChannel, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            chunk = retry_would_block(
                channel.read, self.session.wait_ready, size - len(data)
            )
            if not chunk:
                raise ProtocolError(
                    f"Unexpected end of stream after {len(data)} of {size} bytes"
                )
            data += chunk
        return bytes(data)

    def _read_line(self, channel: SSHChannel) -> bytes:
        line = bytearray()
        while True:
            byte = self._read_exact(channel, 1)
            if byte == b"\n":
                return bytes(line)
            line += byte
            if len(line) > _MAX_CONTROL_LINE:
                raise ProtocolError("SCP control line too long")

    def _read_status(self, channel: SSHChannel, stage: str) -> bytes:
        """Read one status byte; error replies raise with the remote message."""
        status = self._read_exact(channel, 1)
        if status in (_WARNING, _FATAL):
            message = self._read_line(channel).decode(errors="replace")
            raise ProtocolError(f"SCP {stage} rejected: {message}")
        return status

    def _read_ack(self, channel: SSHChannel, stage: str) -> None:
        status = self._read_status(channel, stage)
        if status != _OK:
            raise ProtocolError(f"SCP {stage}: unexpected reply {status!r}")

    def _write_all(self, channel: SSHChannel, data: bytes) -> None:
        """Write ``data`` completely, accumulating partial writes."""
        view = memoryview(data)
        sent = 0
        while sent < len(data):
            written = retry_would_block(
                channel.write, self.session.wait_ready, bytes(view[sent:])
            )
            if written <= 0:
                raise ProtocolError(f"Channel accepted no data after {sent} bytes")
            sent += written

    def _finish(self, channel: SSHChannel) -> None:
        wait = self.session.wait_ready
        retry_would_block(channel.send_eof, wait)
        retry_would_block(channel.wait_eof, wait)
        retry_would_block(channel.wait_closed, wait)

    # -------------------------
    # push
    # -------------------------
    def _open_send(self, remote_path: str, size: int, mode: int) -> SSHChannel:
        """Open an outbound copy channel sized to the file about to be sent."""
        wait = self.session.wait_ready
        channel = retry_would_block(self.session.open_channel, wait)
        try:
            retry_would_block(channel.exec, wait, f"scp -t {shlex.quote(remote_path)}")
            self._read_ack(channel, "sink start")
            name = posixpath.basename(remote_path)
            header = f"C{mode & 0o777:04o} {size} {name}\n".encode()
            self._write_all(channel, header)
            self._read_ack(channel, "file header")
        except Exception:
            channel.free()
            raise
        return channel

    def push(self, local_path: str | Path, remote_path: str) -> None:
        """Copy a local file to ``remote_path``.

        Raises:
            LinkIOError: The local file cannot be read.
            ProtocolError: Any channel or SCP step failed.
        """
        local_path = Path(local_path)
        try:
            info = local_path.stat()
            source = local_path.open("rb")
        except OSError as e:
            raise LinkIOError(f"Unable to open local file {local_path}: {e}") from e

        with source:
            channel = self._open_send(remote_path, info.st_size, info.st_mode)
            try:
                while True:
                    try:
                        block = source.read(self.block_size)
                    except OSError as e:
                        raise LinkIOError(f"Failed to read from {local_path}: {e}") from e
                    if not block:
                        break
                    self._write_all(channel, block)
                self._write_all(channel, _OK)
                self._read_ack(channel, "file data")
                self._finish(channel)
            finally:
                channel.free()

        logger.debug("Pushed %s -> %s (%d bytes)", local_path, remote_path, info.st_size)

    # -------------------------
    # pull
    # -------------------------
    def _open_receive(self, remote_path: str) -> tuple[SSHChannel, int]:
        """Open an inbound copy channel and learn the remote file size.

        Raises:
            RemoteFileNotFound: Any non-would-block failure while opening.
        """
        wait = self.session.wait_ready
        try:
            channel = retry_would_block(self.session.open_channel, wait)
        except ProtocolError as e:
            raise RemoteFileNotFound(remote_path, str(e)) from e

        try:
            retry_would_block(channel.exec, wait, f"scp -f {shlex.quote(remote_path)}")
            self._write_all(channel, _OK)
            while True:
                status = self._read_status(channel, "source start")
                line = status + self._read_line(channel)
                if not line.startswith(b"T"):
                    break
                # modification times, only sent with -p
                self._write_all(channel, _OK)
            match = _FILE_HEADER_RE.match(line)
            if match is None:
                raise ProtocolError(f"Unexpected SCP header {line!r}")
            size = int(match.group(2))
            self._write_all(channel, _OK)
        except ProtocolError as e:
            channel.free()
            logger.info("Copy channel for %s not opened: %s", remote_path, e)
            raise RemoteFileNotFound(remote_path, str(e)) from e
        except Exception:
            channel.free()
            raise
        return channel, size

    def pull(self, remote_path: str, local_path: str | Path) -> int:
        """Copy ``remote_path`` into a local file.

        Returns:
            Number of bytes received.

        Raises:
            RemoteFileNotFound: The copy channel could not be opened.
            ProtocolError: The transfer broke off after opening.
            LinkIOError: The local file cannot be written.
        """
        local_path = Path(local_path)
        channel, size = self._open_receive(remote_path)
        try:
            try:
                local_path.parent.mkdir(parents=True, exist_ok=True)
                target = local_path.open("wb")
            except OSError as e:
                raise LinkIOError(f"Unable to create local file {local_path}: {e}") from e

            received = 0
            with target:
                while received < size:
                    chunk = retry_would_block(
                        channel.read, self.session.wait_ready, size - received
                    )
                    if not chunk:
                        raise ProtocolError(
                            f"Remote closed after {received} of {size} bytes"
                        )
                    try:
                        target.write(chunk)
                    except OSError as e:
                        raise LinkIOError(
                            f"Unable to write information to {local_path}: {e}"
                        ) from e
                    received += len(chunk)

            self._read_ack(channel, "file trailer")
            self._write_all(channel, _OK)
            self._finish(channel)
        finally:
            channel.free()

        logger.debug("Pulled %s -> %s (%d bytes)", remote_path, local_path, received)
        return received
