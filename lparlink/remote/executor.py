"""Remote command execution over one SSH session.

Each call opens a fresh channel, runs exactly one command, drains its output
and closes the channel again; nothing is retried across calls. This module is
the whole upward contract for command-building callers:

- execute(): raw output bytes and exit status
- execute_trimmed(): output cut at the first newline on success
- execute_int(): leading integer of a successful command's first line
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from lparlink import settings
from lparlink.errors import ParseError, ProtocolError
from lparlink.remote.retry import retry_would_block

if TYPE_CHECKING:
    from lparlink.remote.session import Session, SSHChannel

logger = logging.getLogger(__name__)

# Exit status reported when the channel could not be closed cleanly. Remote
# exit statuses are always in 0..255.
CLOSE_FAILED_EXIT_STATUS = -1

_LEADING_INT_RE = re.compile(rb"^\s*([+-]?\d+)")


class CommandExecutor:
    """Runs shell commands on the session's remote host."""

    def __init__(self, session: Session, read_size: int | None = None):
        self.session = session
        self.read_size = read_size or settings.get_read_buffer_size()

    def execute(self, command: str) -> tuple[bytes, int]:
        """Run ``command`` verbatim and collect its stdout and exit status.

        Args:
            command: Shell command text, passed to the remote side unchanged.

        Returns:
            Tuple of (output, exit_status). ``exit_status`` is
            ``CLOSE_FAILED_EXIT_STATUS`` when the channel failed to close.

        Raises:
            ProtocolError: Channel open, exec or read failed.
            LinkIOError: The readiness wait failed.
        """
        wait = self.session.wait_ready
        logger.debug("[ssh] $ %s", command)

        channel = retry_would_block(self.session.open_channel, wait)
        try:
            retry_would_block(channel.exec, wait, command)
            output = self._drain(channel)
            try:
                retry_would_block(channel.close, wait)
            except ProtocolError as e:
                logger.warning("Channel close failed after %r: %s", command, e)
                exit_status = CLOSE_FAILED_EXIT_STATUS
            else:
                exit_status = channel.exit_status()
        finally:
            channel.free()

        logger.debug("[ssh] rc=%d, %d bytes", exit_status, len(output))
        return output, exit_status

    def _drain(self, channel: SSHChannel) -> bytes:
        """Read stdout until end-of-stream, waiting whenever a read would block."""
        buffer = bytearray()
        while True:
            try:
                chunk = channel.read(self.read_size)
            except BlockingIOError:
                self._discard_stderr(channel)
                self.session.wait_ready()
                continue
            if not chunk:
                break
            buffer += chunk
        self._discard_stderr(channel)
        return bytes(buffer)

    @staticmethod
    def _discard_stderr(channel: SSHChannel) -> None:
        # Unread stderr would hold the shared channel window shut
        if err := channel.drain_stderr():
            logger.debug("[ssh] stderr: %s", err.decode(errors="replace").rstrip())

    def execute_trimmed(self, command: str) -> tuple[bytes, int]:
        """Like :meth:`execute`, keeping only the first line on success.

        Output of a failed command is returned untouched.
        """
        output, exit_status = self.execute(command)
        if exit_status == 0:
            output = output.split(b"\n", 1)[0]
        return output, exit_status

    def execute_int(self, command: str) -> int:
        """Run ``command`` and parse the leading integer of its first line.

        Raises:
            ParseError: Non-zero exit status, or no leading digits.
        """
        output, exit_status = self.execute_trimmed(command)
        if exit_status != 0:
            raise ParseError(f"Command exited with status {exit_status}: {command!r}")
        match = _LEADING_INT_RE.match(output)
        if match is None:
            raise ParseError(f"Cannot parse number from {output!r}")
        if output[match.end() :]:
            logger.warning(
                "ignoring suffix during integer parsing of '%s'",
                output.decode(errors="replace"),
            )
        return int(match.group(1))
