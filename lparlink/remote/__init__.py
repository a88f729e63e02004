"""
Remote execution and file transfer over a single SSH session.

Key pieces:
- Session: connect, authenticate, readiness wait, channel factory
- retry_would_block(step, wait_ready): drive a non-blocking step to completion
- CommandExecutor: execute / execute_trimmed / execute_int
- FileTransferChannel: push / pull one small file via SCP
"""

from lparlink.remote.executor import CLOSE_FAILED_EXIT_STATUS, CommandExecutor
from lparlink.remote.retry import Direction, retry_would_block
from lparlink.remote.session import (
    AuthCallback,
    CredentialRequest,
    Session,
    SSHChannel,
)
from lparlink.remote.transfer import FileTransferChannel

__all__ = [
    "CLOSE_FAILED_EXIT_STATUS",
    "AuthCallback",
    "CommandExecutor",
    "CredentialRequest",
    "Direction",
    "FileTransferChannel",
    "SSHChannel",
    "Session",
    "retry_would_block",
]
