"""Project settings loaded from pyproject.toml [tool.lparlink] section.

Configuration keys:
  [tool.lparlink]
  ssh-port           : SSH port used when the URI carries none
  ssh-key            : private key path (public key is <ssh-key>.pub)
  table-filename     : remote correspondence table file name
  remote-home        : root of remote home directories
  cache-dir          : local directory holding table caches
  block-size         : SCP transfer block size in bytes
  read-buffer        : command output read size in bytes

All settings support environment variable overrides (LPARLINK_* prefix).
"""

import os
from functools import cache
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[import-not-found]


def _find_pyproject() -> Path | None:
    """Nearest pyproject.toml at or above the package directory."""
    for directory in Path(__file__).resolve().parents:
        candidate = directory / "pyproject.toml"
        if candidate.is_file():
            return candidate
    return None


@cache
def _load_pyproject_settings() -> dict:
    """Return the [tool.lparlink] table, or {} when there is none."""
    pyproject = _find_pyproject()
    if pyproject is None:
        return {}
    try:
        data = tomllib.loads(pyproject.read_text())
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError):
        return {}
    return data.get("tool", {}).get("lparlink", {})


def _get(key: str, default):
    return _load_pyproject_settings().get(key, default)


# ─── SSH settings ───────────────────────────────────────────────────────────

DEFAULT_SSH_PORT = 22


def get_ssh_port() -> int:
    """Get the SSH port used when a URI does not name one.

    Priority: LPARLINK_SSH_PORT env → [tool.lparlink].ssh-port → 22.
    """
    if env := os.getenv("LPARLINK_SSH_PORT"):
        return int(env)
    return int(_get("ssh-port", DEFAULT_SSH_PORT))


def get_private_key_path() -> Path:
    """Get the default private key used for public-key authentication.

    Priority: LPARLINK_SSH_KEY env → [tool.lparlink].ssh-key → ~/.ssh/id_rsa.
    """
    if env := os.getenv("LPARLINK_SSH_KEY"):
        return Path(env).expanduser()
    configured = _get("ssh-key", None)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".ssh" / "id_rsa"


def get_public_key_path() -> Path:
    """Public half of the default key pair, next to the private key."""
    private = get_private_key_path()
    return private.with_name(private.name + ".pub")


# ─── Correspondence table settings ──────────────────────────────────────────

DEFAULT_TABLE_FILENAME = "lparlink_uuid_table"


def get_table_filename() -> str:
    """Get the file name of the remote correspondence table.

    Priority: LPARLINK_TABLE_FILENAME env → [tool.lparlink].table-filename
              → 'lparlink_uuid_table'.
    """
    if env := os.getenv("LPARLINK_TABLE_FILENAME"):
        return env
    return str(_get("table-filename", DEFAULT_TABLE_FILENAME))


def get_remote_home_root() -> str:
    """Get the directory holding remote user home directories.

    Priority: LPARLINK_REMOTE_HOME env → [tool.lparlink].remote-home → '/home'.
    """
    if env := os.getenv("LPARLINK_REMOTE_HOME"):
        return env.rstrip("/") or "/"
    return str(_get("remote-home", "/home")).rstrip("/") or "/"


def get_remote_table_path(username: str) -> str:
    """Remote path of the persisted table for an authenticated user."""
    root = get_remote_home_root().rstrip("/")
    return f"{root}/{username}/{get_table_filename()}"


def get_cache_dir() -> Path:
    """Get the local directory holding correspondence table caches.

    Priority: LPARLINK_CACHE_DIR env → [tool.lparlink].cache-dir
              → ~/.local/share/lparlink/tables.
    """
    if env := os.getenv("LPARLINK_CACHE_DIR"):
        return Path(env).expanduser()
    configured = _get("cache-dir", None)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".local" / "share" / "lparlink" / "tables"


def get_local_table_path(username: str, host: str) -> Path:
    """Local cache path of the table for one user on one host."""
    return get_cache_dir() / f"{username}@{host}.uuid_table"


# ─── Transfer settings ──────────────────────────────────────────────────────


def get_transfer_block_size() -> int:
    """Get the SCP block size in bytes.

    Priority: LPARLINK_BLOCK_SIZE env → [tool.lparlink].block-size → 1024.
    """
    if env := os.getenv("LPARLINK_BLOCK_SIZE"):
        return int(env)
    return int(_get("block-size", 1024))


def get_read_buffer_size() -> int:
    """Get the per-read size used when draining command output.

    Priority: LPARLINK_READ_BUFFER env → [tool.lparlink].read-buffer → 16384.
    """
    if env := os.getenv("LPARLINK_READ_BUFFER"):
        return int(env)
    return int(_get("read-buffer", 16384))
