"""lparlink - partition management over a single SSH session.

Runs shell commands on an HMC/IVM-style partition manager, copies small files
to and from it, and keeps a stable UUID for every partition the remote side
only knows by a reassignable integer id.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("lparlink")
except PackageNotFoundError:
    __version__ = "0.0.0"

from lparlink.connection import Connection  # noqa: E402

__all__ = ["Connection", "__version__"]
