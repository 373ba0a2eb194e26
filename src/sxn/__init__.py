"""sxn: git worktree sessions provisioned by a transactional rules engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sxn")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
