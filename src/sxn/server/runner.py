"""Serve the HTTP API for one project, advertised through a port.lock file.

The lock records where the server listens and which project's ``.sxn.json``
it was started from, so other tools can find a running server for a project.
"""

from __future__ import annotations

import json
import logging
import os
import signal
from pathlib import Path

from sxn.config import get_data_dir, load_config
from sxn.rules.config import CONFIG_FILENAME
from sxn.server.app import create_app

logger = logging.getLogger(__name__)


def get_port_lock_path() -> Path:
    return get_data_dir() / "port.lock"


def write_port_lock(port: int, *, host: str = "127.0.0.1", project_root: Path | None = None) -> Path:
    lock_path = get_port_lock_path()
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "host": host,
        "port": port,
        "pid": os.getpid(),
        "project_root": str(project_root) if project_root else None,
    }
    _ = lock_path.write_text(json.dumps(data))
    return lock_path


def read_port_lock(project_root: Path | None = None) -> dict | None:
    """Return the lock of a live server, optionally only one serving ``project_root``."""
    try:
        data = json.loads(get_port_lock_path().read_text())
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict) or not _pid_alive(data.get("pid")):
        return None
    if project_root is not None and data.get("project_root") != str(project_root.resolve()):
        return None
    return data


def remove_port_lock() -> None:
    """Remove the lock if this process wrote it."""
    lock_path = get_port_lock_path()
    try:
        data = json.loads(lock_path.read_text())
    except (OSError, json.JSONDecodeError):
        lock_path.unlink(missing_ok=True)
        return
    if isinstance(data, dict) and data.get("pid") not in (None, os.getpid()):
        return
    lock_path.unlink(missing_ok=True)


def _pid_alive(pid: object) -> bool:
    if not isinstance(pid, int) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def run_server(project_root: Path | None = None, *, port: int | None = None) -> None:
    """Serve the project's rules API with uvicorn, using its ``.sxn.json`` server section."""
    import uvicorn

    project_root = (project_root or Path.cwd()).resolve()
    config = load_config(project_root / CONFIG_FILENAME)
    if port is not None:
        config.port = port

    running = read_port_lock()
    if running and running.get("pid") != os.getpid():
        logger.warning(
            "Another sxn server (pid %s) holds the port lock on port %s",
            running["pid"],
            running["port"],
        )

    _ = write_port_lock(config.port, host=config.host, project_root=project_root)
    logger.info("Serving %s on %s:%d", project_root, config.host, config.port)

    def cleanup(signum, frame):
        remove_port_lock()
        raise SystemExit(0)

    _ = signal.signal(signal.SIGTERM, cleanup)
    _ = signal.signal(signal.SIGINT, cleanup)

    try:
        uvicorn.run(create_app(project_root), host=config.host, port=config.port)
    finally:
        remove_port_lock()
