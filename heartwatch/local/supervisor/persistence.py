import os
import json
import time
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)


def _write_json_atomically(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    try:
        with temp_path.open("w") as f:
            json.dump(data, f, indent=4)
        temp_path.replace(path)
    finally:
        temp_path.unlink(missing_ok=True)


def get_pid_info(pid_file: Path) -> Optional[Dict[str, Any]]:
    """
    Reads the PID file from disk and returns its contents.

    :param pid_file: Path of the PID file.
    :return: A dict with 'pid' and 'started' if the file exists and is valid, else None.
    """
    if not pid_file.exists():
        return None
    try:
        with pid_file.open("r") as f:
            info = json.load(f)
        if not isinstance(info, dict) or not isinstance(info.get("pid"), int):
            pid_file.unlink(missing_ok=True)
            return None
        return info
    except (json.JSONDecodeError, IOError):
        pid_file.unlink(missing_ok=True)
        return None


def write_pid_file(pid_file: Path, pid: Optional[int] = None) -> None:
    """Atomically writes the supervisor's PID and start time."""
    try:
        _write_json_atomically(pid_file, {"pid": pid or os.getpid(), "started": time.time()})
    except (IOError, OSError) as e:
        log.error(f"Failed to write PID file: {e}", exc_info=True)


def write_status_snapshot(supervisor: "Supervisor") -> None:
    """
    Writes the state of every monitored component for the console to read.

    :param supervisor: The running Supervisor instance.
    """
    manager = supervisor.manager
    components = []
    for component in supervisor.registry.components():
        components.append({
            "id": component.id,
            "topic": component.topic,
            "category": component.category.value,
            "state": manager.state_of(component.id).value,
            "last_heard": manager.last_heard(component.id),
            "alert_count": component.alert_count,
            "last_restart_time": component.last_restart_time,
        })
    snapshot = {"written": time.time(), "stats": manager.stats.as_dict(), "components": components}
    try:
        _write_json_atomically(supervisor.config.STATUS_SNAPSHOT_PATH, snapshot)
    except (IOError, OSError) as e:
        log.error(f"Failed to write status snapshot: {e}")


def read_status_snapshot(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text())
    except (json.JSONDecodeError, IOError) as e:
        log.debug(f"Could not read status snapshot {path}: {e}")
        return None


def check_for_shutdown_signal(signal_file: Path) -> bool:
    """Checks if the shutdown signal file exists."""
    if signal_file.exists():
        log.info("Shutdown signal file detected. Exiting supervisor loop.")
        return True
    return False


def cleanup_shutdown_files(config: Any) -> None:
    """Removes the PID, status and shutdown signal files."""
    config.PID_FILE_PATH.unlink(missing_ok=True)
    config.SHUTDOWN_SIGNAL_PATH.unlink(missing_ok=True)
    config.STATUS_SNAPSHOT_PATH.unlink(missing_ok=True)
    log.debug("Cleaned up PID and signal files.")
