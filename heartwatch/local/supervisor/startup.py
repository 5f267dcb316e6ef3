import sys
import logging
import subprocess
from typing import TYPE_CHECKING

from heartwatch.actuator import process_utils
from heartwatch.local.supervisor import persistence

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)


def check_if_already_running(supervisor: "Supervisor") -> bool:
    """
    Checks if a supervisor is already running based on the PID file.

    :param supervisor: The Supervisor instance.
    :return: True if already running, False otherwise.
    """
    pid_info = persistence.get_pid_info(supervisor.config.PID_FILE_PATH)
    if pid_info and process_utils.pid_exists(pid_info["pid"]):
        log.error(f"Heartwatch appears to be running (PID {pid_info['pid']}). Use 'stop' first.")
        return True
    return False


def initialize_store(supervisor: "Supervisor") -> int:
    """
    Seeds the registry from the component store and subscribes the store to
    later registry changes.

    :param supervisor: The Supervisor instance.
    :return: The number of components loaded.
    :raises sqlite3.Error: If the store cannot be opened or read.
    """
    supervisor.store.initialize_database()
    loaded = supervisor.registry.load(supervisor.store.load_all())
    supervisor.store.attach(supervisor.registry)
    return loaded


def load_registration_file(supervisor: "Supervisor") -> int:
    """
    Registers the components listed in the bulk registration file, if any.

    :param supervisor: The Supervisor instance.
    :return: The number of components newly registered.
    """
    path = supervisor.config.REGLIST_PATH
    if not path.exists():
        log.info(f"No registration file at {path}; skipping bulk registration.")
        return 0
    try:
        return supervisor.registry.register_from_file(path)
    except OSError as e:
        log.error(f"Failed to read registration file {path}: {e}")
        return 0


def launch_background_supervisor(config) -> int:
    """
    Starts the supervisor as a detached background process.

    :return: The PID of the new process.
    """
    args = [sys.executable, "-m", "heartwatch.local.entry.supervisor"]
    popen_kwargs = {}
    if sys.platform == "win32":
        popen_kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NO_WINDOW
    else:
        popen_kwargs["start_new_session"] = True

    config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    p = subprocess.Popen(
        args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, stdin=subprocess.DEVNULL,
        cwd=str(config.BASE_DIR), **popen_kwargs
    )
    log.info(f"Supervisor started in the background with PID: {p.pid}")
    return p.pid
