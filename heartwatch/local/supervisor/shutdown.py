import time
import psutil
import logging
from typing import Any

from heartwatch.actuator import process_utils
from heartwatch.local.supervisor import persistence

log = logging.getLogger(__name__)


def stop_background_supervisor(config: Any) -> bool:
    """
    Asks a background supervisor to exit through the shutdown signal file,
    falling back to SIGTERM and then SIGKILL if it does not.

    :param config: The effective settings.
    :return: True if no supervisor is left running.
    """
    pid_info = persistence.get_pid_info(config.PID_FILE_PATH)
    if not pid_info or not process_utils.pid_exists(pid_info["pid"]):
        log.info("No running supervisor found.")
        persistence.cleanup_shutdown_files(config)
        return True

    pid = pid_info["pid"]
    log.info(f"Requesting supervisor (PID {pid}) to shut down...")
    config.SHUTDOWN_SIGNAL_PATH.parent.mkdir(parents=True, exist_ok=True)
    config.SHUTDOWN_SIGNAL_PATH.touch()

    try:
        proc = process_utils.get_process_from_pid(pid)
        _, alive = psutil.wait_procs([proc], timeout=config.STOP_WAIT_TIMEOUT)
        if alive:
            log.warning(f"Supervisor did not exit within {config.STOP_WAIT_TIMEOUT}s. Terminating...")
            proc.terminate()
            _, alive = psutil.wait_procs([proc], timeout=5)
        if alive:
            log.warning(f"Killing stubborn supervisor (PID {pid}).")
            proc.kill()
    except psutil.NoSuchProcess:
        pass
    except psutil.Error as e:
        log.error(f"Failed to stop supervisor (PID {pid}): {e}")
        return False

    persistence.cleanup_shutdown_files(config)
    return True


def format_runtime(start_time: float) -> str:
    return time.strftime('%H:%M:%S', time.gmtime(time.time() - start_time))
