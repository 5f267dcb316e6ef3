import os
import psutil
import logging
from typing import Iterable, Optional, Union

from heartwatch.actuator.responses import Response

log = logging.getLogger(__name__)


#* --- Process Lookup ---
def pid_exists(pid: int) -> bool:
    """A wrapper for psutil.pid_exists for easy testing/mocking if needed."""
    return psutil.pid_exists(pid)

def get_process_from_pid(pid: int) -> psutil.Process:
    """A wrapper for psutil.Process for easy testing/mocking if needed."""
    return psutil.Process(pid)

def _command_line_of(proc: psutil.Process) -> str:
    cmdline = proc.info.get("cmdline") or []
    return " ".join(cmdline) if cmdline else (proc.info.get("name") or "")

def find_pid(pattern: str) -> Optional[int]:
    """
    Finds the first process whose command line contains `pattern`.

    The current process and its parent are never matched.

    :param pattern: A substring of the wanted command line.
    :return: The PID, or None if no process matches.
    """
    if not pattern:
        return None
    own_pids = {os.getpid(), os.getppid()}
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            if proc.pid in own_pids:
                continue
            if pattern in _command_line_of(proc):
                log.debug(f"Process {proc.pid} matches '{pattern}': {_command_line_of(proc)[:120]}")
                return proc.pid
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    log.debug(f"No process matches '{pattern}'")
    return None

#* --- Process Termination ---
def kill(pid_or_pattern: Union[int, str], forceful: bool = False, timeout: float = 5) -> Response:
    """
    Terminates a process by PID, or by the first process matching a pattern.

    :param pid_or_pattern: A PID, a numeric string, or a command-line pattern.
    :param forceful: Sends SIGKILL instead of SIGTERM.
    :param timeout: Seconds to wait for the process to exit.
    :return: KILLED, PID_NOT_FOUND or KILL_FAILED.
    """
    if isinstance(pid_or_pattern, int):
        pid = pid_or_pattern
    elif str(pid_or_pattern).strip().isdigit():
        pid = int(str(pid_or_pattern).strip())
    else:
        pid = find_pid(str(pid_or_pattern))
        if pid is None:
            return Response.PID_NOT_FOUND

    try:
        proc = get_process_from_pid(pid)
        signal_name = "SIGKILL" if forceful else "SIGTERM"
        log.warning(f"Sending {signal_name} to {proc.name()} (PID {pid}).")
        if forceful:
            proc.kill()
        else:
            proc.terminate()
        proc.wait(timeout=timeout)
        return Response.KILLED
    except psutil.NoSuchProcess:
        log.info(f"Process {pid} no longer exists.")
        return Response.PID_NOT_FOUND
    except psutil.TimeoutExpired:
        log.error(f"Process {pid} did not exit within {timeout}s.")
        return Response.KILL_FAILED
    except psutil.Error as e:
        log.error(f"Failed to kill process {pid}: {e}")
        return Response.KILL_FAILED

#* --- Output Logging ---
def log_output_lines(name: str, stdout: Optional[str], stderr: Optional[str]) -> None:
    """Logs captured lifecycle-tool output on the `proc.<name>` logger."""
    proc_logger = logging.getLogger(f"proc.{name}")
    for level, text in ((logging.INFO, stdout), (logging.ERROR, stderr)):
        for line in _non_blank_lines(text):
            proc_logger.log(level, line)

def _non_blank_lines(text: Optional[str]) -> Iterable[str]:
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]
