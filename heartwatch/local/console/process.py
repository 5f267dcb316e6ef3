import logging
from typing import List

from heartwatch.local.config import effective_settings as config
from heartwatch.local.supervisor import Supervisor, shutdown, startup
from heartwatch.local.console.handler import (
    display_components, display_status, handle_appmgr_command, handle_config_command, handle_kill_command,
    handle_logs_command, handle_register_command, handle_unregister_command, print_help, supervisor_pid,
    toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def run_foreground() -> None:
    """Runs the supervisor in this process until Ctrl+C or a shutdown signal."""
    supervisor = Supervisor()
    supervisor.install_signal_handlers()
    if not supervisor.supervision_loop():
        log.error("Supervisor failed to start. See the log above for details.")


def start_background() -> None:
    if supervisor_pid():
        log.error(f"Heartwatch is already running (PID {supervisor_pid()}).")
        return
    startup.launch_background_supervisor(config)


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'config').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "run": run_foreground,
        "start": start_background,
        "stop": lambda: shutdown.stop_background_supervisor(config),
        "shutdown": lambda: shutdown.stop_background_supervisor(config),
        "status": display_status,
        "components": display_components,
        "register": lambda: handle_register_command(args),
        "unregister": lambda: handle_unregister_command(args),
        "appmgr": lambda: handle_appmgr_command(args),
        "kill": lambda: handle_kill_command(args),
        "config": lambda: handle_config_command(args),
        "logs": handle_logs_command,
        "verbose": toggle_verbose_logging,
        "help": print_help,
        "exit": lambda: True
    }

    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False

    result = command_map[command]()
    return command == "exit" and result is True
