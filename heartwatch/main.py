import sys
import logging
import threading

import heartwatch.local.console as console
from heartwatch.local.config import effective_settings as config
from heartwatch.log.setup import setup_logging

log = logging.getLogger("console")

CONSOLE_LOCK = threading.Lock()


def main() -> None:
    """The main entry point for the console application."""
    # Foreground runs store their logs; one-off console commands do not.
    log_to_db = len(sys.argv) > 1 and sys.argv[1].lower() == "run"
    setup_logging(logging.INFO, log_to_db=log_to_db)

    # Non-interactive mode for one-off commands
    if len(sys.argv) > 1:
        command, args = sys.argv[1].lower(), sys.argv[2:]
        if "--verbose" in args:
            args.remove("--verbose")
            console.toggle_verbose_logging()
        console.execute_command(command, args)
        return

    # Interactive mode
    print("--- Heartwatch Management Console ---")
    print("Type 'help' for a list of commands.")

    with CONSOLE_LOCK:
        pid = console.supervisor_pid()
    print(f"Heartwatch is currently {'Running (PID ' + str(pid) + ')' if pid else 'Stopped'}.")
    log.debug(f"Console startup - configuration loaded from {config.BASE_DIR}")

    while True:
        try:
            # The input prompt must be outside the lock to not block background threads
            command_line_str = input("> ")
            with CONSOLE_LOCK:
                if not command_line_str.strip():
                    continue
                command_line = command_line_str.strip().split()
                command, args = command_line[0].lower(), command_line[1:]
                log.debug(f"Received command: {command}, args: {args}")

                if console.execute_command(command, args):
                    break

        except (KeyboardInterrupt, EOFError):
            with CONSOLE_LOCK:
                log.warning("\nExiting console.")
                break
        except Exception as e:
            with CONSOLE_LOCK:
                log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)


if __name__ == "__main__":
    main()
    print("Exiting console application. See you next time!")
