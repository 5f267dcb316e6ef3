import os
import sys
import time
import sqlite3
import psutil
import logging
from pathlib import Path
from typing import List

from heartwatch.actuator import Action, AppManager, AppManagerSettings, process_utils
from heartwatch.local.config import effective_settings as config
from heartwatch.local.database import ComponentDBManager, LogDBManager
from heartwatch.local.supervisor import persistence
from heartwatch.local.transport import TransportError, create_transport
from heartwatch.messages import RegisterMessage, UnregisterMessage, serialize
from heartwatch.registry import ComponentRegistry, MonitoredComponent

# --- Platform-specific non-blocking keypress detection ---
if sys.platform == "win32":
    import msvcrt

    def is_keypress_waiting() -> bool:
        return msvcrt.kbhit()

    def clear_keypress_buffer() -> None:
        while msvcrt.kbhit():
            msvcrt.getch()
else:
    import select
    import termios
    import tty

    def is_keypress_waiting() -> bool:
        return select.select([sys.stdin], [], [], 0) == ([sys.stdin], [], [])

    def clear_keypress_buffer() -> None:
        # Switch to cbreak mode temporarily to read without Enter
        old_settings = termios.tcgetattr(sys.stdin)
        try:
            tty.setcbreak(sys.stdin.fileno())
            while is_keypress_waiting():
                sys.stdin.read(1)
        finally:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)

log = logging.getLogger(__name__)


def supervisor_pid() -> int:
    """Returns the PID of the running supervisor, or 0 if none is running."""
    pid_info = persistence.get_pid_info(config.PID_FILE_PATH)
    if pid_info and process_utils.pid_exists(pid_info["pid"]):
        return pid_info["pid"]
    return 0


#* --- Status ---
def display_status() -> None:
    """Shows whether the supervisor runs, its resource usage and a summary of component states."""
    pid_info = persistence.get_pid_info(config.PID_FILE_PATH)
    if not pid_info:
        print("\nHeartwatch is STOPPED (No PID file found).\n")
        return

    print("\n--- Heartwatch Status ---")
    pid = pid_info["pid"]
    try:
        p = psutil.Process(pid)
        cpu = p.cpu_percent(interval=0.1)
        mem = p.memory_info().rss
        print(f"  Supervisor : PID {pid:<8} | Status: {p.status().upper()} | CPU: {cpu:.1f}% | MEM: {mem/1024/1024:.1f} MB")
        runtime = time.strftime('%H:%M:%S', time.gmtime(time.time() - pid_info.get("started", time.time())))
        print(f"  Runtime    : {runtime}")
    except psutil.NoSuchProcess:
        print(f"  Supervisor : PID {pid:<8} | Status: STOPPED (Stale PID)")
        print("\nWARNING: The supervisor is not running but a stale PID file exists.")
        print("Run 'stop' to clean it up before starting again.\n")
        return
    except psutil.AccessDenied:
        print(f"  Supervisor : PID {pid:<8} | Status: RUNNING (Access Denied)")

    snapshot = persistence.read_status_snapshot(config.STATUS_SNAPSHOT_PATH)
    if snapshot:
        states = {}
        for component in snapshot["components"]:
            states[component["state"]] = states.get(component["state"], 0) + 1
        summary = ", ".join(f"{count} {state}" for state, count in sorted(states.items())) or "none"
        print(f"  Components : {len(snapshot['components'])} ({summary})")
        stats = snapshot.get("stats", {})
        print(f"  Probes     : {stats.get('probes_sent', 0)} sent, {stats.get('probe_failures', 0)} failed")
        print(f"  Alerts     : {stats.get('alerts_raised', 0)} raised, {stats.get('recoveries', 0)} recovered, "
              f"{stats.get('remediations', 0)} remediations")
    print("-" * 25 + "\n")


def display_components() -> None:
    """Lists monitored components: live state when running, the stored registry otherwise."""
    snapshot = persistence.read_status_snapshot(config.STATUS_SNAPSHOT_PATH) if supervisor_pid() else None
    if snapshot:
        print(f"\n--- Monitored Components (live, {len(snapshot['components'])}) ---")
        for c in sorted(snapshot["components"], key=lambda c: c["id"]):
            heard = time.strftime('%H:%M:%S', time.localtime(c["last_heard"])) if c["last_heard"] else "never"
            print(f"  {c['id']:<40} {c['state']:<9} last heard {heard:<9} alerts {c['alert_count']:<4} topic {c['topic']}")
        print()
        return

    store = ComponentDBManager(config.COMPONENT_DB_PATH)
    try:
        store.initialize_database()
        components = store.load_all()
    except sqlite3.Error as e:
        print(f"Could not read the component store: {e}")
        return
    print(f"\n--- Registered Components (stored, {len(components)}) ---")
    for c in sorted(components, key=lambda c: c.id):
        print(f"  {c.id:<40} {c.category.value:<18} topic {c.topic}")
    print()


#* --- Registration ---
def _publish_to_supervisor(text: str) -> bool:
    transport = create_transport(config)
    try:
        transport.publish(config.INITIAL_TOPICS[0], text)
        return True
    except TransportError as e:
        print(f"Failed to reach the supervisor: {e}")
        return False
    finally:
        transport.close()


def _can_message_running_supervisor() -> bool:
    if config.TRANSPORT_BACKEND == "memory":
        print("\nERROR: The supervisor is running with the in-memory transport and cannot be reached.")
        print("Stop it first, or configure TRANSPORT_BACKEND=redis.\n")
        return False
    return True


def _open_store_registry() -> ComponentRegistry:
    store = ComponentDBManager(config.COMPONENT_DB_PATH)
    store.initialize_database()
    registry = ComponentRegistry()
    registry.load(store.load_all())
    store.attach(registry)
    return registry


def handle_register_command(args: List[str]) -> None:
    """Registers every component listed in a registration file."""
    path = Path(args[0]) if args else config.REGLIST_PATH
    if supervisor_pid():
        if not _can_message_running_supervisor():
            return
        try:
            lines = [line.strip() for line in path.read_text().splitlines()]
        except OSError as e:
            print(f"Could not read {path}: {e}")
            return
        sent = 0
        for line in lines:
            if not line or line.startswith("#"):
                continue
            component = MonitoredComponent.from_record(line)
            if component is None:
                continue
            message = RegisterMessage(
                name=component.name, node=component.node, topic=component.topic, path=component.path,
                category=component.category.value, metadata=component.metadata,
                app_manager_name=component.app_manager_name, jmx_enabled=component.jmx_enabled,
                is_managed_app=component.is_managed_app,
            )
            if _publish_to_supervisor(serialize(message)):
                sent += 1
        print(f"Sent {sent} register messages to the running supervisor.")
        return

    try:
        registry = _open_store_registry()
        added = registry.register_from_file(path)
    except (OSError, sqlite3.Error) as e:
        print(f"Registration failed: {e}")
        return
    print(f"Registered {added} new components from {path}.")


def handle_unregister_command(args: List[str]) -> None:
    """Unregisters a component by its id (node-name)."""
    if not args:
        print("Usage: unregister <node-name>")
        return
    component_id = args[0]
    if supervisor_pid():
        if not _can_message_running_supervisor():
            return
        node, sep, name = component_id.partition("-")
        if not sep:
            print(f"'{component_id}' is not a component id of the form node-name.")
            return
        reason = " ".join(args[1:]) or "unregistered from console"
        if _publish_to_supervisor(serialize(UnregisterMessage(name=name, node=node, reason=reason))):
            print(f"Unregister request for '{component_id}' sent to the running supervisor.")
        return

    try:
        registry = _open_store_registry()
    except sqlite3.Error as e:
        print(f"Could not open the component store: {e}")
        return
    if registry.unregister(component_id):
        print(f"Unregistered '{component_id}'.")
    else:
        print(f"No component '{component_id}' is registered.")


#* --- Lifecycle Tool ---
def handle_appmgr_command(args: List[str]) -> None:
    """Runs the lifecycle tool for one component: appmgr <component> start|stop|restart|status."""
    actions = [a.value for a in Action]
    if len(args) < 2 or args[1].lower() not in actions:
        print(f"Usage: appmgr <component> {'|'.join(actions)}")
        return
    app_manager = AppManager(AppManagerSettings.from_config(config))
    response = app_manager.run(args[0], Action(args[1].lower()))
    print(f"{args[0]} {args[1].lower()}: {response}")


def handle_kill_command(args: List[str]) -> None:
    """Kills a process by PID or command-line pattern: kill <pid|pattern> [-9]."""
    if not args:
        print("Usage: kill <pid|pattern> [-9]")
        return
    forceful = "-9" in args
    target = " ".join(a for a in args if a != "-9")
    if str(target) == str(os.getpid()):
        print("Refusing to kill the console itself.")
        return
    print(f"kill {target}: {process_utils.kill(target, forceful=forceful)}")


#* --- Configuration ---
def _config_show() -> None:
    print("\n--- Current Heartwatch Configuration ---")
    for key in sorted(config.MODIFIABLE_SETTINGS):
        print(f"  {key} = {config.get(key, 'N/A')}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("A running supervisor picks up changes on its next start.")
    print("---------------------------------------\n")


def _config_set(args: List[str]) -> None:
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return
    key, value_str = args[0].upper(), " ".join(args[1:])
    try:
        new_value = config.update_setting(key, value_str)
    except KeyError:
        print(f"Error: '{key}' is not a modifiable setting.")
        return
    except (ValueError, TypeError) as e:
        print(f"Could not convert value '{value_str}' for '{key}': {e}")
        return
    print(f"Setting '{key}' updated to '{new_value}'.")
    if supervisor_pid():
        print("Restart the supervisor ('stop' then 'start') for the change to take effect.")


def _config_help() -> None:
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change a setting and save it to overrides.json.")
    print("  config help                - Show this help message.")


def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")


#* --- Logs ---
def handle_logs_command() -> None:
    """
    Handles the 'logs' command, providing a blocking, interactive log tail.
    """
    log_db = LogDBManager(config.LOG_DB_PATH)
    if not config.LOG_DB_PATH.exists():
        print("No log database found yet.")
        return

    print(f"\n--- Displaying last {config.LOG_HISTORY_COUNT} log entries ---")
    last_ts = 0.0
    for log_entry in log_db.fetch_last_entries(config.LOG_HISTORY_COUNT):
        if log_entry.level == "DEBUG" and not config.VERBOSE_LOGGING:
            continue
        print(log_entry.message)
        last_ts = max(last_ts, log_entry.timestamp)

    if not sys.stdin.isatty():
        return

    print("\n--- Now tailing new log entries (Press any key to stop) ---\n")
    try:
        while not is_keypress_waiting():
            new_logs, last_ts = log_db.listen_for_updates(last_ts)
            for log_entry in new_logs:
                if log_entry.level == "DEBUG" and not config.VERBOSE_LOGGING:
                    continue
                print(log_entry.message)
            time.sleep(1)
        clear_keypress_buffer()
        print("\n--- Log tailing stopped. Returning to console. ---")
    except KeyboardInterrupt:
        print("\n--- Log tailing interrupted. Returning to console. ---")


#* --- Misc ---
def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    new_level = logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO

    found_handler = False
    for handler in logging.getLogger().handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if config.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
        log.debug("Debug logging test: This message should only appear when verbose is ON.")
    else:
        print("Could not find console handler to modify level.")


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  run                        - Run the supervisor in the foreground (Ctrl+C to stop).")
    print("  start                      - Start the supervisor in the background.")
    print("  stop                       - Stop the background supervisor gracefully.")
    print("  status                     - Show supervisor status and a component summary.")
    print("  components                 - List monitored components and their state.")
    print("  register [file]            - Register the components listed in a registration file.")
    print("  unregister <node-name>     - Stop monitoring a component.")
    print("  appmgr <component> <verb>  - Run the lifecycle tool (start|stop|restart|status).")
    print("  kill <pid|pattern> [-9]    - Terminate a process by PID or command-line pattern.")
    print("  logs                       - View historical logs and tail new logs in real-time.")
    print("  config <cmd>               - Manage configuration. Use 'config help' for more details.")
    print("  verbose                    - Toggle detailed DEBUG log output in the console.")
    print("  exit                       - Exit the management console.")
    print()
