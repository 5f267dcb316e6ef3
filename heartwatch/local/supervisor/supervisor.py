import time
import signal
import sqlite3
import logging
import threading
from typing import Any, Optional

from heartwatch.actuator import AppManager, AppManagerSettings
from heartwatch.heartbeat import HeartbeatManager, HeartbeatSettings
from heartwatch.local.config import effective_settings
from heartwatch.local.database import ComponentDBManager
from heartwatch.local.notify import AlertDispatcher, create_dispatcher
from heartwatch.local.supervisor import persistence, shutdown, startup
from heartwatch.local.transport import Transport, TransportError, create_transport
from heartwatch.registry import ComponentRegistry

log = logging.getLogger(__name__)


class Supervisor:
    """
    Owns every long-lived piece of a running Heartwatch instance and drives
    its startup and shutdown.

    Collaborators can be passed in; anything omitted is built from the
    effective settings.
    """

    def __init__(self, config: Any = None, transport: Optional[Transport] = None,
                 dispatcher: Optional[AlertDispatcher] = None, app_manager: Optional[AppManager] = None,
                 store: Optional[ComponentDBManager] = None) -> None:
        self.config = config or effective_settings
        self.registry = ComponentRegistry()
        self.store = store or ComponentDBManager(self.config.COMPONENT_DB_PATH)
        self.transport = transport or create_transport(self.config)
        self.dispatcher = dispatcher or create_dispatcher(self.config)
        self.app_manager = app_manager or AppManager(AppManagerSettings.from_config(self.config))
        self.manager = HeartbeatManager(
            self.registry, self.transport, self.dispatcher, self.app_manager,
            HeartbeatSettings.from_config(self.config),
        )
        self.shutdown_signal_received = threading.Event()
        self.start_time: Optional[float] = None
        self._started = False

    def start(self, run_discovery: bool = True) -> bool:
        """
        Loads the registry, subscribes to the transport and starts the
        heartbeat manager.

        :param run_discovery: Whether to probe and wait before the loops start.
        :return: True on successful startup, False on failure.
        """
        if startup.check_if_already_running(self):
            return False

        log.info("=" * 20 + " Heartwatch Starting " + "=" * 20)
        self.start_time = time.time()
        self.shutdown_signal_received.clear()
        self.config.SHUTDOWN_SIGNAL_PATH.unlink(missing_ok=True)

        try:
            loaded = startup.initialize_store(self)
        except sqlite3.Error as e:
            log.critical(f"Component store at {self.config.COMPONENT_DB_PATH} is unusable: {e}", exc_info=True)
            return False
        registered = startup.load_registration_file(self)
        log.info(f"Registry ready: {loaded} stored and {registered} newly registered components")

        try:
            self.transport.subscribe(self.config.INITIAL_TOPICS, self.manager.on_transport_message)
        except TransportError as e:
            log.critical(f"Could not subscribe to {self.config.INITIAL_TOPICS}: {e}")
            return False

        self.manager.start(run_discovery=run_discovery)
        persistence.write_pid_file(self.config.PID_FILE_PATH)
        self._started = True
        log.info(f"Heartwatch started as '{self.manager.identity}' in {time.time() - self.start_time:.2f} seconds.")
        return True

    def stop(self) -> None:
        """Stops the heartbeat manager and the transport and removes runtime files."""
        self.shutdown_signal_received.set()
        if not self._started:
            return
        self._started = False

        self.manager.close()
        try:
            self.transport.close()
        except TransportError as e:
            log.error(f"Error closing transport: {e}")
        persistence.cleanup_shutdown_files(self.config)

        if self.start_time:
            log.info(f"Heartwatch stopped. Total runtime: {shutdown.format_runtime(self.start_time)}")
        else:
            log.info("Heartwatch stopped.")

    def install_signal_handlers(self) -> None:
        """Makes SIGINT and SIGTERM request a graceful stop. Main thread only."""
        def _handle(signum, _frame):
            log.info(f"Received signal {signal.Signals(signum).name}; shutting down.")
            self.shutdown_signal_received.set()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)

    def supervision_loop(self, run_discovery: bool = True) -> bool:
        """
        Starts the supervisor and blocks until a shutdown is requested.

        :return: False if startup failed, True after a clean stop.
        """
        if not self.start(run_discovery=run_discovery):
            return False

        try:
            while not self.shutdown_signal_received.wait(self.config.SUPERVISOR_SLEEP_INTERVAL):
                if persistence.check_for_shutdown_signal(self.config.SHUTDOWN_SIGNAL_PATH):
                    break
                persistence.write_status_snapshot(self)
        except KeyboardInterrupt:
            log.info("Supervisor loop interrupted by user.")
        finally:
            self.stop()
        return True
