"""
This is a minimal entry point script for the background supervisor process.

Its sole responsibility is to set up logging, instantiate the Supervisor and
run the supervision loop until it is asked to stop.
"""
import sys
import logging
import setproctitle

from heartwatch.local.config import effective_settings as config
from heartwatch.local.supervisor import Supervisor
from heartwatch.log.setup import setup_logging


def main() -> int:
    setproctitle.setproctitle(config.PROCESS_TITLE)
    setup_logging(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)
    supervisor = Supervisor()
    supervisor.install_signal_handlers()
    return 0 if supervisor.supervision_loop() else 1


if __name__ == "__main__":
    sys.exit(main())
