"""
This module contains almost all the configuration settings for Heartwatch.
It defines paths, heartbeat timing, lifecycle-tool options, transport and
notification settings. Every value can be overridden from the environment
or a `.env` file; a whitelisted subset can also be changed at runtime.
"""

import os
import socket
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("HEARTWATCH_HOME", pathlib.Path.cwd())).resolve()
DATA_DIR = BASE_DIR / "data"
LOGS_DIR = BASE_DIR / "logs"
CONFIG_DIR = BASE_DIR / "config"

#* --- Application File Paths ---
COMPONENT_DB_PATH = DATA_DIR / "components.db"
LOG_DB_PATH = LOGS_DIR / "heartwatch_logs.db"
PID_FILE_PATH = DATA_DIR / "heartwatch.pid"
OVERRIDES_JSON_PATH = DATA_DIR / "overrides.json"
SHUTDOWN_SIGNAL_PATH = DATA_DIR / "shutdown.signal"
STATUS_SNAPSHOT_PATH = DATA_DIR / "status.json"
REGLIST_PATH = pathlib.Path(os.getenv("HEARTWATCH_REGLIST", CONFIG_DIR / "heartwatch.reglist"))

#* --- Supervisor Identity ---
SUPERVISOR_NAME = os.getenv("HEARTWATCH_NAME", "heartwatch")
SUPERVISOR_NODE = os.getenv("HEARTWATCH_NODE", socket.gethostname())
PROCESS_TITLE = "Heartwatch - Supervisor"

#* --- Heartbeat Settings (seconds) ---
HEARTBEAT_SEND_INTERVAL = int(os.getenv("HEARTBEAT_SEND_INTERVAL", "30"))
EVALUATION_INTERVAL = int(os.getenv("EVALUATION_INTERVAL", "5"))
STALE_THRESHOLD = int(os.getenv("STALE_THRESHOLD", "60"))
REMINDERS_INTERVAL = int(os.getenv("REMINDERS_INTERVAL", str(60 * 60)))
PERIOD_BEFORE_RESTART = int(os.getenv("PERIOD_BEFORE_RESTART", str(5 * 60)))
DISCOVERY_GRACE_PERIOD = int(os.getenv("DISCOVERY_GRACE_PERIOD", "35"))
LEGACY_HEARTBEAT_SENTINEL = os.getenv("LEGACY_HEARTBEAT_SENTINEL", "HEARTBEAT")
REMEDIATION_ENABLED = _env_bool("REMEDIATION_ENABLED", "True")
SHUTDOWN_TIMEOUT = 10  # seconds to wait for periodic tasks before giving up
SUPERVISOR_SLEEP_INTERVAL = 1
STOP_WAIT_TIMEOUT = 15  # seconds the console waits for a background supervisor to exit

#* --- Lifecycle Tool (appMgr) ---
APP_MGR_PATH = pathlib.Path(os.getenv("APP_MGR_PATH", BASE_DIR / "deploy"))
APP_MGR_COMMAND = os.getenv("APP_MGR_COMMAND", "./appMgr")
APP_MGR_TIMEOUT = int(os.getenv("APP_MGR_TIMEOUT", "60"))
APP_MGR_STEP_DELAY = int(os.getenv("APP_MGR_STEP_DELAY", "5"))

#* --- Transport ---
# 'memory' keeps everything in-process, 'redis' uses Redis pub/sub.
TRANSPORT_BACKEND = os.getenv("TRANSPORT_BACKEND", "memory").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
INITIAL_TOPICS = [t.strip() for t in os.getenv("INITIAL_TOPICS", "heartwatch").split(",") if t.strip()]
TRANSPORT_POLL_INTERVAL = float(os.getenv("TRANSPORT_POLL_INTERVAL", "1.0"))

#* --- Notifications ---
ALERT_RECIPIENT_GROUP = os.getenv("ALERT_RECIPIENT_GROUP", "operators")
ALERT_RATE_LIMIT_SECONDS = int(os.getenv("ALERT_RATE_LIMIT_SECONDS", "120"))

EMAIL_ENABLED = _env_bool("EMAIL_ENABLED", "False")
SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_START_TLS = _env_bool("SMTP_START_TLS", "True")
EMAIL_FROM = os.getenv("EMAIL_FROM", "heartwatch@localhost")
EMAIL_TO = [a.strip() for a in os.getenv("EMAIL_TO", "").split(",") if a.strip()]

WEBHOOK_URL = os.getenv("WEBHOOK_URL", "")
WEBHOOK_TIMEOUT = 5

#* --- Logging ---
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable at runtime via 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Heartbeat timing
    "HEARTBEAT_SEND_INTERVAL", "EVALUATION_INTERVAL", "STALE_THRESHOLD",
    "REMINDERS_INTERVAL", "PERIOD_BEFORE_RESTART", "DISCOVERY_GRACE_PERIOD",
    "REMEDIATION_ENABLED",
    # Notifications
    "ALERT_RATE_LIMIT_SECONDS", "ALERT_RECIPIENT_GROUP",
    # Logging
    "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL", "LOG_HISTORY_COUNT",
}

#* --- Default Values for Modifiable Settings ---
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10
LOG_HISTORY_COUNT = 50
