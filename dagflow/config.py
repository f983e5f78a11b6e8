import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///dagflow.db")

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "3000"))

WORKFLOW_ID = os.getenv("WORKFLOW_ID")

VERBOSE = os.getenv("DAGFLOW_VERBOSE", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = "DEBUG" if VERBOSE else "INFO"

POLL_INTERVAL = float(os.getenv("DAGFLOW_POLL_INTERVAL", "1.0"))

MAX_RETRIES = int(os.getenv("DAGFLOW_MAX_RETRIES", "3"))
RETRY_DELAY = float(os.getenv("DAGFLOW_RETRY_DELAY", "10.0"))
RETRY_BACKOFF = float(os.getenv("DAGFLOW_RETRY_BACKOFF", "1.0"))
RETRY_MAX_DELAY = float(os.getenv("DAGFLOW_RETRY_MAX_DELAY", "300.0"))
RETRY_JITTER = float(os.getenv("DAGFLOW_RETRY_JITTER", "0.1"))

# Seconds a task may stay RUNNING before it is reclaimed. 0 disables.
RUNNING_TIMEOUT = float(os.getenv("DAGFLOW_RUNNING_TIMEOUT", "0"))

SHELL_TIMEOUT = int(os.getenv("DAGFLOW_SHELL_TIMEOUT", "300"))
HTTP_TIMEOUT = float(os.getenv("DAGFLOW_HTTP_TIMEOUT", "10.0"))
