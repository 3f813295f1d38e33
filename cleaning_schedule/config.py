import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./recurrences.db")

# Redis is optional: per-rule locks fall back to in-process locks when disabled
REDIS_URL = os.getenv("REDIS_URL")
RECURRENCE_REDIS_LOCKS = os.getenv("RECURRENCE_REDIS_LOCKS", "false").lower() == "true"

# Lock timeouts (seconds). LOCK_TIMEOUT bounds how long a holder keeps a Redis lock,
# LOCK_WAIT bounds how long a writer waits before giving up with a retryable error.
RECURRENCE_LOCK_TIMEOUT = float(os.getenv("RECURRENCE_LOCK_TIMEOUT", "30"))
RECURRENCE_LOCK_WAIT = float(os.getenv("RECURRENCE_LOCK_WAIT", "10"))

# Upper bound on occurrences returned for a single window (a daily rule over decades)
RECURRENCE_MAX_OCCURRENCES = int(os.getenv("RECURRENCE_MAX_OCCURRENCES", "1000"))

# How far ahead the worker materializes appointments for active rules
RECURRENCE_SCHEDULE_HORIZON_DAYS = int(os.getenv("RECURRENCE_SCHEDULE_HORIZON_DAYS", "28"))

# Re-checks of a candidate whose calendar snapshot went stale before commit
RECURRENCE_CONFLICT_RETRIES = int(os.getenv("RECURRENCE_CONFLICT_RETRIES", "2"))

# Repository retry contract for transient database errors
PERSISTENCE_MAX_RETRIES = int(os.getenv("PERSISTENCE_MAX_RETRIES", "3"))
PERSISTENCE_RETRY_DELAY = float(os.getenv("PERSISTENCE_RETRY_DELAY", "0.2"))

# Listing
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

# Frontend origin allowed by CORS for the dashboard
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
