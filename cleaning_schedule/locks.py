"""
Per-rule and per-team write locks

In-process locks always apply. When Redis locking is enabled the same key
is also held as a Redis lock so writers in other API workers and the arq
worker are serialized too.
"""

import logging
import os
from contextlib import contextmanager
from threading import Lock
from typing import Optional

import redis

from .config import (
    RECURRENCE_LOCK_TIMEOUT,
    RECURRENCE_LOCK_WAIT,
    RECURRENCE_REDIS_LOCKS,
    REDIS_URL,
)
from .domain.recurrence.exceptions import PersistenceError

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client
    Supports both a REDIS_URL and individual host/port settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection for recurrence locks...")

        if REDIS_URL:
            # Mask password in URL for logging
            if "@" in REDIS_URL:
                url_parts = REDIS_URL.split("@")
                protocol = url_parts[0].split(":")[0]
                masked_url = f"{protocol}:****@{url_parts[1]}"
            else:
                masked_url = "****"
            logger.info(f"📡 Using Redis URL connection: {masked_url}")

            client = redis.from_url(
                REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=15,
                socket_timeout=30,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            logger.info(f"📡 Using Redis at {redis_host}:{redis_port}")

            client = redis.Redis(
                host=redis_host,
                port=redis_port,
                password=os.getenv("REDIS_PASSWORD", None),
                db=int(os.getenv("REDIS_DB", "0")),
                ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
                decode_responses=True,
                socket_connect_timeout=15,
                socket_timeout=30,
                retry_on_timeout=True,
                health_check_interval=30,
            )

        try:
            client.ping()
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {str(e)}")
            raise
        logger.info("Redis connected successfully")
        redis_client = client

    return redis_client


def rule_key(rule_id: int) -> str:
    return f"rule:{rule_id}"


def team_key(team_id: int) -> str:
    return f"team:{team_id}"


class RuleLockManager:
    """Mutual exclusion by key, e.g. `rule:42` or `team:7`"""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        timeout: float = RECURRENCE_LOCK_TIMEOUT,
        wait: float = RECURRENCE_LOCK_WAIT,
        prefix: str = "recurrence-lock",
    ):
        self.redis_client = redis_client
        self.timeout = timeout
        self.wait = wait
        self.prefix = prefix
        self._locks: dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _local_lock(self, key: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            return lock

    @contextmanager
    def hold(self, key: str):
        """
        Hold the lock for `key` for the duration of the block.

        Raises:
            PersistenceError: transient, when the lock cannot be acquired in time
        """
        local = self._local_lock(key)
        if not local.acquire(timeout=self.wait):
            logger.warning(f"⏳ Timed out waiting for local lock {key}")
            raise PersistenceError(f"Timed out waiting for lock on {key}", transient=True)

        try:
            if self.redis_client is None:
                yield
                return

            shared = self.redis_client.lock(
                f"{self.prefix}:{key}", timeout=self.timeout, blocking_timeout=self.wait
            )
            try:
                acquired = shared.acquire()
            except redis.RedisError as e:
                logger.error(f"❌ Redis lock error for {key}: {e}")
                raise PersistenceError(f"Could not acquire lock on {key}: {e}", transient=True) from e
            if not acquired:
                logger.warning(f"⏳ Timed out waiting for Redis lock {key}")
                raise PersistenceError(f"Timed out waiting for lock on {key}", transient=True)

            try:
                yield
            finally:
                try:
                    shared.release()
                except redis.exceptions.LockError:
                    logger.warning(f"⚠️ Redis lock {key} expired before release")
        finally:
            local.release()


def build_lock_manager() -> RuleLockManager:
    """
    Lock manager for the running process.

    Falls back to in-process locks only when Redis is unreachable, which
    still serializes writers inside this process.
    """
    if not RECURRENCE_REDIS_LOCKS:
        return RuleLockManager()

    try:
        return RuleLockManager(get_redis_client())
    except Exception as e:
        logger.warning(f"Redis unavailable - recurrence locks are process-local only: {e}")
        return RuleLockManager()
