"""
Durable offline flag store backed by Redis.

The offline flag is the only state the recovery engine keeps across
reloads: one JSON document under a single key. Transient connection
errors are retried with exponential backoff before surfacing as
RedisConnectionError.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as redis
from pydantic import ValidationError
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from recovery_engine.models.connectivity import OfflineFlag
from recovery_engine.utils.resilience import BackoffPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (ConnectionError, TimeoutError)


class RedisConnectionError(Exception):
    """Raised when Redis stays unreachable after retries."""
    pass


def encode_flag(flag: OfflineFlag) -> str:
    return json.dumps(flag.model_dump(mode="json"))


def decode_flag(raw: Optional[str]) -> Optional[OfflineFlag]:
    """Stored value to OfflineFlag; unreadable values count as absent."""
    if not raw:
        return None
    try:
        return OfflineFlag(**json.loads(raw))
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable offline flag: {e}")
        return None


class RedisClient:
    """
    Offline flag store with a pooled Redis connection.

    Args:
        redis_url: Redis connection URL, from settings when omitted
        offline_flag_key: Key holding the flag, from settings when omitted
        max_retries: Attempts per operation for transient errors
        retry_delay: Delay before the first retry, doubled on each attempt
        connection_timeout: Socket timeouts in seconds
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        offline_flag_key: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5
    ):
        self._redis_url = redis_url
        self._offline_flag_key = offline_flag_key
        self._max_retries = max(1, max_retries)
        self._backoff = BackoffPolicy(
            base_delay=retry_delay,
            max_delay=retry_delay * 2 ** self._max_retries,
            jitter_fraction=0.0,
        )
        self._connection_timeout = connection_timeout
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    @property
    def offline_flag_key(self) -> str:
        if not self._offline_flag_key:
            from recovery_engine.config import settings
            self._offline_flag_key = settings.offline_flag_key
        return self._offline_flag_key

    @property
    def redis_url(self) -> str:
        if not self._redis_url:
            from recovery_engine.config import settings
            self._redis_url = settings.redis_url
        return self._redis_url

    # ========== Lifecycle ==========

    async def initialize(self) -> None:
        """
        Open the connection pool and check the server answers.

        Raises:
            RedisConnectionError: If the server cannot be reached
        """
        try:
            self._pool = ConnectionPool.from_url(
                self.redis_url,
                max_connections=4,
                decode_responses=True,
                socket_timeout=self._connection_timeout,
                socket_connect_timeout=self._connection_timeout,
            )
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()
        except Exception as e:
            logger.error(f"Failed to connect offline flag store: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}")

        logger.info("Offline flag store connected", extra={"key": self.offline_flag_key})

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Offline flag store closed")

    def _require_client(self) -> redis.Redis:
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")
        return self._client

    async def _retry_operation(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run an operation, retrying transient connection errors.

        Args:
            operation: Async callable to run
            *args: Positional arguments for operation
            **kwargs: Keyword arguments for operation

        Returns:
            Operation result

        Raises:
            RedisConnectionError: If every attempt hit a transient error
            RedisError: Non-transient errors, raised on the first occurrence
        """
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)
            except TRANSIENT_ERRORS as e:
                last_error = e
            except RedisError as e:
                logger.error(f"Redis operation failed with non-transient error: {e}")
                raise

            if attempt + 1 < self._max_retries:
                delay = self._backoff.compute_delay(attempt, 0.0)
                logger.warning(
                    f"Redis operation failed (attempt {attempt + 1}/{self._max_retries}), "
                    f"retrying in {delay}s: {last_error}"
                )
                await asyncio.sleep(delay)

        logger.error(f"Redis operation failed after {self._max_retries} attempts: {last_error}")
        raise RedisConnectionError(f"Redis operation failed after {self._max_retries} retries: {last_error}")

    # ========== Offline Flag ==========

    async def get_offline_flag(self) -> Optional[OfflineFlag]:
        """
        Read the persisted offline flag.

        Returns:
            OfflineFlag if stored and readable, None otherwise
        """
        client = self._require_client()
        raw = await self._retry_operation(client.get, self.offline_flag_key)
        return decode_flag(raw)

    async def set_offline_flag(self, since: datetime) -> None:
        """
        Persist the offline flag.

        Args:
            since: When the link was detected offline
        """
        client = self._require_client()
        value = encode_flag(OfflineFlag(offline=True, since=since))
        await self._retry_operation(client.set, self.offline_flag_key, value)
        logger.info("Persisted offline flag", extra={"since": since.isoformat()})

    async def clear_offline_flag(self) -> None:
        client = self._require_client()
        await self._retry_operation(client.delete, self.offline_flag_key)
        logger.debug("Cleared offline flag")

    async def ping(self) -> bool:
        """Check the connection is healthy."""
        client = self._require_client()
        return await self._retry_operation(client.ping)


def get_redis_client() -> RedisClient:
    """Create the offline flag store used by the application."""
    return RedisClient()
