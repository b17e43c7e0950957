from typing import Optional, Any, List, Dict, Union, AsyncIterator
from redis.exceptions import RedisError
import json
import logging
from datetime import timedelta
import redis.asyncio as aioredis


class RedisClient:
    """
    Async Redis client for short-lived keys and pub/sub notifications.
    """

    def __init__(self, logger: logging.Logger, host: str = "localhost", port: int = 6379,
                 password: Optional[str] = None, ssl: bool = False):
        self.logger = logger
        self.host = host
        self.port = port
        self.password = password
        self.ssl = ssl
        self._async_redis: Optional[aioredis.Redis] = None
        self._async_pool: Optional[aioredis.ConnectionPool] = None

    async def _get_async_redis(self) -> aioredis.Redis:
        """Get or create async Redis client"""
        if self._async_redis is None:
            pool_kwargs = dict(
                host=self.host,
                port=self.port,
                password=self.password,
                decode_responses=True,  # Auto-decode responses for convenience
                max_connections=20,
                socket_connect_timeout=5.0,
            )
            if self.ssl:
                pool_kwargs["connection_class"] = aioredis.SSLConnection
            self._async_pool = aioredis.ConnectionPool(**pool_kwargs)
            self._async_redis = aioredis.Redis(connection_pool=self._async_pool)
        return self._async_redis

    async def ping(self) -> bool:
        try:
            redis = await self._get_async_redis()
            return bool(await redis.ping())
        except RedisError as e:
            self.logger.error(f"Failed to ping Redis at {self.host}:{self.port}: {str(e)}")
            raise

    async def async_close(self) -> None:
        """Close async Redis connection pool"""
        if self._async_redis is not None:
            await self._async_redis.aclose()
            self._async_redis = None
        if self._async_pool is not None:
            await self._async_pool.disconnect()
            self._async_pool = None
            self.logger.info("Async Redis connection pool closed")

    @staticmethod
    def _decode(value: Optional[str], default: Any = None) -> Any:
        if value is None:
            return default
        try:
            if isinstance(value, str) and (value.startswith('{') or value.startswith('[')):
                return json.loads(value)
            return value
        except (TypeError, json.JSONDecodeError):
            return value

    async def async_set_value(self, key: str, value: Any, expiry: Optional[Union[int, timedelta]] = None) -> bool:
        """
        Set a key-value pair, optionally with expiry.

        Args:
            key: Key to set
            value: Value to set (will be JSON serialized if not string)
            expiry: Expiry in milliseconds or timedelta
        """
        try:
            redis = await self._get_async_redis()
            if not isinstance(value, (str, int, float, bool)):
                value = json.dumps(value)
            if isinstance(expiry, timedelta):
                expiry = int(expiry.total_seconds() * 1000)
            return bool(await redis.set(key, value, px=expiry or None))
        except RedisError as e:
            self.logger.error(f"Error async setting key {key}: {str(e)}")
            raise

    async def async_delete(self, *keys: str) -> int:
        try:
            redis = await self._get_async_redis()
            return await redis.delete(*keys)
        except RedisError as e:
            self.logger.error(f"Error async deleting keys: {str(e)}")
            raise

    async def async_get_matching(self, pattern: str) -> Dict[str, Any]:
        """Return every key matching pattern with its decoded value (SCAN + MGET)."""
        try:
            redis = await self._get_async_redis()
            keys: List[str] = [key async for key in redis.scan_iter(match=pattern, count=100)]
            if not keys:
                return {}
            values = await redis.mget(keys)
            return {k: self._decode(v) for k, v in zip(keys, values) if v is not None}
        except RedisError as e:
            self.logger.error(f"Error scanning keys {pattern}: {str(e)}")
            raise

    async def async_publish(self, channel: str, message: Any) -> int:
        try:
            redis = await self._get_async_redis()
            if not isinstance(message, str):
                message = json.dumps(message)
            return await redis.publish(channel, message)
        except RedisError as e:
            self.logger.error(f"Error publishing to channel {channel}: {str(e)}")
            raise

    async def subscribe(self, channel: str) -> AsyncIterator[Any]:
        """Yield decoded messages published on channel until the consumer stops iterating."""
        redis = await self._get_async_redis()
        pubsub = redis.pubsub()
        await pubsub.subscribe(channel)
        try:
            async for raw in pubsub.listen():
                if raw.get("type") != "message":
                    continue
                yield self._decode(raw.get("data"))
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
