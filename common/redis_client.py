"""
Redis client backing the persistence collaborator.

This module provides a Redis client with:
- Connection pooling (reuse connections, don't create new ones each time)
- Health checks and automatic reconnection
- Graceful degradation (the core keeps running if Redis is unavailable)
- JSON helpers for whole-value records

Environment Variables:
    REDIS_HOST: Redis server host (default: localhost)
    REDIS_PORT: Redis server port (default: 6379)
    REDIS_PASSWORD: Redis password (optional, can be base64 encoded)
    REDIS_DB: Redis database number (default: 0)
"""

import base64
import binascii
import json
import logging
import os
import time
from typing import Any, Optional

import redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from common.constants import REDIS_DB, REDIS_HOST, REDIS_PORT

logger = logging.getLogger(__name__)


def _read_password() -> Optional[str]:
    password = os.getenv("REDIS_PASSWORD", "")
    if not password:
        return None
    # K8s secrets are often base64 encoded
    try:
        decoded = base64.b64decode(password, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return password
    return decoded or password


class RedisClient:
    """
    Redis client wrapper with connection pooling and automatic reconnection.

    Every operation degrades to a falsy result when Redis is unreachable,
    so callers treat an outage the same as an absent key.
    """

    def __init__(self, host: str = REDIS_HOST, port: int = REDIS_PORT, db: int = REDIS_DB):
        self.host = host
        self.port = port
        self.db = db
        self.password = _read_password()

        self.pool = redis.ConnectionPool(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            max_connections=50,
            health_check_interval=30,
        )

        self.client: Optional[redis.Redis] = None
        self._last_health_check = 0.0
        self._health_check_interval = 30
        self._connect()

    def _connect(self) -> None:
        try:
            self.client = redis.Redis(connection_pool=self.pool)
            self.client.ping()
            self._last_health_check = time.time()
        except (ConnectionError, RedisError, TimeoutError) as e:
            self.client = None
            logger.warning("Redis connection failed: %s. Persistence will be disabled.", e)

    def _ensure_connected(self) -> bool:
        if not self.client:
            return False

        current_time = time.time()
        if current_time - self._last_health_check > self._health_check_interval:
            try:
                self.client.ping()
                self._last_health_check = current_time
                return True
            except (ConnectionError, RedisError, TimeoutError):
                self.client = None
                self._connect()
                return self.client is not None

        return True

    def is_connected(self) -> bool:
        if not self._ensure_connected():
            return False
        return self.client is not None

    def set(self, key: str, value: str) -> bool:
        if not self.is_connected():
            return False

        try:
            return bool(self.client.set(key, value))
        except (ConnectionError, RedisError, TimeoutError) as e:
            logger.warning("Redis set error: %s", e)
            self.client = None
            return False

    def get(self, key: str) -> Optional[str]:
        if not self.is_connected():
            return None

        try:
            value = self.client.get(key)
            return value if value else None
        except (ConnectionError, RedisError, TimeoutError) as e:
            logger.warning("Redis get error: %s", e)
            self.client = None
            return None

    def delete(self, key: str) -> bool:
        if not self.is_connected():
            return False

        try:
            return bool(self.client.delete(key))
        except (ConnectionError, RedisError, TimeoutError) as e:
            logger.warning("Redis delete error: %s", e)
            self.client = None
            return False

    def set_json(self, key: str, value: Any) -> bool:
        """
        Store a JSON-serializable value in Redis.

        Args:
            key: Redis key
            value: Dict or list to store

        Returns:
            True if successful, False otherwise
        """
        try:
            json_str = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning("JSON serialization error for %s: %s", key, e)
            return False
        return self.set(key, json_str)

    def get_json(self, key: str) -> Optional[Any]:
        """
        Get and deserialize a JSON value from Redis.

        Returns:
            Deserialized value if found, None otherwise
        """
        json_str = self.get(key)
        if not json_str:
            return None

        try:
            return json.loads(json_str)
        except (TypeError, ValueError) as e:
            logger.warning("JSON deserialization error for %s: %s", key, e)
            return None

    def close(self) -> None:
        if self.client:
            try:
                self.client.close()
            except RedisError as e:
                logger.debug("Redis close error: %s", e)
        self.pool.disconnect()


# Singleton instance
_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """
    Get singleton Redis client instance.

    Only one connection pool is created and its connections are reused.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
