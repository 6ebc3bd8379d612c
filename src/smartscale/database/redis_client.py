#!/usr/bin/env python3
"""
Redis connection wrapper shared by the cluster state store
"""

import json
import logging
from typing import Any, List, Optional

import redis

logger = logging.getLogger(__name__)


class RedisClient:
    """Owns the Redis connection and namespaces every key under a prefix"""

    def __init__(self, host: str = "localhost", port: int = 6379, db: int = 0,
                 password: Optional[str] = None, key_prefix: str = "smartscale:",
                 timeout: int = 5, client: Optional[redis.Redis] = None):
        """
        Args:
            host, port, db, password: Connection parameters
            key_prefix: Namespace prepended to every key
            timeout: Socket connect and read timeout in seconds
            client: Ready-made client to use instead of connecting;
                must be created with decode_responses=True
        """
        self.key_prefix = key_prefix
        self.client = client if client is not None else self._connect(host, port, db, password, timeout)

    @staticmethod
    def _connect(host: str, port: int, db: int, password: Optional[str], timeout: int) -> redis.Redis:
        connection = redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout
        )
        try:
            connection.ping()
        except redis.RedisError as e:
            logger.error(f"Redis at {host}:{port} is unreachable: {e}")
            raise
        logger.info(f"Connected to Redis at {host}:{port} (db {db})")
        return connection

    def make_key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    def lpush_capped(self, name: str, value: Any, max_length: int = 100) -> bool:
        """Prepend a JSON value and keep only the newest max_length entries"""
        list_key = self.make_key(name)
        try:
            with self.client.pipeline() as pipe:
                pipe.lpush(list_key, json.dumps(value, default=str))
                pipe.ltrim(list_key, 0, max_length - 1)
                pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Could not append to {list_key}: {e}")
            return False
        return True

    def lrange_json(self, name: str, start: int = 0, end: int = -1) -> List[Any]:
        """Decoded list slice; entries that are not JSON come back as strings"""
        try:
            raw_values = self.client.lrange(self.make_key(name), start, end)
        except redis.RedisError as e:
            logger.error(f"Could not read {name}: {e}")
            return []

        decoded = []
        for raw in raw_values:
            try:
                decoded.append(json.loads(raw))
            except (json.JSONDecodeError, TypeError):
                decoded.append(raw)
        return decoded

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def close(self):
        self.client.close()
        logger.info("Redis connection closed")
