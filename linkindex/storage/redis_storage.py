"""
RedisStorage – Redis-backed key-value storage for linkindex.

The record index maps naturally onto Redis strings:
    - create-if-absent is `SET key value NX`
    - compare-and-set is a WATCH / MULTI / EXEC transaction that aborts when
      the key changes between the read and the write

The client is created once per process (it owns a connection pool) and passed
in explicitly, so tests can inject a double.
"""

import logging
from typing import Optional

import redis

from .base import BaseStorage
from ..errors import BackendUnavailable

log = logging.getLogger(__name__)

_TRANSIENT = (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError)


class RedisStorage(BaseStorage):
    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 10.0) -> "RedisStorage":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except _TRANSIENT as exc:
            log.error("redis GET %s failed: %s", key, exc)
            raise BackendUnavailable(str(exc)) from exc

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except _TRANSIENT as exc:
            log.error("redis SET %s failed: %s", key, exc)
            raise BackendUnavailable(str(exc)) from exc

    def set_if_absent(self, key: str, value: str) -> bool:
        try:
            return bool(self.client.set(key, value, nx=True))
        except _TRANSIENT as exc:
            log.error("redis SET NX %s failed: %s", key, exc)
            raise BackendUnavailable(str(exc)) from exc

    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        try:
            with self.client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    if pipe.get(key) != expected:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, value)
                    pipe.execute()
                    return True
                except redis.exceptions.WatchError:
                    log.debug("redis CAS on %s lost a race", key)
                    return False
        except _TRANSIENT as exc:
            log.error("redis CAS %s failed: %s", key, exc)
            raise BackendUnavailable(str(exc)) from exc

    def delete(self, key: str) -> bool:
        try:
            return self.client.delete(key) == 1
        except _TRANSIENT as exc:
            log.error("redis DEL %s failed: %s", key, exc)
            raise BackendUnavailable(str(exc)) from exc
