"""Persistence of reconciler state between restarts."""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Final

import redis
from pydantic import ValidationError

from walkin_queue.core.settings import settings
from walkin_queue.schemas.notification import ReconcilerSnapshot

# Configure logger for this module
logger = logging.getLogger(__name__)

_KEY_PREFIX: Final[str] = "walkin:reconciler"

_CACHE_LOCK = Lock()
_STATE_CACHE: dict[str, tuple[str, float]] = {}


class ReconcilerStateCache:
    """Stores one :class:`ReconcilerSnapshot` per viewer.

    Backed by Redis when reachable; falls back to an in-process cache so a
    missing Redis only costs cross-process continuity.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        ttl_seconds: int | None = None,
        use_redis: bool = True,
    ) -> None:
        if ttl_seconds is None:
            ttl_seconds = settings.reconciler_state_ttl_seconds
        self.ttl_seconds = ttl_seconds
        self._redis: redis.Redis | None = None
        if use_redis:
            try:
                self._redis = redis.from_url(redis_url or settings.redis_url)
            except (redis.RedisError, ValueError) as exc:
                logger.warning("Reconciler state falls back to process memory: %s", exc)
                self._redis = None

    @staticmethod
    def key_for(viewer_key: str) -> str:
        return f"{_KEY_PREFIX}:{viewer_key}"

    def load(self, viewer_key: str) -> ReconcilerSnapshot | None:
        """Return the stored snapshot, or None if nothing usable is stored."""
        key = self.key_for(viewer_key)
        payload: str | bytes | None = None
        if self._redis is not None:
            try:
                payload = self._redis.get(key)
            except redis.RedisError as exc:
                logger.warning("Redis unavailable, reading reconciler state locally: %s", exc)
                self._redis = None

        if self._redis is None:
            with _CACHE_LOCK:
                entry = _STATE_CACHE.get(key)
                if entry is not None and entry[1] < time.time():
                    del _STATE_CACHE[key]
                    entry = None
            payload = entry[0] if entry is not None else None

        if payload is None:
            return None
        try:
            return ReconcilerSnapshot.model_validate_json(payload)
        except ValidationError:
            logger.warning("Discarding unreadable reconciler state for %s", viewer_key)
            return None

    def save(self, viewer_key: str, snapshot: ReconcilerSnapshot) -> None:
        key = self.key_for(viewer_key)
        payload = snapshot.model_dump_json()
        if self._redis is not None:
            try:
                self._redis.set(key, payload, ex=self.ttl_seconds)
                return
            except redis.RedisError as exc:
                logger.warning("Redis unavailable, keeping reconciler state locally: %s", exc)
                self._redis = None

        with _CACHE_LOCK:
            _STATE_CACHE[key] = (payload, time.time() + self.ttl_seconds)

    def delete(self, viewer_key: str) -> None:
        key = self.key_for(viewer_key)
        if self._redis is not None:
            try:
                self._redis.delete(key)
            except redis.RedisError as exc:
                logger.warning("Redis unavailable while deleting reconciler state: %s", exc)
                self._redis = None
        with _CACHE_LOCK:
            _STATE_CACHE.pop(key, None)


def clear_local_state() -> None:
    """Drop every in-process snapshot. Intended for tests."""
    with _CACHE_LOCK:
        _STATE_CACHE.clear()
