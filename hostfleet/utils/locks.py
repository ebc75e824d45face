"""Distributed locking for reconciliation passes.

A Redis lock keeps scheduler replicas and queued jobs from running full
passes on top of each other. It is an optimization only: every host write
is a conditional update, so a pass that runs without the lock (Redis down,
lock expired) is still safe.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Generator

import redis

from hostfleet.config import settings
from hostfleet.db import get_redis

logger = logging.getLogger(__name__)

CLOUD_STATUS_PASS_LOCK_KEY = "cloud_status_lock:pass"


def acquire_lock(lock_key: str, ttl: int) -> str | None:
    """Try to acquire a lock.

    Uses Redis SET NX with a TTL so the lock auto-releases if the holder
    crashes.

    Returns:
        A release token if acquired (or Redis is unavailable), None if the
        lock is held elsewhere
    """
    token = uuid.uuid4().hex
    try:
        acquired = get_redis().set(lock_key, token, nx=True, ex=ttl)
        if not acquired:
            logger.debug(f"Could not acquire lock {lock_key} - already held")
            return None
        logger.debug(f"Acquired lock {lock_key}")
        return token
    except redis.RedisError as e:
        logger.warning(f"Redis error acquiring lock {lock_key}: {e}")
        # On Redis error, proceed without lock (better than blocking reconciliation)
        return token


def release_lock(lock_key: str, token: str) -> None:
    """Release a lock if it is still ours.

    Safe to call after the TTL expired and someone else took the lock.
    """
    try:
        r = get_redis()
        current = r.get(lock_key)
        if current is None:
            return
        holder = current.decode() if isinstance(current, bytes) else str(current)
        if holder == token:
            r.delete(lock_key)
            logger.debug(f"Released lock {lock_key}")
    except redis.RedisError as e:
        logger.warning(f"Redis error releasing lock {lock_key}: {e}")
        # Lock will auto-expire via TTL


@contextmanager
def cloud_status_pass_lock(ttl: int | None = None) -> Generator[bool, None, None]:
    """Context manager for the cloud status pass lock.

    Usage:
        with cloud_status_pass_lock() as acquired:
            if not acquired:
                # Another pass is running, skip
                return

    Yields:
        True if the lock was acquired, False if another pass holds it
    """
    token = acquire_lock(CLOUD_STATUS_PASS_LOCK_KEY, ttl or settings.cloud_status_lock_ttl)
    try:
        yield token is not None
    finally:
        if token is not None:
            release_lock(CLOUD_STATUS_PASS_LOCK_KEY, token)
