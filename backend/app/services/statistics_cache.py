"""Redis-backed cache in front of the monthly statistics aggregation.

Key format: ``monthly_stats/{role}/[{user_id} for operators]/{year}/{month}``.
Admins and production managers share one key per role because their
scope does not depend on identity; operator scope does, so their key
carries the user id. Redis failures never fail the request: reads fall
back to computing, writes and deletes are logged and skipped.
"""
from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Iterable

import redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ..config import settings
from ..models import ROLE_ADMIN, ROLE_OPERATOR, ROLE_PRODUCTION_MANAGER, ProductionOrder
from ..policies import scoped_orders
from .order_stats import month_bounds, monthly_statistics, utc_today

logger = logging.getLogger(__name__)

# Roles whose statistics do not depend on who is asking.
GLOBAL_ROLES: tuple[str, ...] = (ROLE_ADMIN, ROLE_PRODUCTION_MANAGER)


def build_key(
    role: str,
    user_id: int | None,
    year: int,
    month: int,
    *,
    prefix: str | None = None,
) -> str:
    parts: list[Any] = [prefix or settings.STATISTICS_CACHE_PREFIX, role]
    if role == ROLE_OPERATOR:
        parts.append(user_id)
    parts.extend([year, month])
    return "/".join(str(part) for part in parts)


def key_for_user(user, month_start: date, *, prefix: str | None = None) -> str:
    return build_key(user.role, user.id, month_start.year, month_start.month, prefix=prefix)


def entry_expires_at(month_end: date) -> datetime:
    """Entries live until the end (UTC) of the last day of the requested month."""
    return datetime.combine(month_end, time.max, tzinfo=timezone.utc)


class StatisticsCache:
    """Thin get/set-with-expiry/delete wrapper with fail-open semantics."""

    def __init__(self, client=None, *, url: str | None = None, enabled: bool | None = None, prefix: str | None = None):
        self._client = client
        self._url = url or settings.REDIS_URL
        self.enabled = settings.STATISTICS_CACHE_ENABLED if enabled is None else enabled
        self.prefix = prefix or settings.STATISTICS_CACHE_PREFIX

    @property
    def client(self):
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def cached(self, key: str, expires_at: datetime, compute_fn: Callable[[], dict]) -> dict:
        """Return the cached value for `key`, computing and storing it on a miss."""
        if not self.enabled:
            return compute_fn()

        try:
            raw = self.client.get(key)
        except RedisError:
            logger.exception("Redis error reading %s (computing uncached)", key)
            return compute_fn()

        if raw is not None:
            logger.debug("Statistics cache hit: %s", key)
            return json.loads(raw)

        logger.debug("Statistics cache miss: %s", key)
        value = compute_fn()
        ttl_seconds = int((expires_at - datetime.now(timezone.utc)).total_seconds())
        if ttl_seconds <= 0:
            return value
        try:
            self.client.set(key, json.dumps(value), ex=ttl_seconds)
        except RedisError:
            logger.exception("Redis error writing %s (ignored)", key)
        return value

    def delete(self, keys: Iterable[str]) -> list[str]:
        """Best-effort delete; returns the keys that were targeted."""
        keys = sorted(set(keys))
        if not keys or not self.enabled:
            return keys
        try:
            self.client.delete(*keys)
        except RedisError:
            logger.exception("Redis error invalidating %s (ignored)", keys)
        return keys


_statistics_cache: StatisticsCache | None = None


def get_statistics_cache() -> StatisticsCache:
    global _statistics_cache
    if _statistics_cache is None:
        _statistics_cache = StatisticsCache()
    return _statistics_cache


def affected_keys(order: ProductionOrder | None, month_start: date, *, prefix: str | None = None) -> set[str]:
    """Keys whose contents an order mutation may change."""
    keys = {build_key(role, None, month_start.year, month_start.month, prefix=prefix) for role in GLOBAL_ROLES}
    if order is None:
        return keys

    creator = order.creator
    if creator is not None and creator.role == ROLE_OPERATOR:
        keys.add(key_for_user(creator, month_start, prefix=prefix))
    for user in order.assigned_users:
        if user.role == ROLE_OPERATOR:
            keys.add(key_for_user(user, month_start, prefix=prefix))
    return keys


def invalidate_statistics_cache(
    cache: StatisticsCache,
    order: ProductionOrder | None,
    today: date,
    *,
    extra_keys: Iterable[str] = (),
) -> list[str]:
    month_start, _ = month_bounds(today)
    keys = affected_keys(order, month_start, prefix=cache.prefix) | set(extra_keys)
    invalidated = cache.delete(keys)
    logger.info("Invalidated monthly statistics keys: %s", invalidated)
    return invalidated


def cached_monthly_statistics(
    db: Session,
    user,
    cache: StatisticsCache,
    month_day: date,
    *,
    today: date | None = None,
) -> dict[str, int]:
    """Monthly statistics for `user`'s scope in the month containing `month_day`.

    Only the current month goes through the cache: mutations invalidate
    the current month's keys only, so any other month is computed fresh.
    """
    month_start, month_end = month_bounds(month_day)

    def compute() -> dict[str, int]:
        return monthly_statistics(scoped_orders(db, user), month_start, month_end).to_dict()

    current_month_start, _ = month_bounds(today or utc_today())
    if month_start != current_month_start:
        logger.debug(
            "Statistics for %s-%s are outside the current month; not cached",
            month_start.year, month_start.month,
        )
        return compute()

    key = key_for_user(user, month_start, prefix=cache.prefix)
    return cache.cached(key, entry_expires_at(month_end), compute)
