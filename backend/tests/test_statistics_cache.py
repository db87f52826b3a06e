from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

from redis.exceptions import RedisError

from app.services.audit import AuditContext
from app.services.order_stats import utc_today
from app.services.statistics_cache import (
    StatisticsCache,
    affected_keys,
    build_key,
    cached_monthly_statistics,
    entry_expires_at,
    invalidate_statistics_cache,
    key_for_user,
)
from app.use_cases.orders import create_order_use_case, update_order_use_case

from .conftest import make_order, make_user


class _FailingRedis:
    def get(self, key):
        raise RedisError("connection refused")

    def set(self, key, value, ex=None):
        raise RedisError("connection refused")

    def delete(self, *keys):
        raise RedisError("connection refused")


def _month_key(user, day: date | None = None) -> str:
    day = day or utc_today()
    return key_for_user(user, day.replace(day=1))


def test_key_format_per_role() -> None:
    assert build_key("admin", 7, 2025, 1) == "monthly_stats/admin/2025/1"
    assert build_key("production_manager", 7, 2025, 12) == "monthly_stats/production_manager/2025/12"
    assert build_key("operator", 7, 2025, 1) == "monthly_stats/operator/7/2025/1"


def test_entries_expire_at_end_of_month() -> None:
    expires_at = entry_expires_at(date(2025, 2, 28))
    assert expires_at.date() == date(2025, 2, 28)
    assert expires_at.hour == 23 and expires_at.minute == 59


def test_cached_value_is_reused_without_recompute(redis_stub) -> None:
    cache = StatisticsCache(redis_stub, enabled=True)
    calls = []

    def compute():
        calls.append(1)
        return {"total_orders_started": 3}

    expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
    first = cache.cached("monthly_stats/admin/2025/1", expires_at, compute)
    second = cache.cached("monthly_stats/admin/2025/1", expires_at, compute)

    assert first == second == {"total_orders_started": 3}
    assert len(calls) == 1
    assert 0 < redis_stub.ttls["monthly_stats/admin/2025/1"] <= 3600


def test_expired_window_is_not_stored(redis_stub) -> None:
    cache = StatisticsCache(redis_stub, enabled=True)

    expired = datetime(2020, 1, 31, 23, 59, tzinfo=timezone.utc)
    value = cache.cached("monthly_stats/admin/2020/1", expired, lambda: {"x": 1})

    assert value == {"x": 1}
    assert redis_stub.store == {}


def test_redis_failure_degrades_to_uncached() -> None:
    cache = StatisticsCache(_FailingRedis(), enabled=True)

    value = cache.cached("k", datetime.now(timezone.utc) + timedelta(days=1), lambda: {"ok": True})

    assert value == {"ok": True}
    assert cache.delete(["k"]) == ["k"]


def test_disabled_cache_always_computes(redis_stub) -> None:
    cache = StatisticsCache(redis_stub, enabled=False)

    assert cache.cached("k", datetime.now(timezone.utc) + timedelta(days=1), lambda: {"n": 1}) == {"n": 1}
    assert redis_stub.get_calls == 0


def test_affected_keys_cover_global_roles_and_operator_stakeholders() -> None:
    creator = SimpleNamespace(id=2, role="production_manager")
    operator = SimpleNamespace(id=5, role="operator")
    admin = SimpleNamespace(id=1, role="admin")
    order = SimpleNamespace(creator=creator, assigned_users=[operator, admin])

    keys = affected_keys(order, date(2025, 1, 1))

    assert keys == {
        "monthly_stats/admin/2025/1",
        "monthly_stats/production_manager/2025/1",
        "monthly_stats/operator/5/2025/1",
    }


def test_operators_get_isolated_entries(db, redis_stub) -> None:
    manager = make_user(db, "production_manager")
    first = make_user(db, "operator")
    second = make_user(db, "operator")
    make_order(db, manager, start_date=utc_today().replace(day=1), expected_end_date=utc_today() + timedelta(days=40),
               assignees=[first])
    cache = StatisticsCache(redis_stub, enabled=True)

    first_stats = cached_monthly_statistics(db, first, cache, utc_today())
    second_stats = cached_monthly_statistics(db, second, cache, utc_today())

    assert first_stats["total_orders_started"] == 1
    assert second_stats["total_orders_started"] == 0
    assert json.loads(redis_stub.store[_month_key(first)])["total_orders_started"] == 1
    assert _month_key(second) in redis_stub.store


def test_order_creation_invalidates_stale_statistics(db, redis_stub) -> None:
    manager = make_user(db, "production_manager")
    operator = make_user(db, "operator")
    bystander = make_user(db, "operator")
    cache = StatisticsCache(redis_stub, enabled=True)
    today = utc_today()

    before = cached_monthly_statistics(db, manager, cache, today)
    cached_monthly_statistics(db, operator, cache, today)
    cached_monthly_statistics(db, bystander, cache, today)
    assert before["total_orders_started"] == 0

    create_order_use_case(
        db=db,
        current_user=manager,
        data={
            "start_date": today,
            "expected_end_date": today + timedelta(days=5),
            "user_ids": [operator.id],
        },
        context=AuditContext(actor=manager),
        cache=cache,
        today=today,
    )

    assert _month_key(manager) not in redis_stub.store
    assert _month_key(operator) not in redis_stub.store
    assert _month_key(bystander) in redis_stub.store
    assert cached_monthly_statistics(db, manager, cache, today)["total_orders_started"] == 1


def test_removed_assignee_entry_is_invalidated(db, redis_stub) -> None:
    manager = make_user(db, "production_manager")
    operator = make_user(db, "operator")
    order = make_order(db, manager, assignees=[operator])
    cache = StatisticsCache(redis_stub, enabled=True)
    cached_monthly_statistics(db, operator, cache, utc_today())

    update_order_use_case(
        db=db,
        current_user=manager,
        order=order,
        data={"user_ids": []},
        context=AuditContext(actor=manager),
        cache=cache,
        today=utc_today(),
    )

    assert _month_key(operator) not in redis_stub.store


def test_invalidation_survives_redis_outage(db) -> None:
    manager = make_user(db, "production_manager")
    order = make_order(db, manager)

    invalidated = invalidate_statistics_cache(StatisticsCache(_FailingRedis(), enabled=True), order, date(2025, 1, 15))

    assert "monthly_stats/admin/2025/1" in invalidated


def test_other_months_are_computed_fresh(db, redis_stub) -> None:
    admin = make_user(db, "admin")
    cache = StatisticsCache(redis_stub, enabled=True)
    today = date(2025, 1, 15)
    next_month = date(2025, 2, 1)

    before = cached_monthly_statistics(db, admin, cache, next_month, today=today)
    create_order_use_case(
        db=db,
        current_user=admin,
        data={"start_date": next_month, "expected_end_date": next_month + timedelta(days=3)},
        context=AuditContext(actor=admin),
        cache=cache,
        today=today,
    )
    after = cached_monthly_statistics(db, admin, cache, next_month, today=today)

    assert before["total_orders_started"] == 0
    assert after["total_orders_started"] == 1
    assert build_key("admin", None, 2025, 2) not in redis_stub.store


def test_current_month_is_cached_when_today_is_given(db, redis_stub) -> None:
    admin = make_user(db, "admin")
    cache = StatisticsCache(redis_stub, enabled=True)

    cached_monthly_statistics(db, admin, cache, date(2030, 3, 9), today=date(2030, 3, 20))

    assert build_key("admin", None, 2030, 3) in redis_stub.store
