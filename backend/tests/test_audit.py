from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from app.models import OrderAuditLog, ProductionOrder
from app.services.audit import (
    AuditContext,
    audit_logs_for_order,
    classify_update,
    diff_snapshots,
    record_audit,
    snapshot,
)
from app.services.statistics_cache import StatisticsCache, build_key, key_for_user
from app.use_cases.orders import create_order_use_case, delete_order_use_case, update_order_use_case
from app.use_cases.users import delete_user_use_case

from .conftest import TODAY, make_order, make_user


class _SessionStub:
    def __init__(self):
        self.added = []

    def add(self, entry):
        self.added.append(entry)

    def flush(self):
        return None


def _context(actor, **extra):
    return AuditContext(actor=actor, ip_address=extra.get("ip_address", "10.0.0.1"), user_agent="pytest")


def test_classify_update_prefers_status_then_kind() -> None:
    assert classify_update({"status": {}, "kind": {}}) == "status_changed"
    assert classify_update({"kind": {}, "order_number": {}}) == "type_changed"
    assert classify_update({"start_date": {}}) == "updated"


def test_snapshot_and_diff_use_iso_dates() -> None:
    before = snapshot(SimpleNamespace(start_date=date(2025, 1, 1), status="pending"), ("start_date", "status"))
    after = snapshot(SimpleNamespace(start_date=date(2025, 1, 2), status="pending"), ("start_date", "status"))

    assert diff_snapshots(before, after) == {"start_date": {"from": "2025-01-01", "to": "2025-01-02"}}


def test_record_audit_without_actor_writes_nothing() -> None:
    session = _SessionStub()

    assert record_audit(session, order=None, context=AuditContext(), action="created", change_details={}) is None
    assert record_audit(session, order=None, context=None, action="created", change_details={}) is None
    assert session.added == []


def test_record_audit_captures_request_metadata() -> None:
    session = _SessionStub()
    actor = SimpleNamespace(id=3)

    entry = record_audit(
        session,
        order=SimpleNamespace(id=11),
        context=_context(actor),
        action="updated",
        change_details={"status": {"from": "pending", "to": "completed"}},
    )

    assert session.added == [entry]
    assert (entry.production_order_id, entry.user_id, entry.ip_address, entry.user_agent) == (
        11, 3, "10.0.0.1", "pytest"
    )


def test_creation_writes_exactly_one_entry(db) -> None:
    manager = make_user(db, "production_manager")

    order = create_order_use_case(
        db=db,
        current_user=manager,
        data={"start_date": TODAY, "expected_end_date": TODAY + timedelta(days=2)},
        context=_context(manager),
        today=TODAY,
    )

    entries = audit_logs_for_order(db, order.id).all()
    assert [entry.action for entry in entries] == ["created"]
    assert entries[0].user_id == manager.id
    assert entries[0].change_details["kind"] == "normal"
    assert entries[0].change_details["start_date"] == TODAY.isoformat()


def test_status_change_records_from_and_to(db) -> None:
    manager = make_user(db, "production_manager")
    order = make_order(db, manager)

    update_order_use_case(
        db=db,
        current_user=manager,
        order=order,
        data={"status": "completed"},
        context=_context(manager),
        today=TODAY,
    )

    entry = db.query(OrderAuditLog).one()
    assert entry.action == "status_changed"
    assert entry.change_details == {"status": {"from": "pending", "to": "completed"}}


def test_kind_change_records_type_changed(db) -> None:
    manager = make_user(db, "production_manager")
    order = make_order(db, manager)

    update_order_use_case(
        db=db,
        current_user=manager,
        order=order,
        data={"kind": "urgent", "deadline": TODAY + timedelta(days=1)},
        context=_context(manager),
        today=TODAY,
    )

    entry = db.query(OrderAuditLog).one()
    assert entry.action == "type_changed"
    assert entry.change_details["kind"] == {"from": "normal", "to": "urgent"}


def test_no_op_update_writes_nothing(db) -> None:
    manager = make_user(db, "production_manager")
    order = make_order(db, manager)

    update_order_use_case(
        db=db,
        current_user=manager,
        order=order,
        data={"status": order.status, "start_date": order.start_date},
        context=_context(manager),
        today=TODAY,
    )

    assert db.query(OrderAuditLog).count() == 0


def test_mutation_without_actor_is_not_audited(db) -> None:
    manager = make_user(db, "production_manager")
    order = make_order(db, manager)

    update_order_use_case(
        db=db,
        current_user=manager,
        order=order,
        data={"status": "cancelled"},
        context=AuditContext(),
        today=TODAY,
    )

    assert order.status == "cancelled"
    assert db.query(OrderAuditLog).count() == 0


def test_deleted_order_history_survives_detached(db) -> None:
    manager = make_user(db, "production_manager")
    order = create_order_use_case(
        db=db,
        current_user=manager,
        data={"start_date": TODAY, "expected_end_date": TODAY + timedelta(days=2)},
        context=_context(manager),
        today=TODAY,
    )
    order_id = order.id

    delete_order_use_case(db=db, current_user=manager, order=order, context=_context(manager), today=TODAY)

    entries = db.query(OrderAuditLog).order_by(OrderAuditLog.id).all()
    assert [entry.action for entry in entries] == ["created", "deleted"]
    assert all(entry.production_order_id is None for entry in entries)
    assert entries[1].change_details["order_number"] == 1
    assert audit_logs_for_order(db, order_id).count() == 0


def test_audit_entries_are_immutable(db) -> None:
    manager = make_user(db, "production_manager")
    order = make_order(db, manager)
    update_order_use_case(
        db=db,
        current_user=manager,
        order=order,
        data={"status": "completed"},
        context=_context(manager),
        today=TODAY,
    )
    entry = db.query(OrderAuditLog).one()

    entry.action = "updated"
    with pytest.raises(RuntimeError, match="immutable"):
        db.flush()
    db.rollback()

    db.delete(db.query(OrderAuditLog).one())
    with pytest.raises(RuntimeError, match="immutable"):
        db.flush()
    db.rollback()


def test_deleting_a_user_audits_each_order_they_created(db, redis_stub) -> None:
    admin = make_user(db, "admin")
    manager = make_user(db, "production_manager")
    operator = make_user(db, "operator")
    other_manager = make_user(db, "production_manager")
    owned = create_order_use_case(
        db=db,
        current_user=manager,
        data={"start_date": TODAY, "expected_end_date": TODAY + timedelta(days=2), "user_ids": [operator.id]},
        context=_context(manager),
        today=TODAY,
    )
    shared = make_order(db, other_manager, assignees=[manager])
    owned_id, owned_number, manager_id, shared_id = owned.id, owned.order_number, manager.id, shared.id
    operator_key = key_for_user(operator, TODAY.replace(day=1))
    admin_key = build_key("admin", None, 2025, 1)
    redis_stub.store.update({operator_key: "{}", admin_key: "{}"})

    delete_user_use_case(
        db=db,
        current_user=admin,
        user=manager,
        context=_context(admin),
        cache=StatisticsCache(redis_stub, enabled=True),
        today=TODAY,
    )

    assert db.query(ProductionOrder).filter(ProductionOrder.id == owned_id).count() == 0
    deleted = db.query(OrderAuditLog).filter(OrderAuditLog.action == "deleted").one()
    assert deleted.user_id == admin.id
    assert deleted.production_order_id is None
    assert deleted.change_details["order_number"] == owned_number
    unassigned = db.query(OrderAuditLog).filter(OrderAuditLog.action == "unassigned").one()
    assert unassigned.production_order_id == shared_id
    assert unassigned.change_details == {"user_ids": [manager_id]}
    assert db.query(ProductionOrder).filter(ProductionOrder.id == shared_id).one().assigned_users == []
    assert operator_key not in redis_stub.store
    assert admin_key not in redis_stub.store
