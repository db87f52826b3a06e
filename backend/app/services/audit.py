"""Audit recorder for production order mutations.

Entries are written in the same transaction as the mutation, after the
mutating statement has been flushed, so a failed audit write rolls the
mutation back with it. Without an acting user nothing is recorded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ..models import OrderAuditLog, ProductionOrder

logger = logging.getLogger(__name__)

# Persisted order fields captured in snapshots and diffs (id and timestamps excluded).
AUDITED_ORDER_FIELDS: tuple[str, ...] = (
    "kind",
    "order_number",
    "start_date",
    "expected_end_date",
    "deadline",
    "status",
    "creator_id",
)
AUDITED_TASK_FIELDS: tuple[str, ...] = ("description", "expected_end_date", "status")


@dataclass(frozen=True)
class AuditContext:
    """Who is acting in the current request. Lives for one request only."""

    actor: Any = None
    ip_address: str | None = None
    user_agent: str | None = None


def _json_value(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def snapshot(record, fields: Iterable[str] = AUDITED_ORDER_FIELDS) -> dict[str, Any]:
    return {field: _json_value(getattr(record, field, None)) for field in fields}


def diff_snapshots(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """field -> {from, to} for every field whose value changed."""
    return {
        field: {"from": before.get(field), "to": after.get(field)}
        for field in after
        if before.get(field) != after.get(field)
    }


def classify_update(changes: dict[str, Any]) -> str:
    if "status" in changes:
        return "status_changed"
    if "kind" in changes:
        return "type_changed"
    return "updated"


def record_audit(
    db: Session,
    *,
    order: ProductionOrder | None,
    context: AuditContext | None,
    action: str,
    change_details: dict[str, Any] | None,
) -> OrderAuditLog | None:
    """Append one audit entry; returns None when no actor is present."""
    if context is None or context.actor is None:
        logger.debug("Skipping %s audit entry: no acting user", action)
        return None

    entry = OrderAuditLog(
        production_order_id=order.id if order is not None else None,
        user_id=context.actor.id,
        action=action,
        change_details=change_details,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
    )
    db.add(entry)
    db.flush()
    return entry


def record_order_created(db: Session, order: ProductionOrder, context: AuditContext | None):
    return record_audit(db, order=order, context=context, action="created", change_details=snapshot(order))


def record_order_updated(
    db: Session,
    order: ProductionOrder,
    before: dict[str, Any],
    context: AuditContext | None,
):
    """Diff `before` against the order's current state; no entry when nothing changed."""
    changes = diff_snapshots(before, snapshot(order))
    if not changes:
        return None
    return record_audit(db, order=order, context=context, action=classify_update(changes), change_details=changes)


def record_order_deleted(db: Session, order: ProductionOrder, context: AuditContext | None):
    return record_audit(db, order=order, context=context, action="deleted", change_details=snapshot(order))


def detach_audit_logs(db: Session, order_id: int) -> int:
    """Null the order reference on existing entries so they outlive the order."""
    return (
        db.query(OrderAuditLog)
        .filter(OrderAuditLog.production_order_id == order_id)
        .update({OrderAuditLog.production_order_id: None}, synchronize_session=False)
    )


def record_assignment_change(
    db: Session,
    order: ProductionOrder,
    before_user_ids: Iterable[int],
    after_user_ids: Iterable[int],
    context: AuditContext | None,
) -> list[OrderAuditLog]:
    before_set, after_set = set(before_user_ids), set(after_user_ids)
    entries = []
    added = sorted(after_set - before_set)
    removed = sorted(before_set - after_set)
    if added:
        entry = record_audit(db, order=order, context=context, action="assigned", change_details={"user_ids": added})
        if entry is not None:
            entries.append(entry)
    if removed:
        entry = record_audit(
            db, order=order, context=context, action="unassigned", change_details={"user_ids": removed}
        )
        if entry is not None:
            entries.append(entry)
    return entries


def record_task_change(
    db: Session,
    order: ProductionOrder,
    task,
    action: str,
    context: AuditContext | None,
    *,
    before: dict[str, Any] | None = None,
):
    """task_added / task_deleted carry a snapshot; task_updated carries the diff."""
    if action == "task_updated":
        changes = diff_snapshots(before or {}, snapshot(task, AUDITED_TASK_FIELDS))
        if not changes:
            return None
        details: dict[str, Any] = {"task_id": task.id, "changes": changes}
    else:
        details = {"task_id": task.id, **snapshot(task, AUDITED_TASK_FIELDS)}
    return record_audit(db, order=order, context=context, action=action, change_details=details)


def audit_logs_for_order(db: Session, order_id: int):
    """Entries for one order, newest first."""
    return (
        db.query(OrderAuditLog)
        .filter(OrderAuditLog.production_order_id == order_id)
        .order_by(OrderAuditLog.created_at.desc(), OrderAuditLog.id.desc())
    )
