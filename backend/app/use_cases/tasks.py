"""Task use-cases: nested task handling for orders and single-task endpoints."""
from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ..domain_errors import NotFoundError, ValidationError
from ..models import TASK_STATUS_COMPLETED, TASK_STATUS_PENDING, TASK_STATUSES, ProductionOrder, Task, User
from ..policies import RESOURCE_TASK, authorize
from ..services import audit
from ..services.audit import AUDITED_TASK_FIELDS, AuditContext
from ..services.order_stats import utc_today
from ..services.statistics_cache import StatisticsCache, invalidate_statistics_cache

TASK_FIELDS = ("description", "expected_end_date", "status")


def task_validation_errors(task, *, field_prefix: str = "") -> list[dict[str, str]]:
    prefix = f"{field_prefix}." if field_prefix else ""
    errors: list[dict[str, str]] = []
    if not (task.description or "").strip():
        errors.append({"field": f"{prefix}description", "message": "can't be blank"})
    if task.expected_end_date is None:
        errors.append({"field": f"{prefix}expected_end_date", "message": "can't be blank"})
    if task.status not in TASK_STATUSES:
        errors.append({"field": f"{prefix}status", "message": f"must be one of {', '.join(TASK_STATUSES)}"})
    return errors


def validate_task(task, *, field_prefix: str = "") -> None:
    errors = task_validation_errors(task, field_prefix=field_prefix)
    if errors:
        raise ValidationError(errors)


def build_task(data: dict[str, Any], *, field_prefix: str = "") -> Task:
    """Build a validated, unattached task."""
    task = Task(
        description=data.get("description"),
        expected_end_date=data.get("expected_end_date"),
        status=data.get("status") or TASK_STATUS_PENDING,
    )
    validate_task(task, field_prefix=field_prefix)
    return task


def apply_nested_tasks(
    db: Session,
    order: ProductionOrder,
    tasks_data: Iterable[dict[str, Any]],
) -> list[tuple[str, Task, dict[str, Any] | None]]:
    """Create, update or destroy tasks of `order` from nested attributes.

    Entries with an ``id`` update that task (or destroy it when ``destroy``
    is set); entries without one create a task. Returns
    ``(audit_action, task, before_snapshot)`` triples for the caller to
    record once the changes are flushed.
    """
    changes: list[tuple[str, Task, dict[str, Any] | None]] = []
    existing = {task.id: task for task in order.tasks}
    for index, task_data in enumerate(tasks_data):
        field_prefix = f"tasks[{index}]"
        task_id = task_data.get("id")
        if task_id is None:
            if task_data.get("destroy"):
                continue
            task = build_task(task_data, field_prefix=field_prefix)
            order.tasks.append(task)
            changes.append(("task_added", task, None))
            continue

        task = existing.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found on this order", code="TASK_NOT_FOUND")
        if task_data.get("destroy"):
            order.tasks.remove(task)
            changes.append(("task_deleted", task, None))
            continue

        before = audit.snapshot(task, AUDITED_TASK_FIELDS)
        for field in TASK_FIELDS:
            if field in task_data and task_data[field] is not None:
                setattr(task, field, task_data[field])
        validate_task(task, field_prefix=field_prefix)
        changes.append(("task_updated", task, before))
    return changes


def _finish(db: Session, cache: StatisticsCache | None, order: ProductionOrder, today: date | None) -> None:
    db.commit()
    if cache is not None:
        invalidate_statistics_cache(cache, order, today or utc_today())


def create_task_use_case(
    *,
    db: Session,
    current_user: User,
    order: ProductionOrder,
    data: dict[str, Any],
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> Task:
    authorize(current_user, "create", RESOURCE_TASK, order)
    task = build_task(data)
    try:
        order.tasks.append(task)
        db.flush()
        audit.record_task_change(db, order, task, "task_added", context)
    except Exception:
        db.rollback()
        raise
    _finish(db, cache, order, today)
    db.refresh(task)
    return task


def _update_task(
    *,
    db: Session,
    current_user: User,
    task: Task,
    action: str,
    changes: dict[str, Any],
    context: AuditContext | None,
    cache: StatisticsCache | None,
    today: date | None,
) -> Task:
    authorize(current_user, action, RESOURCE_TASK, task)
    order = task.production_order
    before = audit.snapshot(task, AUDITED_TASK_FIELDS)
    try:
        for field in TASK_FIELDS:
            if field in changes and changes[field] is not None:
                setattr(task, field, changes[field])
        validate_task(task)
        db.flush()
        audit.record_task_change(db, order, task, "task_updated", context, before=before)
    except Exception:
        db.rollback()
        raise
    _finish(db, cache, order, today)
    db.refresh(task)
    return task


def update_task_use_case(
    *,
    db: Session,
    current_user: User,
    task: Task,
    data: dict[str, Any],
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> Task:
    return _update_task(
        db=db, current_user=current_user, task=task, action="update",
        changes=data, context=context, cache=cache, today=today,
    )


def complete_task_use_case(
    *,
    db: Session,
    current_user: User,
    task: Task,
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> Task:
    return _update_task(
        db=db, current_user=current_user, task=task, action="complete",
        changes={"status": TASK_STATUS_COMPLETED}, context=context, cache=cache, today=today,
    )


def reopen_task_use_case(
    *,
    db: Session,
    current_user: User,
    task: Task,
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> Task:
    return _update_task(
        db=db, current_user=current_user, task=task, action="reopen",
        changes={"status": TASK_STATUS_PENDING}, context=context, cache=cache, today=today,
    )


def delete_task_use_case(
    *,
    db: Session,
    current_user: User,
    task: Task,
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> None:
    authorize(current_user, "delete", RESOURCE_TASK, task)
    order = task.production_order
    try:
        order.tasks.remove(task)
        db.flush()
        audit.record_task_change(db, order, task, "task_deleted", context)
    except Exception:
        db.rollback()
        raise
    _finish(db, cache, order, today)
