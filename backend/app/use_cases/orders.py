"""Production order lifecycle use-cases: numbering, validation, assignments, audit, cache."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    ORDER_KIND_NORMAL,
    ORDER_KIND_URGENT,
    ORDER_KINDS,
    ORDER_STATUS_PENDING,
    ORDER_STATUSES,
    OrderAssignment,
    ProductionOrder,
    Task,
    User,
)
from ..policies import (
    RESOURCE_ORDER,
    authorize,
    filter_permitted,
    get_visible_order_or_404,
    permitted_order_attributes,
)
from ..services import audit
from ..services.audit import AuditContext
from ..services.order_stats import month_bounds, utc_today
from ..services.statistics_cache import StatisticsCache, affected_keys, invalidate_statistics_cache
from .tasks import apply_nested_tasks, build_task

logger = logging.getLogger(__name__)

_ORDER_NUMBER_CONSTRAINT_MARKERS = ("uq_production_order_kind_number", "production_orders.order_number")


def next_order_number(db: Session, kind: str, *, exclude_order_id: int | None = None) -> int:
    """Highest order number used by `kind` plus one; numbering starts at 1 per kind."""
    query = db.query(func.max(ProductionOrder.order_number)).filter(ProductionOrder.kind == kind)
    if exclude_order_id is not None:
        query = query.filter(ProductionOrder.id != exclude_order_id)
    current = query.scalar()
    return int(current or 0) + 1


def order_validation_errors(order) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    if order.kind not in ORDER_KINDS:
        errors.append({"field": "kind", "message": f"must be one of {', '.join(ORDER_KINDS)}"})
    if order.status not in ORDER_STATUSES:
        errors.append({"field": "status", "message": f"must be one of {', '.join(ORDER_STATUSES)}"})
    if order.start_date is None:
        errors.append({"field": "start_date", "message": "can't be blank"})
    if order.expected_end_date is None:
        errors.append({"field": "expected_end_date", "message": "can't be blank"})
    if order.start_date is not None and order.expected_end_date is not None:
        if order.expected_end_date < order.start_date:
            errors.append({
                "field": "expected_end_date",
                "message": "must be greater than or equal to start date",
            })
    if order.kind == ORDER_KIND_URGENT:
        if order.deadline is None:
            errors.append({"field": "deadline", "message": "can't be blank"})
        elif order.start_date is not None and order.deadline < order.start_date:
            errors.append({"field": "deadline", "message": "must be greater than or equal to start date"})
    if order.order_number is None or order.order_number < 1:
        errors.append({"field": "order_number", "message": "must be a positive integer"})
    return errors


def validate_order(order) -> None:
    errors = order_validation_errors(order)
    if errors:
        raise ValidationError(errors)


def _is_order_number_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return any(marker in message for marker in _ORDER_NUMBER_CONSTRAINT_MARKERS)


def _order_number_conflict(order) -> ConflictError:
    return ConflictError(
        "Order number is already taken for this kind; retry the request",
        code="ORDER_NUMBER_CONFLICT",
        details={"kind": order.kind, "order_number": order.order_number},
    )


def normalize_user_ids(user_ids: Iterable[Any] | None) -> list[int]:
    """Drop blanks and malformed ids, collapse duplicates, keep first-seen order."""
    normalized: list[int] = []
    for raw in user_ids or ():
        if raw is None or isinstance(raw, bool) or raw == "":
            continue
        try:
            user_id = int(raw)
        except (TypeError, ValueError):
            continue
        if user_id not in normalized:
            normalized.append(user_id)
    return normalized


def _assigned_user_ids(db: Session, order: ProductionOrder) -> list[int]:
    return [
        row[0]
        for row in db.query(OrderAssignment.user_id)
        .filter(OrderAssignment.production_order_id == order.id)
        .order_by(OrderAssignment.user_id)
        .all()
    ]


def assign_users(db: Session, order: ProductionOrder, user_ids: Iterable[Any] | None) -> list[int]:
    """Find-or-create one assignment per normalized user id; returns the ids now assigned."""
    wanted = normalize_user_ids(user_ids)
    if not wanted:
        return _assigned_user_ids(db, order)

    known = {row[0] for row in db.query(User.id).filter(User.id.in_(wanted)).all()}
    unknown = [user_id for user_id in wanted if user_id not in known]
    if unknown:
        raise ValidationError.single("user_ids", f"unknown user ids: {unknown}")

    existing = set(_assigned_user_ids(db, order))
    for user_id in wanted:
        if user_id not in existing:
            order.order_assignments.append(OrderAssignment(user_id=user_id))
    db.flush()
    db.expire(order, ["assigned_users"])
    return _assigned_user_ids(db, order)


def replace_assignments(db: Session, order: ProductionOrder, user_ids: Iterable[Any] | None) -> list[int]:
    """Clear every assignment of `order`, then assign `user_ids` (inside the caller's transaction)."""
    order.order_assignments.clear()
    db.flush()
    return assign_users(db, order, user_ids)


def _finish_mutation(db: Session, cache: StatisticsCache | None, order, today: date, keys: set[str]) -> None:
    """Commit, then invalidate statistics. Cache work never runs for a rolled back mutation."""
    db.commit()
    if cache is not None:
        invalidate_statistics_cache(cache, order, today, extra_keys=keys)


def _build_order(db: Session, *, current_user: User, kind: str, attrs: dict[str, Any]) -> ProductionOrder:
    order = ProductionOrder(
        kind=kind,
        start_date=attrs.get("start_date"),
        expected_end_date=attrs.get("expected_end_date"),
        deadline=attrs.get("deadline") if kind == ORDER_KIND_URGENT else None,
        status=attrs.get("status") or ORDER_STATUS_PENDING,
        creator_id=current_user.id,
    )
    order.order_number = attrs.get("order_number") or next_order_number(db, kind)
    validate_order(order)
    for index, task_data in enumerate(attrs.get("tasks") or ()):
        order.tasks.append(build_task(task_data, field_prefix=f"tasks[{index}]"))
    return order


def remove_order_with_history(db: Session, order: ProductionOrder, context: AuditContext | None) -> None:
    """Record `deleted`, detach the order's history and delete the row, inside the caller's transaction."""
    audit.record_order_deleted(db, order, context)
    audit.detach_audit_logs(db, order.id)
    db.delete(order)


def create_order_use_case(
    *,
    db: Session,
    current_user: User,
    data: dict[str, Any],
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> ProductionOrder:
    """Create an order with nested tasks and assignments atomically."""
    today = today or utc_today()
    kind = data.get("kind") or ORDER_KIND_NORMAL
    if kind not in ORDER_KINDS:
        raise ValidationError.single("kind", f"must be one of {', '.join(ORDER_KINDS)}")

    authorize(current_user, "create", RESOURCE_ORDER)
    attrs = filter_permitted(data, permitted_order_attributes(current_user, kind))
    explicit_number = attrs.get("order_number") is not None
    max_attempts = 1 if explicit_number else max(1, settings.ORDER_NUMBER_MAX_RETRIES)

    try:
        for attempt in range(1, max_attempts + 1):
            order = _build_order(db, current_user=current_user, kind=kind, attrs=attrs)
            db.add(order)
            try:
                db.flush()
                break
            except IntegrityError as exc:
                db.rollback()
                if not _is_order_number_conflict(exc):
                    raise
                if attempt == max_attempts:
                    raise _order_number_conflict(order) from exc
                logger.warning(
                    "Order number %s for %s taken concurrently, retrying (%s/%s)",
                    order.order_number, kind, attempt, max_attempts,
                )

        audit.record_order_created(db, order, context)
        if data.get("user_ids"):
            assigned = assign_users(db, order, data["user_ids"])
            audit.record_assignment_change(db, order, [], assigned, context)
        db.refresh(order)
    except Exception:
        db.rollback()
        raise

    _finish_mutation(db, cache, order, today, set())
    return order


def update_order_use_case(
    *,
    db: Session,
    current_user: User,
    order: ProductionOrder,
    data: dict[str, Any],
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> ProductionOrder:
    """Apply permitted changes, nested task changes and (optionally) replace assignments."""
    today = today or utc_today()
    authorize(current_user, "update", RESOURCE_ORDER, order)

    new_kind = data.get("kind") or order.kind
    if new_kind not in ORDER_KINDS:
        raise ValidationError.single("kind", f"must be one of {', '.join(ORDER_KINDS)}")
    attrs = filter_permitted(data, permitted_order_attributes(current_user, new_kind))

    month_start, _ = month_bounds(today)
    keys_before = affected_keys(order, month_start, prefix=cache.prefix if cache else None)
    before = audit.snapshot(order)
    assigned_before = _assigned_user_ids(db, order)

    try:
        for field in ("start_date", "expected_end_date", "status", "deadline"):
            if field in attrs:
                setattr(order, field, attrs[field])

        kind_changed = new_kind != order.kind
        if kind_changed:
            order.kind = new_kind
            if new_kind != ORDER_KIND_URGENT:
                order.deadline = None
        if attrs.get("order_number") is not None:
            order.order_number = attrs["order_number"]
        elif kind_changed:
            order.order_number = next_order_number(db, new_kind, exclude_order_id=order.id)

        validate_order(order)
        task_changes = apply_nested_tasks(db, order, attrs.get("tasks") or ())

        try:
            db.flush()
        except IntegrityError as exc:
            if _is_order_number_conflict(exc):
                raise _order_number_conflict(order) from exc
            raise

        audit.record_order_updated(db, order, before, context)
        for action, task, task_before in task_changes:
            audit.record_task_change(db, order, task, action, context, before=task_before)

        if data.get("user_ids") is not None:
            assigned_after = replace_assignments(db, order, data["user_ids"])
            audit.record_assignment_change(db, order, assigned_before, assigned_after, context)
        db.refresh(order)
    except Exception:
        db.rollback()
        raise

    _finish_mutation(db, cache, order, today, keys_before)
    return order


def delete_order_use_case(
    *,
    db: Session,
    current_user: User,
    order: ProductionOrder,
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> None:
    """Delete an order with its tasks and assignments; its audit history stays, detached."""
    today = today or utc_today()
    authorize(current_user, "delete", RESOURCE_ORDER, order)

    month_start, _ = month_bounds(today)
    keys_before = affected_keys(order, month_start, prefix=cache.prefix if cache else None)
    try:
        remove_order_with_history(db, order, context)
        db.flush()
    except Exception:
        db.rollback()
        raise

    _finish_mutation(db, cache, None, today, keys_before)


def create_assignment_use_case(
    *,
    db: Session,
    current_user: User,
    order_id: int,
    user_id: int,
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> OrderAssignment:
    """Assign a single user to an order."""
    today = today or utc_today()
    order = get_visible_order_or_404(db, current_user, order_id)
    authorize(current_user, "assign", RESOURCE_ORDER, order)

    assigned_before = _assigned_user_ids(db, order)
    if user_id in assigned_before:
        raise ConflictError("User is already assigned to this order", code="ASSIGNMENT_EXISTS")
    try:
        assigned_after = assign_users(db, order, [user_id])
        audit.record_assignment_change(db, order, assigned_before, assigned_after, context)
        assignment = db.query(OrderAssignment).filter(
            OrderAssignment.production_order_id == order.id,
            OrderAssignment.user_id == user_id,
        ).one()
    except Exception:
        db.rollback()
        raise

    _finish_mutation(db, cache, order, today, set())
    return assignment


def delete_assignment_use_case(
    *,
    db: Session,
    current_user: User,
    assignment_id: int,
    context: AuditContext | None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> None:
    """Remove one assignment. Assignments on orders outside the caller's scope look absent."""
    today = today or utc_today()
    assignment = db.query(OrderAssignment).filter(OrderAssignment.id == assignment_id).first()
    if assignment is None:
        raise NotFoundError("Assignment not found", code="ASSIGNMENT_NOT_FOUND")
    try:
        order = get_visible_order_or_404(db, current_user, assignment.production_order_id)
    except NotFoundError:
        raise NotFoundError("Assignment not found", code="ASSIGNMENT_NOT_FOUND") from None
    authorize(current_user, "assign", RESOURCE_ORDER, order)

    month_start, _ = month_bounds(today)
    keys_before = affected_keys(order, month_start, prefix=cache.prefix if cache else None)
    try:
        removed_user_id = assignment.user_id
        order.order_assignments.remove(assignment)
        db.flush()
        db.expire(order, ["assigned_users"])
        audit.record_assignment_change(db, order, [removed_user_id], [], context)
    except Exception:
        db.rollback()
        raise

    _finish_mutation(db, cache, order, today, keys_before)
