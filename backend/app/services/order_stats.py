"""Read-side aggregation over pre-scoped orders and their tasks.

Nothing here writes to the store. Every function takes an already
role-scoped ``Query[ProductionOrder]`` (or a loaded order) plus an
explicit ``today`` so results do not depend on the wall clock.
"""
from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy import and_, case, exists, func, inspect, select
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Session

from ..models import (
    ORDER_KIND_NORMAL,
    ORDER_KIND_URGENT,
    ORDER_STATUS_COMPLETED,
    TASK_STATUS_COMPLETED,
    TASK_STATUS_PENDING,
    ProductionOrder,
    Task,
)


def completion_percentage(completed: int, total: int) -> float:
    """Share of completed tasks in percent, two decimals; 0 for an order without tasks."""
    if total == 0:
        return 0.0
    return round(completed / total * 100, 2)


def is_overdue(task, today: date) -> bool:
    return task.status == TASK_STATUS_PENDING and task.expected_end_date < today


def days_until(deadline: date | None, today: date) -> int | None:
    if deadline is None:
        return None
    return (deadline - today).days


def utc_today() -> date:
    """Current calendar day on the UTC clock, the clock timestamps are stored in."""
    return datetime.now(timezone.utc).date()


def month_window(month_start: date, month_end: date) -> tuple[datetime, datetime]:
    """Half-open UTC datetime range covering the days [month_start, month_end]."""
    return (
        datetime.combine(month_start, time.min, tzinfo=timezone.utc),
        datetime.combine(month_end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


def month_bounds(day: date) -> tuple[date, date]:
    """First and last calendar day of the month containing `day`."""
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last_day)


@dataclass(frozen=True)
class TaskSummary:
    total: int
    pending: int
    completed: int
    overdue: int
    completion_percentage: float
    latest_pending_task_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def summarize_tasks(tasks: Iterable, today: date) -> TaskSummary:
    """Summary over an in-memory task collection."""
    tasks = list(tasks)
    pending = [task for task in tasks if task.status == TASK_STATUS_PENDING]
    completed = sum(1 for task in tasks if task.status == TASK_STATUS_COMPLETED)
    return TaskSummary(
        total=len(tasks),
        pending=len(pending),
        completed=completed,
        overdue=sum(1 for task in pending if task.expected_end_date < today),
        completion_percentage=completion_percentage(completed, len(tasks)),
        latest_pending_task_date=max((task.expected_end_date for task in pending), default=None),
    )


def _tasks_loaded(order) -> bool:
    try:
        return "tasks" not in inspect(order).unloaded
    except NoInspectionAvailable:
        return hasattr(order, "tasks")


def _count_task_summary(db: Session, order_id: int, today: date) -> TaskSummary:
    pending_clause = Task.status == TASK_STATUS_PENDING
    total, pending, completed, overdue, latest = db.query(
        func.count(Task.id),
        func.count(case((pending_clause, 1))),
        func.count(case((Task.status == TASK_STATUS_COMPLETED, 1))),
        func.count(case((and_(pending_clause, Task.expected_end_date < today), 1))),
        func.max(case((pending_clause, Task.expected_end_date))),
    ).filter(Task.production_order_id == order_id).one()
    return TaskSummary(
        total=int(total or 0),
        pending=int(pending or 0),
        completed=int(completed or 0),
        overdue=int(overdue or 0),
        completion_percentage=completion_percentage(int(completed or 0), int(total or 0)),
        latest_pending_task_date=latest,
    )


def order_summary(db: Session | None, order, today: date) -> TaskSummary:
    """Task summary for one order, reusing an already loaded `tasks` collection when present."""
    if _tasks_loaded(order) or db is None:
        return summarize_tasks(order.tasks, today)
    return _count_task_summary(db, order.id, today)


@dataclass(frozen=True)
class UrgentOrderReportRow:
    order: ProductionOrder
    pending_tasks_count: int
    completed_tasks_count: int
    total_tasks_count: int
    completion_percentage: float
    latest_pending_task: Task | None
    days_until_deadline: int | None


@dataclass(frozen=True)
class OverdueOrderReportRow:
    order: ProductionOrder
    overdue_tasks_count: int
    overdue_tasks: tuple[Task, ...]


def urgent_orders_report(
    db: Session,
    orders_query,
    today: date,
    *,
    offset: int = 0,
    limit: int | None = None,
) -> list[UrgentOrderReportRow]:
    """One row per urgent order in scope with task counts and its latest pending task.

    Counts come from a pre-aggregated subquery and the latest pending task
    id from a correlated scalar subquery, so multiple tasks per order
    never multiply the order rows.
    """
    task_counts = (
        select(
            Task.production_order_id.label("order_id"),
            func.count(Task.id).label("total"),
            func.count(case((Task.status == TASK_STATUS_PENDING, 1))).label("pending"),
            func.count(case((Task.status == TASK_STATUS_COMPLETED, 1))).label("completed"),
        )
        .group_by(Task.production_order_id)
        .subquery()
    )
    latest_pending_id = (
        select(func.max(Task.id))
        .where(
            Task.production_order_id == ProductionOrder.id,
            Task.status == TASK_STATUS_PENDING,
        )
        .correlate(ProductionOrder)
        .scalar_subquery()
    )

    query = (
        orders_query.filter(ProductionOrder.kind == ORDER_KIND_URGENT)
        .outerjoin(task_counts, task_counts.c.order_id == ProductionOrder.id)
        .add_columns(
            task_counts.c.total,
            task_counts.c.pending,
            task_counts.c.completed,
            latest_pending_id.label("latest_pending_task_id"),
        )
        .order_by(ProductionOrder.id)
    )
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    rows = query.all()

    latest_ids = [row.latest_pending_task_id for row in rows if row.latest_pending_task_id is not None]
    latest_by_id: dict[int, Task] = {}
    if latest_ids:
        latest_by_id = {task.id: task for task in db.query(Task).filter(Task.id.in_(latest_ids)).all()}

    report = []
    for order, total, pending, completed, latest_id in rows:
        total, pending, completed = int(total or 0), int(pending or 0), int(completed or 0)
        report.append(
            UrgentOrderReportRow(
                order=order,
                pending_tasks_count=pending,
                completed_tasks_count=completed,
                total_tasks_count=total,
                completion_percentage=completion_percentage(completed, total),
                latest_pending_task=latest_by_id.get(latest_id) if latest_id is not None else None,
                days_until_deadline=days_until(order.deadline, today),
            )
        )
    return report


def _overdue_task_filter(today: date):
    return and_(Task.status == TASK_STATUS_PENDING, Task.expected_end_date < today)


def overdue_orders_query(orders_query, today: date):
    """Urgent orders in scope having at least one overdue task."""
    has_overdue = exists().where(
        Task.production_order_id == ProductionOrder.id,
        _overdue_task_filter(today),
    )
    return orders_query.filter(ProductionOrder.kind == ORDER_KIND_URGENT, has_overdue)


def overdue_tasks_report(
    db: Session,
    orders_query,
    today: date,
    *,
    offset: int = 0,
    limit: int | None = None,
) -> list[OverdueOrderReportRow]:
    query = overdue_orders_query(orders_query, today).order_by(ProductionOrder.id)
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    orders = query.all()
    if not orders:
        return []

    tasks = (
        db.query(Task)
        .filter(
            Task.production_order_id.in_([order.id for order in orders]),
            _overdue_task_filter(today),
        )
        .order_by(Task.id)
        .all()
    )
    tasks_by_order: dict[int, list[Task]] = defaultdict(list)
    for task in tasks:
        tasks_by_order[task.production_order_id].append(task)

    return [
        OverdueOrderReportRow(
            order=order,
            overdue_tasks_count=len(tasks_by_order[order.id]),
            overdue_tasks=tuple(tasks_by_order[order.id]),
        )
        for order in orders
    ]


@dataclass(frozen=True)
class MonthlyStatistics:
    """Four independent counts; an order can land in several of them."""

    normal_orders_starting: int
    urgent_orders_with_deadline: int
    total_orders_started: int
    completed_orders: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def monthly_statistics(orders_query, month_start: date, month_end: date) -> MonthlyStatistics:
    """Counts over the scoped orders for the inclusive [month_start, month_end] window."""
    window_start, window_end = month_window(month_start, month_end)
    starts_in_window = ProductionOrder.start_date.between(month_start, month_end)

    normal, urgent, started, completed = orders_query.with_entities(
        func.count(case((and_(ProductionOrder.kind == ORDER_KIND_NORMAL, starts_in_window), 1))),
        func.count(
            case(
                (
                    and_(
                        ProductionOrder.kind == ORDER_KIND_URGENT,
                        ProductionOrder.deadline.between(month_start, month_end),
                    ),
                    1,
                )
            )
        ),
        func.count(case((starts_in_window, 1))),
        func.count(
            case(
                (
                    and_(
                        ProductionOrder.status == ORDER_STATUS_COMPLETED,
                        ProductionOrder.updated_at >= window_start,
                        ProductionOrder.updated_at < window_end,
                    ),
                    1,
                )
            )
        ),
    ).one()
    return MonthlyStatistics(
        normal_orders_starting=int(normal or 0),
        urgent_orders_with_deadline=int(urgent or 0),
        total_orders_started=int(started or 0),
        completed_orders=int(completed or 0),
    )
