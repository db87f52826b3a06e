"""Periodic read-mostly sweeps: expired task alerts and urgent deadline reminders.

Re-running a sweep only repeats notifications; nothing is written.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy.orm import Session, selectinload

from ..config import settings
from ..models import (
    ORDER_KIND_URGENT,
    ORDER_STATUS_PENDING,
    TASK_STATUS_PENDING,
    ProductionOrder,
    Task,
)
from .notifier import Notifier
from .order_stats import days_until

logger = logging.getLogger(__name__)


def recipients_for(order: ProductionOrder) -> list:
    """Creator first, then assigned users, each user once."""
    recipients = []
    seen: set[int] = set()
    for user in [order.creator, *order.assigned_users]:
        if user is None or user.id in seen:
            continue
        seen.add(user.id)
        recipients.append(user)
    return recipients


def expired_tasks_sweep(db: Session, notifier: Notifier, today: date) -> int:
    """Notify creator and assignees of every pending task past its expected end date."""
    expired_tasks = (
        db.query(Task)
        .options(
            selectinload(Task.production_order).selectinload(ProductionOrder.creator),
            selectinload(Task.production_order).selectinload(ProductionOrder.assigned_users),
        )
        .filter(Task.status == TASK_STATUS_PENDING, Task.expected_end_date < today)
        .order_by(Task.id)
        .all()
    )
    if not expired_tasks:
        return 0

    logger.info("Found %s expired tasks", len(expired_tasks))
    sent = 0
    for task in expired_tasks:
        order = task.production_order
        for user in recipients_for(order):
            logger.info(
                "Task #%s (Order: %s) is expired. Expected end: %s. Notifying user: %s",
                task.id, order.order_number, task.expected_end_date, user.email,
            )
            ok, _ = notifier.notify(
                user,
                f"Task #{task.id} of order {order.order_number} is overdue",
                f"Task \"{task.description}\" was expected to finish on {task.expected_end_date.isoformat()}.",
            )
            sent += int(ok)
    logger.info("Expired tasks sweep completed: %s notifications sent", sent)
    return sent


def urgent_deadline_sweep(
    db: Session,
    notifier: Notifier,
    today: date,
    *,
    min_days: int | None = None,
    max_days: int | None = None,
) -> int:
    """Remind creator and assignees of pending urgent orders due in the reminder window."""
    min_days = settings.URGENT_DEADLINE_WINDOW_MIN_DAYS if min_days is None else min_days
    max_days = settings.URGENT_DEADLINE_WINDOW_MAX_DAYS if max_days is None else max_days

    orders = (
        db.query(ProductionOrder)
        .options(selectinload(ProductionOrder.creator), selectinload(ProductionOrder.assigned_users))
        .filter(
            ProductionOrder.kind == ORDER_KIND_URGENT,
            ProductionOrder.status == ORDER_STATUS_PENDING,
            ProductionOrder.deadline.between(today + timedelta(days=min_days), today + timedelta(days=max_days)),
        )
        .order_by(ProductionOrder.id)
        .all()
    )
    if not orders:
        return 0

    logger.info("Found %s urgent orders with approaching deadlines", len(orders))
    sent = 0
    for order in orders:
        remaining = days_until(order.deadline, today)
        for user in recipients_for(order):
            logger.info(
                "Urgent order %s deadline approaching in %s day(s). Deadline: %s. Notifying user: %s",
                order.order_number, remaining, order.deadline, user.email,
            )
            ok, _ = notifier.notify(
                user,
                f"Urgent order {order.order_number} is due in {remaining} day(s)",
                f"The deadline for urgent order {order.order_number} is {order.deadline.isoformat()}.",
            )
            sent += int(ok)
    logger.info("Urgent deadline sweep completed: %s notifications sent", sent)
    return sent
