"""Order, task and report response serialization."""
from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session, selectinload

from ..models import OrderAuditLog, ProductionOrder
from ..schemas import (
    AuditLogResponse,
    OrderResponse,
    OverdueOrderReportItem,
    TaskResponse,
    TaskSummaryResponse,
    UrgentOrderReportItem,
    UserBrief,
)
from .order_stats import (
    OverdueOrderReportRow,
    UrgentOrderReportRow,
    days_until,
    is_overdue,
    order_summary,
)

# Relations every order response touches; load them per page, not per row.
ORDER_RESPONSE_OPTIONS = (
    selectinload(ProductionOrder.creator),
    selectinload(ProductionOrder.assigned_users),
    selectinload(ProductionOrder.order_assignments),
    selectinload(ProductionOrder.tasks),
)


def task_to_response(task, today: date) -> TaskResponse:
    response = TaskResponse.model_validate(task)
    response.is_overdue = is_overdue(task, today)
    return response


def order_to_response(
    db: Session | None,
    order: ProductionOrder,
    today: date,
    *,
    include_tasks: bool = True,
    include_summary: bool = True,
) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        kind=order.kind,
        order_number=order.order_number,
        start_date=order.start_date,
        expected_end_date=order.expected_end_date,
        deadline=order.deadline,
        status=order.status,
        creator_id=order.creator_id,
        is_urgent=order.is_urgent,
        days_until_deadline=days_until(order.deadline, today) if order.is_urgent else None,
        creator=UserBrief.model_validate(order.creator) if order.creator else None,
        assigned_users=[UserBrief.model_validate(user) for user in order.assigned_users],
        tasks=[task_to_response(task, today) for task in order.tasks] if include_tasks else None,
        tasks_summary=(
            TaskSummaryResponse(**order_summary(db, order, today).to_dict()) if include_summary else None
        ),
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def orders_to_response(db: Session, orders: list[ProductionOrder], today: date) -> list[OrderResponse]:
    return [order_to_response(db, order, today, include_tasks=False) for order in orders]


def audit_log_to_response(entry: OrderAuditLog) -> AuditLogResponse:
    response = AuditLogResponse.model_validate(entry)
    response.user = UserBrief.model_validate(entry.user) if entry.user else None
    return response


def urgent_report_row_to_response(row: UrgentOrderReportRow, today: date) -> UrgentOrderReportItem:
    return UrgentOrderReportItem(
        order=order_to_response(None, row.order, today, include_tasks=False, include_summary=False),
        pending_tasks_count=row.pending_tasks_count,
        completed_tasks_count=row.completed_tasks_count,
        total_tasks_count=row.total_tasks_count,
        completion_percentage=row.completion_percentage,
        latest_pending_task=(
            task_to_response(row.latest_pending_task, today) if row.latest_pending_task is not None else None
        ),
        days_until_deadline=row.days_until_deadline,
    )


def overdue_report_row_to_response(row: OverdueOrderReportRow, today: date) -> OverdueOrderReportItem:
    return OverdueOrderReportItem(
        order=order_to_response(None, row.order, today, include_tasks=False, include_summary=False),
        overdue_tasks_count=row.overdue_tasks_count,
        overdue_tasks=[task_to_response(task, today) for task in row.overdue_tasks],
    )
