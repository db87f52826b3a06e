"""Production order endpoints (plus kind-fixed normal/urgent aliases)."""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, selectinload

from ..auth import get_audit_context, get_current_user
from ..database import get_db
from ..domain_errors import NotFoundError
from ..models import ORDER_KIND_NORMAL, ORDER_KIND_URGENT, OrderAssignment, OrderAuditLog, ProductionOrder, User
from ..pagination import PageParams, page_params, paginate, pagination_meta
from ..policies import RESOURCE_ORDER, authorize, get_visible_order_or_404, scoped_orders
from ..schemas import (
    ApiResponse,
    AuditLogResponse,
    MonthlyStatisticsResponse,
    OrderCreate,
    OrderResponse,
    OrderUpdate,
    OverdueOrderReportItem,
    TaskSummaryResponse,
    UrgentOrderReportItem,
)
from ..services.audit import AuditContext, audit_logs_for_order
from ..services.order_response_builder import (
    ORDER_RESPONSE_OPTIONS,
    audit_log_to_response,
    order_to_response,
    orders_to_response,
    overdue_report_row_to_response,
    urgent_report_row_to_response,
)
from ..services.order_stats import (
    order_summary,
    overdue_orders_query,
    overdue_tasks_report,
    urgent_orders_report,
    utc_today,
)
from ..services.statistics_cache import StatisticsCache, cached_monthly_statistics, get_statistics_cache
from ..use_cases.orders import create_order_use_case, delete_order_use_case, update_order_use_case


def _load_order(db: Session, current_user: User, order_id: int, kind: str | None) -> ProductionOrder:
    order = get_visible_order_or_404(db, current_user, order_id)
    if kind is not None and order.kind != kind:
        raise NotFoundError("Production order not found", code="ORDER_NOT_FOUND")
    return order


def _order_payload(payload, kind: str | None) -> dict:
    data = payload.model_dump(exclude_unset=True)
    if kind is not None:
        data["kind"] = kind
    return data


def _add_collection_routes(router: APIRouter) -> None:
    """Reports that only exist on the generic collection."""

    @router.get("/monthly_statistics", response_model=ApiResponse[MonthlyStatisticsResponse])
    def get_monthly_statistics(
        year: Optional[int] = Query(None, ge=2000, le=9999),
        month: Optional[int] = Query(None, ge=1, le=12),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        cache: StatisticsCache = Depends(get_statistics_cache),
    ):
        """Counts for the current month (or `year`/`month`) within the caller's scope."""
        authorize(current_user, "monthly_statistics", RESOURCE_ORDER)
        today = utc_today()
        month_day = date(year or today.year, month or today.month, 1)
        stats = cached_monthly_statistics(db, current_user, cache, month_day, today=today)
        return ApiResponse(data=MonthlyStatisticsResponse(year=month_day.year, month=month_day.month, **stats))

    @router.get("/urgent_orders_report", response_model=ApiResponse[list[UrgentOrderReportItem]])
    def get_urgent_orders_report(
        params: PageParams = Depends(page_params),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        """Urgent orders in scope with task counts and the latest pending task."""
        authorize(current_user, "urgent_orders_report", RESOURCE_ORDER)
        today = utc_today()
        orders_query = scoped_orders(db, current_user).options(
            selectinload(ProductionOrder.creator),
            selectinload(ProductionOrder.assigned_users),
        )
        total_count = scoped_orders(db, current_user).filter(ProductionOrder.kind == ORDER_KIND_URGENT).count()
        rows = urgent_orders_report(db, orders_query, today, offset=params.offset, limit=params.per_page)
        return ApiResponse(
            data=[urgent_report_row_to_response(row, today) for row in rows],
            meta=pagination_meta(params, total_count),
        )

    @router.get("/urgent_with_expired_tasks", response_model=ApiResponse[list[OverdueOrderReportItem]])
    def get_urgent_with_expired_tasks(
        params: PageParams = Depends(page_params),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        """Urgent orders in scope having pending tasks past their expected end date."""
        authorize(current_user, "overdue_tasks_report", RESOURCE_ORDER)
        today = utc_today()
        orders_query = scoped_orders(db, current_user).options(
            selectinload(ProductionOrder.creator),
            selectinload(ProductionOrder.assigned_users),
        )
        total_count = overdue_orders_query(scoped_orders(db, current_user), today).count()
        rows = overdue_tasks_report(db, orders_query, today, offset=params.offset, limit=params.per_page)
        return ApiResponse(
            data=[overdue_report_row_to_response(row, today) for row in rows],
            meta=pagination_meta(params, total_count),
        )


def build_orders_router(prefix: str, *, kind: str | None = None, tag: str = "production_orders") -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    if kind is None:
        _add_collection_routes(router)

    @router.get("", response_model=ApiResponse[list[OrderResponse]])
    def list_orders(
        status_filter: Optional[str] = Query(None, alias="status"),
        kind_filter: Optional[str] = Query(None, alias="kind"),
        start_date_from: Optional[date] = None,
        start_date_to: Optional[date] = None,
        expected_end_date_from: Optional[date] = None,
        expected_end_date_to: Optional[date] = None,
        creator_id: Optional[int] = None,
        order_number: Optional[int] = None,
        assigned_user_id: Optional[int] = None,
        params: PageParams = Depends(page_params),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        """List orders visible to the caller."""
        authorize(current_user, "list", RESOURCE_ORDER)
        query = scoped_orders(db, current_user)

        if kind is not None:
            query = query.filter(ProductionOrder.kind == kind)
        elif kind_filter:
            query = query.filter(ProductionOrder.kind == kind_filter)
        if status_filter:
            query = query.filter(ProductionOrder.status == status_filter)
        if start_date_from:
            query = query.filter(ProductionOrder.start_date >= start_date_from)
        if start_date_to:
            query = query.filter(ProductionOrder.start_date <= start_date_to)
        if expected_end_date_from:
            query = query.filter(ProductionOrder.expected_end_date >= expected_end_date_from)
        if expected_end_date_to:
            query = query.filter(ProductionOrder.expected_end_date <= expected_end_date_to)
        if creator_id is not None:
            query = query.filter(ProductionOrder.creator_id == creator_id)
        if order_number is not None:
            query = query.filter(ProductionOrder.order_number == order_number)
        if assigned_user_id is not None:
            query = query.filter(
                ProductionOrder.order_assignments.any(OrderAssignment.user_id == assigned_user_id)
            )

        query = query.options(*ORDER_RESPONSE_OPTIONS).order_by(ProductionOrder.id.desc())
        orders, meta = paginate(query, params)
        return ApiResponse(data=orders_to_response(db, orders, utc_today()), meta=meta)

    @router.post("", response_model=ApiResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
    def create_order(
        payload: OrderCreate,
        current_user: User = Depends(get_current_user),
        context: AuditContext = Depends(get_audit_context),
        db: Session = Depends(get_db),
        cache: StatisticsCache = Depends(get_statistics_cache),
    ):
        """Create an order with nested tasks and optional assignments."""
        order = create_order_use_case(
            db=db,
            current_user=current_user,
            data=_order_payload(payload, kind),
            context=context,
            cache=cache,
        )
        return ApiResponse(
            message="Production order created successfully",
            data=order_to_response(db, order, utc_today()),
        )

    @router.get("/{order_id}", response_model=ApiResponse[OrderResponse])
    def get_order(
        order_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        order = _load_order(db, current_user, order_id, kind)
        authorize(current_user, "view", RESOURCE_ORDER, order)
        return ApiResponse(data=order_to_response(db, order, utc_today()))

    @router.api_route("/{order_id}", methods=["PATCH", "PUT"], response_model=ApiResponse[OrderResponse])
    def update_order(
        order_id: int,
        payload: OrderUpdate,
        current_user: User = Depends(get_current_user),
        context: AuditContext = Depends(get_audit_context),
        db: Session = Depends(get_db),
        cache: StatisticsCache = Depends(get_statistics_cache),
    ):
        """Update an order; `user_ids`, when present, replaces its assignments."""
        order = _load_order(db, current_user, order_id, kind)
        order = update_order_use_case(
            db=db,
            current_user=current_user,
            order=order,
            data=_order_payload(payload, kind),
            context=context,
            cache=cache,
        )
        return ApiResponse(
            message="Production order updated successfully",
            data=order_to_response(db, order, utc_today()),
        )

    @router.delete("/{order_id}", response_model=ApiResponse[None])
    def delete_order(
        order_id: int,
        current_user: User = Depends(get_current_user),
        context: AuditContext = Depends(get_audit_context),
        db: Session = Depends(get_db),
        cache: StatisticsCache = Depends(get_statistics_cache),
    ):
        order = _load_order(db, current_user, order_id, kind)
        delete_order_use_case(db=db, current_user=current_user, order=order, context=context, cache=cache)
        return ApiResponse(message="Production order deleted successfully")

    @router.get("/{order_id}/tasks_summary", response_model=ApiResponse[TaskSummaryResponse])
    def get_tasks_summary(
        order_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        order = _load_order(db, current_user, order_id, kind)
        authorize(current_user, "tasks_summary", RESOURCE_ORDER, order)
        summary = order_summary(db, order, utc_today())
        return ApiResponse(data=TaskSummaryResponse(**summary.to_dict()))

    @router.get("/{order_id}/audit_logs", response_model=ApiResponse[list[AuditLogResponse]])
    def get_audit_logs(
        order_id: int,
        params: PageParams = Depends(page_params),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        """Audit trail of one order, newest first."""
        order = _load_order(db, current_user, order_id, kind)
        authorize(current_user, "audit_logs", RESOURCE_ORDER, order)
        query = audit_logs_for_order(db, order.id).options(selectinload(OrderAuditLog.user))
        entries, meta = paginate(query, params)
        return ApiResponse(data=[audit_log_to_response(entry) for entry in entries], meta=meta)

    return router


router = build_orders_router("/production_orders")
normal_orders_router = build_orders_router("/normal_orders", kind=ORDER_KIND_NORMAL, tag="normal_orders")
urgent_orders_router = build_orders_router("/urgent_orders", kind=ORDER_KIND_URGENT, tag="urgent_orders")
