"""Task endpoints nested under a production order."""
from __future__ import annotations


from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth import get_audit_context, get_current_user
from ..database import get_db
from ..models import User
from ..policies import get_order_task_or_404, get_visible_order_or_404
from ..schemas import ApiResponse, TaskCreate, TaskResponse, TaskUpdate
from ..services.audit import AuditContext
from ..services.order_response_builder import task_to_response
from ..services.order_stats import utc_today
from ..services.statistics_cache import StatisticsCache, get_statistics_cache
from ..use_cases.tasks import (
    complete_task_use_case,
    create_task_use_case,
    delete_task_use_case,
    reopen_task_use_case,
    update_task_use_case,
)

router = APIRouter(prefix="/production_orders/{order_id}/tasks", tags=["tasks"])


def _load_task(db: Session, current_user: User, order_id: int, task_id: int):
    order = get_visible_order_or_404(db, current_user, order_id)
    return get_order_task_or_404(db, order, task_id)


@router.post("", response_model=ApiResponse[TaskResponse], status_code=status.HTTP_201_CREATED)
def create_task(
    order_id: int,
    payload: TaskCreate,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    """Add a task to an order."""
    order = get_visible_order_or_404(db, current_user, order_id)
    task = create_task_use_case(
        db=db,
        current_user=current_user,
        order=order,
        data=payload.model_dump(exclude_unset=True),
        context=context,
        cache=cache,
    )
    return ApiResponse(message="Task created successfully", data=task_to_response(task, utc_today()))


@router.api_route("/{task_id}", methods=["PATCH", "PUT"], response_model=ApiResponse[TaskResponse])
def update_task(
    order_id: int,
    task_id: int,
    payload: TaskUpdate,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    task = _load_task(db, current_user, order_id, task_id)
    task = update_task_use_case(
        db=db,
        current_user=current_user,
        task=task,
        data=payload.model_dump(exclude_unset=True),
        context=context,
        cache=cache,
    )
    return ApiResponse(message="Task updated successfully", data=task_to_response(task, utc_today()))


@router.delete("/{task_id}", response_model=ApiResponse[None])
def delete_task(
    order_id: int,
    task_id: int,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    task = _load_task(db, current_user, order_id, task_id)
    delete_task_use_case(db=db, current_user=current_user, task=task, context=context, cache=cache)
    return ApiResponse(message="Task deleted successfully")


@router.patch("/{task_id}/complete", response_model=ApiResponse[TaskResponse])
def complete_task(
    order_id: int,
    task_id: int,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    """Mark task completed."""
    task = _load_task(db, current_user, order_id, task_id)
    task = complete_task_use_case(db=db, current_user=current_user, task=task, context=context, cache=cache)
    return ApiResponse(message="Task marked as completed", data=task_to_response(task, utc_today()))


@router.patch("/{task_id}/reopen", response_model=ApiResponse[TaskResponse])
def reopen_task(
    order_id: int,
    task_id: int,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    """Move task back to pending."""
    task = _load_task(db, current_user, order_id, task_id)
    task = reopen_task_use_case(db=db, current_user=current_user, task=task, context=context, cache=cache)
    return ApiResponse(message="Task reopened", data=task_to_response(task, utc_today()))
