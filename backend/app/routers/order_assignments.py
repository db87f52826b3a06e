"""Order assignment endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth import get_audit_context, get_current_user
from ..database import get_db
from ..models import User
from ..schemas import ApiResponse, AssignmentCreate, AssignmentResponse
from ..services.audit import AuditContext
from ..services.statistics_cache import StatisticsCache, get_statistics_cache
from ..use_cases.orders import create_assignment_use_case, delete_assignment_use_case

router = APIRouter(prefix="/order_assignments", tags=["order_assignments"])


@router.post("", response_model=ApiResponse[AssignmentResponse], status_code=status.HTTP_201_CREATED)
def create_assignment(
    payload: AssignmentCreate,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    """Assign a user to an order."""
    assignment = create_assignment_use_case(
        db=db,
        current_user=current_user,
        order_id=payload.production_order_id,
        user_id=payload.user_id,
        context=context,
        cache=cache,
    )
    return ApiResponse(
        message="User assigned successfully",
        data=AssignmentResponse.model_validate(assignment),
    )


@router.delete("/{assignment_id}", response_model=ApiResponse[None])
def delete_assignment(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    delete_assignment_use_case(
        db=db,
        current_user=current_user,
        assignment_id=assignment_id,
        context=context,
        cache=cache,
    )
    return ApiResponse(message="Assignment removed successfully")
