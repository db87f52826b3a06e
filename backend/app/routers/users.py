"""User endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth import get_audit_context, get_current_user
from ..database import get_db
from ..models import User
from ..pagination import PageParams, page_params, paginate
from ..policies import RESOURCE_USER, authorize
from ..schemas import ApiResponse, UserCreate, UserResponse, UserUpdate
from ..services.audit import AuditContext
from ..services.statistics_cache import StatisticsCache, get_statistics_cache
from ..use_cases.users import (
    create_user_use_case,
    delete_user_use_case,
    get_user_or_404,
    list_users_query,
    update_user_use_case,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=ApiResponse[list[UserResponse]])
def get_users(
    role: Optional[str] = None,
    search: Optional[str] = None,
    params: PageParams = Depends(page_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get all users."""
    query = list_users_query(db=db, current_user=current_user, role=role, search=search)
    users, meta = paginate(query, params)
    return ApiResponse(data=[UserResponse.model_validate(u) for u in users], meta=meta)


@router.get("/{user_id}", response_model=ApiResponse[UserResponse])
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get user by ID."""
    user = get_user_or_404(db, user_id)
    authorize(current_user, "view", RESOURCE_USER, user)
    return ApiResponse(data=UserResponse.model_validate(user))


@router.post("", response_model=ApiResponse[UserResponse], status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = create_user_use_case(db=db, current_user=current_user, data=payload.model_dump(exclude_unset=True))
    return ApiResponse(message="User created successfully", data=UserResponse.model_validate(user))


@router.api_route("/{user_id}", methods=["PATCH", "PUT"], response_model=ApiResponse[UserResponse])
def update_user(
    user_id: int,
    payload: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Admins may change any user; everyone else only themselves, without the role."""
    user = get_user_or_404(db, user_id)
    user = update_user_use_case(
        db=db,
        current_user=current_user,
        user=user,
        data=payload.model_dump(exclude_unset=True),
    )
    return ApiResponse(message="User updated successfully", data=UserResponse.model_validate(user))


@router.delete("/{user_id}", response_model=ApiResponse[None])
def delete_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    context: AuditContext = Depends(get_audit_context),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache),
):
    """Admin only. Orders created by the user are deleted with it, each audited."""
    user = get_user_or_404(db, user_id)
    delete_user_use_case(db=db, current_user=current_user, user=user, context=context, cache=cache)
    return ApiResponse(message="User deleted successfully")
