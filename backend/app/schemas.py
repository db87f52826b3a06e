"""Pydantic schemas for API."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Generic, Optional, TypeVar, Union
from datetime import date, datetime

DataT = TypeVar("DataT")


# Envelope
class PaginationMeta(BaseModel):
    current_page: int
    per_page: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool


class ApiResponse(BaseModel, Generic[DataT]):
    """`{success, message, data, meta}` wrapper shared by every endpoint."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[DataT] = None
    meta: Optional[dict[str, Any]] = None


# User schemas
class UserBrief(BaseModel):
    """Brief user info for nested responses."""
    id: int
    name: str
    email: str
    role: str
    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserBrief):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserCreate(BaseModel):
    name: str
    email: str
    password: str
    role: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


# Auth schemas
class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# Task schemas
class TaskAttributes(BaseModel):
    """Nested task entry inside an order payload; `id` targets an existing task."""
    id: Optional[int] = None
    description: Optional[str] = None
    expected_end_date: Optional[date] = None
    status: Optional[str] = None
    destroy: bool = False


class TaskCreate(BaseModel):
    description: str
    expected_end_date: date
    status: Optional[str] = None


class TaskUpdate(BaseModel):
    description: Optional[str] = None
    expected_end_date: Optional[date] = None
    status: Optional[str] = None


class TaskResponse(BaseModel):
    id: int
    production_order_id: int
    description: str
    expected_end_date: date
    status: str
    is_overdue: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class TaskSummaryResponse(BaseModel):
    total: int
    pending: int
    completed: int
    overdue: int
    completion_percentage: float
    latest_pending_task_date: Optional[date] = None


# Production order schemas
class OrderBase(BaseModel):
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    deadline: Optional[date] = None
    status: Optional[str] = None
    order_number: Optional[int] = None
    tasks: Optional[list[TaskAttributes]] = None
    # Malformed entries are dropped rather than rejected.
    user_ids: Optional[list[Union[int, str, None]]] = None


class OrderCreate(OrderBase):
    kind: Optional[str] = None


class OrderUpdate(OrderBase):
    kind: Optional[str] = None


class OrderResponse(BaseModel):
    id: int
    kind: str
    order_number: int
    start_date: date
    expected_end_date: date
    deadline: Optional[date] = None
    status: str
    creator_id: int
    is_urgent: bool
    days_until_deadline: Optional[int] = None
    creator: Optional[UserBrief] = None
    assigned_users: list[UserBrief] = Field(default_factory=list)
    tasks: Optional[list[TaskResponse]] = None
    tasks_summary: Optional[TaskSummaryResponse] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Assignment schemas
class AssignmentCreate(BaseModel):
    production_order_id: int
    user_id: int


class AssignmentResponse(BaseModel):
    id: int
    production_order_id: int
    user_id: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Audit
class AuditLogResponse(BaseModel):
    id: int
    production_order_id: Optional[int] = None
    user_id: Optional[int] = None
    user: Optional[UserBrief] = None
    action: str
    change_details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Reports
class MonthlyStatisticsResponse(BaseModel):
    year: int
    month: int
    normal_orders_starting: int
    urgent_orders_with_deadline: int
    total_orders_started: int
    completed_orders: int


class UrgentOrderReportItem(BaseModel):
    order: OrderResponse
    pending_tasks_count: int
    completed_tasks_count: int
    total_tasks_count: int
    completion_percentage: float
    latest_pending_task: Optional[TaskResponse] = None
    days_until_deadline: Optional[int] = None


class OverdueOrderReportItem(BaseModel):
    order: OrderResponse
    overdue_tasks_count: int
    overdue_tasks: list[TaskResponse]


# System
class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    redis: str
    timestamp: datetime
