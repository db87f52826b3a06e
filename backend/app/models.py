"""SQLAlchemy models for users, production orders, tasks, assignments and audit logs."""
from sqlalchemy import (
    JSON, Column, String, Integer, Date, DateTime, Text,
    ForeignKey, CheckConstraint, Index, UniqueConstraint, event
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


ROLE_OPERATOR = "operator"
ROLE_PRODUCTION_MANAGER = "production_manager"
ROLE_ADMIN = "admin"
ROLES = (ROLE_OPERATOR, ROLE_PRODUCTION_MANAGER, ROLE_ADMIN)

ORDER_KIND_NORMAL = "normal"
ORDER_KIND_URGENT = "urgent"
ORDER_KINDS = (ORDER_KIND_NORMAL, ORDER_KIND_URGENT)

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)

TASK_STATUS_PENDING = "pending"
TASK_STATUS_COMPLETED = "completed"
TASK_STATUSES = (TASK_STATUS_PENDING, TASK_STATUS_COMPLETED)

AUDIT_ACTIONS = (
    "created",
    "updated",
    "deleted",
    "status_changed",
    "type_changed",
    "assigned",
    "unassigned",
    "task_added",
    "task_updated",
    "task_deleted",
)


class User(Base):
    """User model."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default=ROLE_OPERATOR, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(ROLES), name="chk_user_role"),
    )

    # Relationships
    created_orders = relationship(
        "ProductionOrder",
        back_populates="creator",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    order_assignments = relationship(
        "OrderAssignment",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_operator(self) -> bool:
        return self.role == ROLE_OPERATOR


class ProductionOrder(Base):
    """Production order. Normal and urgent orders share this table, told apart by `kind`."""
    __tablename__ = "production_orders"

    id = Column(Integer, primary_key=True)
    kind = Column(String(20), nullable=False, default=ORDER_KIND_NORMAL, index=True)
    order_number = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False, index=True)
    expected_end_date = Column(Date, nullable=False)
    # Urgent orders only.
    deadline = Column(Date, nullable=True, index=True)
    status = Column(String(20), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    creator_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(kind.in_(ORDER_KINDS), name="chk_production_order_kind"),
        CheckConstraint(status.in_(ORDER_STATUSES), name="chk_production_order_status"),
        CheckConstraint("expected_end_date >= start_date", name="chk_production_order_dates"),
        CheckConstraint(
            "kind != 'urgent' OR (deadline IS NOT NULL AND deadline >= start_date)",
            name="chk_urgent_order_deadline",
        ),
        UniqueConstraint("kind", "order_number", name="uq_production_order_kind_number"),
        Index("idx_production_orders_kind_status", "kind", "status"),
    )

    # Relationships
    creator = relationship("User", back_populates="created_orders")
    tasks = relationship(
        "Task",
        back_populates="production_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Task.id",
    )
    order_assignments = relationship(
        "OrderAssignment",
        back_populates="production_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    assigned_users = relationship(
        "User",
        secondary="order_assignments",
        viewonly=True,
        order_by="User.id",
    )

    @property
    def is_urgent(self) -> bool:
        return self.kind == ORDER_KIND_URGENT


class Task(Base):
    """Task belonging to exactly one production order."""
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True)
    production_order_id = Column(
        Integer,
        ForeignKey("production_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description = Column(Text, nullable=False)
    expected_end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=TASK_STATUS_PENDING)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(TASK_STATUSES), name="chk_task_status"),
        Index("idx_tasks_status_expected_end_date", "status", "expected_end_date"),
        Index("idx_tasks_order_status", "production_order_id", "status"),
    )

    # Relationships
    production_order = relationship("ProductionOrder", back_populates="tasks")


class OrderAssignment(Base):
    """Links a user to an order they may act on."""
    __tablename__ = "order_assignments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    production_order_id = Column(
        Integer,
        ForeignKey("production_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "production_order_id", name="uq_order_assignment_user_order"),
    )

    # Relationships
    user = relationship("User", back_populates="order_assignments")
    production_order = relationship("ProductionOrder", back_populates="order_assignments")


class OrderAuditLog(Base):
    """Append-only audit trail entry. The order reference is nulled when the order goes away."""
    __tablename__ = "order_audit_logs"

    id = Column(Integer, primary_key=True)
    production_order_id = Column(
        Integer,
        ForeignKey("production_orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    change_details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(action.in_(AUDIT_ACTIONS), name="chk_order_audit_action"),
        Index("idx_order_audit_logs_order_created", "production_order_id", "created_at"),
    )

    # One-way on purpose: deleting an order must not touch its log rows through the ORM.
    production_order = relationship("ProductionOrder")
    user = relationship("User")


@event.listens_for(OrderAuditLog, "before_update")
def _reject_audit_log_update(_mapper, _connection, target):
    raise RuntimeError(f"Audit log {target.id} is immutable")


@event.listens_for(OrderAuditLog, "before_delete")
def _reject_audit_log_delete(_mapper, _connection, target):
    raise RuntimeError(f"Audit log {target.id} is immutable")
