"""Role policy engine: per-action permission table and per-role visibility scopes.

Every (resource, action) pair is registered explicitly in ``POLICY_RULES``;
a missing pair is a startup error rather than a silent deny. Scopes are
SQLAlchemy boolean clauses so callers can compose them into list and
report queries without fan-out from the assignment join.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from sqlalchemy import false, or_, select, true
from sqlalchemy.orm import Session

from .domain_errors import AuthorizationError, NotFoundError
from .models import (
    ORDER_KIND_URGENT,
    ROLE_ADMIN,
    ROLE_OPERATOR,
    ROLE_PRODUCTION_MANAGER,
    OrderAssignment,
    ProductionOrder,
    Task,
    User,
)

logger = logging.getLogger(__name__)

RESOURCE_ORDER = "order"
RESOURCE_TASK = "task"
RESOURCE_USER = "user"

# Privilege rank, lowest first.
ROLE_RANK = {
    ROLE_OPERATOR: 0,
    ROLE_PRODUCTION_MANAGER: 1,
    ROLE_ADMIN: 2,
}

RESOURCE_ACTIONS: dict[str, tuple[str, ...]] = {
    RESOURCE_ORDER: (
        "list",
        "view",
        "create",
        "update",
        "delete",
        "assign",
        "tasks_summary",
        "audit_logs",
        "monthly_statistics",
        "urgent_orders_report",
        "overdue_tasks_report",
    ),
    RESOURCE_TASK: ("view", "complete", "reopen", "create", "update", "delete"),
    RESOURCE_USER: ("list", "view", "create", "update", "delete"),
}

Predicate = Callable[[Any, Any], bool]


def has_role_at_least(user, role: str) -> bool:
    rank = ROLE_RANK.get(getattr(user, "role", None))
    return rank is not None and rank >= ROLE_RANK[role]


def _is_admin(user) -> bool:
    return user.role == ROLE_ADMIN


def _is_production_manager(user) -> bool:
    return user.role == ROLE_PRODUCTION_MANAGER


def _order_of(record):
    """Tasks are judged by their parent order; orders by themselves."""
    return getattr(record, "production_order", None) or record


def created_order(user, record) -> bool:
    order = _order_of(record)
    return order is not None and order.creator_id == user.id


def assigned_to_order(user, record) -> bool:
    order = _order_of(record)
    if order is None:
        return False
    return any(assignment.user_id == user.id for assignment in order.order_assignments)


def _related(user, record) -> bool:
    return created_order(user, record) or assigned_to_order(user, record)


def _any_known_role(user, _record) -> bool:
    return user.role in ROLE_RANK


def _admin_only(user, _record) -> bool:
    return _is_admin(user)


def _admin_or_manager(user, _record) -> bool:
    return has_role_at_least(user, ROLE_PRODUCTION_MANAGER)


def _admin_or_related(user, record) -> bool:
    if _is_admin(user):
        return True
    return user.role in ROLE_RANK and _related(user, record)


def _admin_or_related_manager(user, record) -> bool:
    return _is_admin(user) or (_is_production_manager(user) and _related(user, record))


def _admin_or_creating_manager(user, record) -> bool:
    return _is_admin(user) or (_is_production_manager(user) and created_order(user, record))


def _admin_or_self(user, record) -> bool:
    return _is_admin(user) or (record is not None and record.id == user.id and user.role in ROLE_RANK)


POLICY_RULES: dict[tuple[str, str], Predicate] = {
    (RESOURCE_ORDER, "list"): _any_known_role,
    (RESOURCE_ORDER, "view"): _admin_or_related,
    (RESOURCE_ORDER, "create"): _admin_or_manager,
    (RESOURCE_ORDER, "update"): _admin_or_related_manager,
    (RESOURCE_ORDER, "delete"): _admin_or_creating_manager,
    (RESOURCE_ORDER, "assign"): _admin_or_related_manager,
    (RESOURCE_ORDER, "tasks_summary"): _admin_or_related,
    (RESOURCE_ORDER, "audit_logs"): _admin_or_related,
    (RESOURCE_ORDER, "monthly_statistics"): _any_known_role,
    (RESOURCE_ORDER, "urgent_orders_report"): _any_known_role,
    (RESOURCE_ORDER, "overdue_tasks_report"): _any_known_role,
    (RESOURCE_TASK, "view"): _admin_or_related,
    (RESOURCE_TASK, "complete"): _admin_or_related,
    (RESOURCE_TASK, "reopen"): _admin_or_related,
    (RESOURCE_TASK, "create"): _admin_or_related_manager,
    (RESOURCE_TASK, "update"): _admin_or_related_manager,
    (RESOURCE_TASK, "delete"): _admin_or_related_manager,
    (RESOURCE_USER, "list"): _any_known_role,
    (RESOURCE_USER, "view"): _any_known_role,
    (RESOURCE_USER, "create"): _admin_only,
    (RESOURCE_USER, "update"): _admin_or_self,
    (RESOURCE_USER, "delete"): _admin_only,
}


def missing_policy_rules() -> list[tuple[str, str]]:
    return [
        (resource, action)
        for resource, actions in RESOURCE_ACTIONS.items()
        for action in actions
        if (resource, action) not in POLICY_RULES
    ]


_missing = missing_policy_rules()
if _missing:
    raise RuntimeError(f"Policy table is incomplete: {_missing}")


def can(user, action: str, resource: str, record=None) -> bool:
    """Return whether `user` may perform `action` on `resource` (instance or class-level)."""
    rule = POLICY_RULES.get((resource, action))
    if rule is None:
        logger.warning("No policy rule for %s.%s; denying", resource, action)
        return False
    return bool(rule(user, record))


def authorize(user, action: str, resource: str, record=None) -> None:
    """Raise AuthorizationError unless the action is permitted."""
    if not can(user, action, resource, record):
        raise AuthorizationError(action=action, resource=resource)


# Visibility scopes

def _order_scope_clause(user):
    if user.role == ROLE_ADMIN:
        return true()
    if user.role in (ROLE_PRODUCTION_MANAGER, ROLE_OPERATOR):
        assigned_order_ids = select(OrderAssignment.production_order_id).where(
            OrderAssignment.user_id == user.id
        )
        return or_(
            ProductionOrder.creator_id == user.id,
            ProductionOrder.id.in_(assigned_order_ids),
        )
    return false()


def scope_for(user, resource: str):
    """Boolean clause restricting `resource` rows to what `user` may see."""
    if resource == RESOURCE_ORDER:
        return _order_scope_clause(user)
    if resource == RESOURCE_TASK:
        if user.role == ROLE_ADMIN:
            return true()
        if user.role not in ROLE_RANK:
            return false()
        visible_order_ids = select(ProductionOrder.id).where(_order_scope_clause(user))
        return Task.production_order_id.in_(visible_order_ids)
    if resource == RESOURCE_USER:
        return true() if user.role in ROLE_RANK else false()
    raise ValueError(f"Unknown resource: {resource}")


def apply_scope(query, user, resource: str):
    return query.filter(scope_for(user, resource))


def scoped_orders(db: Session, user):
    """Query of the orders `user` may see."""
    return apply_scope(db.query(ProductionOrder), user, RESOURCE_ORDER)


def get_visible_order_or_404(db: Session, user, order_id: int) -> ProductionOrder:
    """Load an order inside the caller's scope; out-of-scope rows look absent."""
    order = scoped_orders(db, user).filter(ProductionOrder.id == order_id).first()
    if order is None:
        raise NotFoundError("Production order not found", code="ORDER_NOT_FOUND")
    return order


def get_order_task_or_404(db: Session, order: ProductionOrder, task_id: int) -> Task:
    task = db.query(Task).filter(
        Task.id == task_id,
        Task.production_order_id == order.id,
    ).first()
    if task is None:
        raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
    return task


# Mass-assignment field sets

ORDER_BASE_ATTRIBUTES = frozenset({"start_date", "expected_end_date", "status", "tasks"})
USER_ATTRIBUTES = frozenset({"name", "email", "password", "role"})


def permitted_order_attributes(user, kind: str) -> frozenset[str]:
    """Fields `user` may set on an order of `kind` (create and update share the set)."""
    if not has_role_at_least(user, ROLE_PRODUCTION_MANAGER):
        return frozenset()
    attrs = set(ORDER_BASE_ATTRIBUTES) | {"kind"}
    if kind == ORDER_KIND_URGENT:
        attrs.add("deadline")
    if _is_admin(user):
        attrs.add("order_number")
    return frozenset(attrs)


def permitted_user_attributes(user, target=None) -> frozenset[str]:
    if _is_admin(user):
        return USER_ATTRIBUTES
    if target is not None and target.id == user.id:
        return USER_ATTRIBUTES - {"role"}
    return frozenset()


def filter_permitted(data: dict[str, Any], allowed: Iterable[str]) -> dict[str, Any]:
    """Drop keys outside `allowed`, the way strong parameters do."""
    allowed = set(allowed)
    dropped = sorted(set(data) - allowed)
    if dropped:
        logger.debug("Dropping unpermitted attributes: %s", dropped)
    return {key: value for key, value in data.items() if key in allowed}
