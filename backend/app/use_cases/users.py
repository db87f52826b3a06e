"""User management use-cases."""
from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import hash_password
from ..domain_errors import ConflictError, NotFoundError, ValidationError
from ..models import ROLES, OrderAssignment, ProductionOrder, User
from ..policies import RESOURCE_USER, apply_scope, authorize, filter_permitted, permitted_user_attributes
from ..services import audit
from ..services.audit import AuditContext
from ..services.order_stats import month_bounds, utc_today
from ..services.statistics_cache import StatisticsCache, affected_keys, invalidate_statistics_cache
from .orders import remove_order_with_history

PASSWORD_MIN_LENGTH = 6


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def list_users_query(*, db: Session, current_user: User, role: str | None = None, search: str | None = None):
    """Users visible to the caller, optionally narrowed by role or a name/email substring."""
    authorize(current_user, "list", RESOURCE_USER)
    query = apply_scope(db.query(User), current_user, RESOURCE_USER)
    if role:
        query = query.filter(User.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    return query.order_by(User.id)


def _apply_user_attributes(db: Session, user: User, attrs: dict[str, Any]) -> None:
    errors: list[dict[str, str]] = []
    if "name" in attrs:
        if not (attrs["name"] or "").strip():
            errors.append({"field": "name", "message": "can't be blank"})
        else:
            user.name = attrs["name"].strip()
    if "email" in attrs:
        email = (attrs["email"] or "").strip().lower()
        if not email:
            errors.append({"field": "email", "message": "can't be blank"})
        else:
            duplicate = db.query(User.id).filter(User.email == email, User.id != user.id).first()
            if duplicate:
                raise ConflictError("Email has already been taken", code="EMAIL_TAKEN")
            user.email = email
    if "role" in attrs:
        if attrs["role"] not in ROLES:
            errors.append({"field": "role", "message": f"must be one of {', '.join(ROLES)}"})
        else:
            user.role = attrs["role"]
    if attrs.get("password") is not None:
        if len(attrs["password"]) < PASSWORD_MIN_LENGTH:
            errors.append({
                "field": "password",
                "message": f"is too short (minimum is {PASSWORD_MIN_LENGTH} characters)",
            })
        else:
            user.password_hash = hash_password(attrs["password"])
    if errors:
        raise ValidationError(errors)


def create_user_use_case(*, db: Session, current_user: User, data: dict[str, Any]) -> User:
    authorize(current_user, "create", RESOURCE_USER)
    attrs = filter_permitted(data, permitted_user_attributes(current_user))
    missing = [field for field in ("name", "email", "password") if not attrs.get(field)]
    if missing:
        raise ValidationError([{"field": field, "message": "can't be blank"} for field in missing])

    user = User(role=attrs.get("role") or "operator")
    try:
        _apply_user_attributes(db, user, attrs)
        db.add(user)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    return user


def update_user_use_case(*, db: Session, current_user: User, user: User, data: dict[str, Any]) -> User:
    """Admins may change anything; everyone else only their own profile, never the role."""
    authorize(current_user, "update", RESOURCE_USER, user)
    attrs = filter_permitted(data, permitted_user_attributes(current_user, user))
    try:
        _apply_user_attributes(db, user, attrs)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    return user


def delete_user_use_case(
    *,
    db: Session,
    current_user: User,
    user: User,
    context: AuditContext | None = None,
    cache: StatisticsCache | None = None,
    today: date | None = None,
) -> None:
    """Delete a user together with the orders they created.

    Created orders go through the order delete path, so each gets its own
    `deleted` entry and keeps its detached history. Orders the user was
    only assigned to get an `unassigned` entry.
    """
    authorize(current_user, "delete", RESOURCE_USER, user)
    if user.id == current_user.id:
        raise ValidationError.single("id", "You cannot delete your own account")

    month_start, _ = month_bounds(today or utc_today())
    prefix = cache.prefix if cache is not None else None
    created = (
        db.query(ProductionOrder)
        .filter(ProductionOrder.creator_id == user.id)
        .order_by(ProductionOrder.id)
        .all()
    )
    assigned = (
        db.query(ProductionOrder)
        .join(OrderAssignment, OrderAssignment.production_order_id == ProductionOrder.id)
        .filter(OrderAssignment.user_id == user.id, ProductionOrder.creator_id != user.id)
        .order_by(ProductionOrder.id)
        .all()
    )
    keys: set[str] = set()
    for order in created + assigned:
        keys |= affected_keys(order, month_start, prefix=prefix)

    try:
        for order in created:
            remove_order_with_history(db, order, context)
        for order in assigned:
            audit.record_assignment_change(db, order, [user.id], [], context)
        db.flush()
        # Remaining assignment rows go with the user through ON DELETE CASCADE.
        db.expire(user, ["created_orders", "order_assignments"])
        db.delete(user)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if cache is not None:
        invalidate_statistics_cache(cache, None, month_start, extra_keys=keys)
