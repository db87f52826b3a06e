from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.domain_errors import DomainError
from app.models import ProductionOrder, Task
from app.policies import (
    RESOURCE_ORDER,
    RESOURCE_TASK,
    RESOURCE_USER,
    authorize,
    can,
    filter_permitted,
    get_visible_order_or_404,
    missing_policy_rules,
    permitted_order_attributes,
    permitted_user_attributes,
    scope_for,
    scoped_orders,
)

from .conftest import TODAY, make_order, make_user


def _user(user_id: int, role: str):
    return SimpleNamespace(id=user_id, role=role)


def _order(creator_id: int, assigned_ids=(), kind: str = "normal"):
    return SimpleNamespace(
        creator_id=creator_id,
        kind=kind,
        order_assignments=[SimpleNamespace(user_id=user_id) for user_id in assigned_ids],
    )


ADMIN = _user(1, "admin")
MANAGER = _user(2, "production_manager")
OPERATOR = _user(3, "operator")
STRANGER = _user(4, "auditor")


def test_policy_table_covers_every_resource_action() -> None:
    assert missing_policy_rules() == []


@pytest.mark.parametrize(
    "user, action, record, expected",
    [
        (ADMIN, "view", _order(99), True),
        (ADMIN, "delete", _order(99), True),
        (MANAGER, "create", None, True),
        (MANAGER, "update", _order(2), True),
        (MANAGER, "update", _order(99, assigned_ids=[2]), True),
        (MANAGER, "update", _order(99), False),
        (MANAGER, "delete", _order(2), True),
        (MANAGER, "delete", _order(99, assigned_ids=[2]), False),
        (OPERATOR, "create", None, False),
        (OPERATOR, "view", _order(99, assigned_ids=[3]), True),
        (OPERATOR, "view", _order(99), False),
        (OPERATOR, "update", _order(99, assigned_ids=[3]), False),
        (OPERATOR, "audit_logs", _order(99, assigned_ids=[3]), True),
        (OPERATOR, "monthly_statistics", None, True),
        (STRANGER, "list", None, False),
        (STRANGER, "view", _order(4), False),
    ],
)
def test_order_policy_table(user, action, record, expected) -> None:
    assert can(user, action, RESOURCE_ORDER, record) is expected


def test_task_policy_follows_parent_order() -> None:
    task = SimpleNamespace(production_order=_order(99, assigned_ids=[3]))

    assert can(OPERATOR, "complete", RESOURCE_TASK, task) is True
    assert can(OPERATOR, "reopen", RESOURCE_TASK, task) is True
    assert can(OPERATOR, "update", RESOURCE_TASK, task) is False
    assert can(MANAGER, "update", RESOURCE_TASK, task) is False
    assert can(ADMIN, "delete", RESOURCE_TASK, task) is True


def test_user_policy_allows_self_update_only() -> None:
    assert can(OPERATOR, "update", RESOURCE_USER, _user(3, "operator")) is True
    assert can(OPERATOR, "update", RESOURCE_USER, _user(5, "operator")) is False
    assert can(MANAGER, "create", RESOURCE_USER) is False
    assert can(ADMIN, "create", RESOURCE_USER) is True
    assert can(ADMIN, "delete", RESOURCE_USER, _user(5, "operator")) is True


def test_authorize_raises_authorization_error() -> None:
    with pytest.raises(DomainError, match="not authorized") as exc:
        authorize(OPERATOR, "create", RESOURCE_ORDER)

    assert exc.value.code == "AUTHORIZATION_ERROR"
    assert exc.value.http_status == 403


def test_permitted_order_attributes_by_role_and_kind() -> None:
    assert permitted_order_attributes(OPERATOR, "normal") == frozenset()

    manager_normal = permitted_order_attributes(MANAGER, "normal")
    assert "deadline" not in manager_normal
    assert "order_number" not in manager_normal
    assert "start_date" in manager_normal

    assert "deadline" in permitted_order_attributes(MANAGER, "urgent")
    assert "order_number" in permitted_order_attributes(ADMIN, "normal")


def test_permitted_user_attributes_hide_role_from_self_service() -> None:
    assert "role" in permitted_user_attributes(ADMIN, _user(3, "operator"))
    assert permitted_user_attributes(OPERATOR, _user(3, "operator")) == frozenset({"name", "email", "password"})
    assert permitted_user_attributes(OPERATOR, _user(5, "operator")) == frozenset()


def test_filter_permitted_drops_unknown_keys() -> None:
    filtered = filter_permitted({"name": "x", "role": "admin"}, {"name"})
    assert filtered == {"name": "x"}


def test_scope_counts_created_and_assigned_orders_once(db) -> None:
    manager = make_user(db, "production_manager")
    other = make_user(db, "production_manager")
    make_order(db, manager, assignees=[manager])
    make_order(db, other, assignees=[manager])
    make_order(db, other)

    visible = scoped_orders(db, manager).all()

    assert len(visible) == 2
    assert scoped_orders(db, make_user(db, "admin")).count() == 3


def test_unknown_role_sees_nothing(db) -> None:
    manager = make_user(db, "production_manager")
    make_order(db, manager)

    stranger = SimpleNamespace(id=999, role="auditor")

    assert scoped_orders(db, stranger).count() == 0
    assert db.query(Task).filter(scope_for(stranger, RESOURCE_TASK)).count() == 0


def test_task_scope_follows_visible_orders(db) -> None:
    manager = make_user(db, "production_manager")
    operator = make_user(db, "operator")
    make_order(db, manager, assignees=[operator], tasks=[{"expected_end_date": TODAY}])
    make_order(db, manager, tasks=[{"expected_end_date": TODAY}, {"expected_end_date": TODAY}])

    assert db.query(Task).filter(scope_for(operator, RESOURCE_TASK)).count() == 1
    assert db.query(Task).filter(scope_for(manager, RESOURCE_TASK)).count() == 3


def test_out_of_scope_order_looks_absent(db) -> None:
    manager = make_user(db, "production_manager")
    operator = make_user(db, "operator")
    order = make_order(db, manager)

    with pytest.raises(DomainError) as exc:
        get_visible_order_or_404(db, operator, order.id)

    assert exc.value.code == "ORDER_NOT_FOUND"
    assert exc.value.http_status == 404
    assert isinstance(get_visible_order_or_404(db, manager, order.id), ProductionOrder)
