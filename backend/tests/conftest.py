from __future__ import annotations

import itertools
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, enable_sqlite_foreign_keys
from app.models import OrderAssignment, ProductionOrder, Task, User

TODAY = date(2025, 1, 15)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

_sequence = itertools.count(1)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


class RedisStub:
    """Dict-backed stand-in for the few redis-py calls the statistics cache makes."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.get_calls = 0

    def get(self, key):
        self.get_calls += 1
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)
            self.ttls.pop(key, None)
        return len(keys)

    def ping(self):
        return True


@pytest.fixture
def redis_stub():
    return RedisStub()


def make_user(db, role: str = "operator", *, name: str | None = None, email: str | None = None,
              password_hash: str = "not-a-real-hash") -> User:
    number = next(_sequence)
    user = User(
        name=name or f"{role.title()} {number}",
        email=email or f"{role}{number}@example.com",
        password_hash=password_hash,
        role=role,
    )
    db.add(user)
    db.commit()
    return user


def make_order(
    db,
    creator: User,
    *,
    kind: str = "normal",
    order_number: int | None = None,
    start_date: date = TODAY - timedelta(days=5),
    expected_end_date: date = TODAY + timedelta(days=10),
    deadline: date | None = None,
    status: str = "pending",
    tasks: list[dict] | None = None,
    assignees: list[User] | None = None,
    updated_at=None,
) -> ProductionOrder:
    if kind == "urgent" and deadline is None:
        deadline = expected_end_date
    if order_number is None:
        taken = [
            row[0] for row in db.query(ProductionOrder.order_number).filter(ProductionOrder.kind == kind).all()
        ]
        order_number = max(taken, default=0) + 1
    order = ProductionOrder(
        kind=kind,
        order_number=order_number,
        start_date=start_date,
        expected_end_date=expected_end_date,
        deadline=deadline,
        status=status,
        creator_id=creator.id,
    )
    if updated_at is not None:
        order.updated_at = updated_at
    for task_data in tasks or ():
        order.tasks.append(
            Task(
                description=task_data.get("description", "Task"),
                expected_end_date=task_data["expected_end_date"],
                status=task_data.get("status", "pending"),
            )
        )
    for user in assignees or ():
        order.order_assignments.append(OrderAssignment(user_id=user.id))
    db.add(order)
    db.commit()
    return order
