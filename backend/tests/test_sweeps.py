from __future__ import annotations

import smtplib
from datetime import timedelta
from types import SimpleNamespace

from app.services import notifier as notifier_module
from app.services.notifier import EmailNotifier, LoggingNotifier, get_notifier
from app.services.sweeps import expired_tasks_sweep, recipients_for, urgent_deadline_sweep

from .conftest import TODAY, make_order, make_user


class _NotifierStub:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    def notify(self, user, subject, body):
        self.sent.append((user.email, subject))
        return (True, None) if self.ok else (False, "SMTPException: down")


def test_recipients_are_creator_then_distinct_assignees() -> None:
    creator = SimpleNamespace(id=1, email="c@example.com")
    operator = SimpleNamespace(id=2, email="o@example.com")
    order = SimpleNamespace(creator=creator, assigned_users=[creator, operator, operator])

    assert recipients_for(order) == [creator, operator]


def test_expired_tasks_sweep_notifies_each_stakeholder_once(db) -> None:
    manager = make_user(db, "production_manager")
    operator = make_user(db, "operator")
    make_order(
        db,
        manager,
        assignees=[manager, operator],
        tasks=[
            {"description": "late", "expected_end_date": TODAY - timedelta(days=1)},
            {"description": "due today", "expected_end_date": TODAY},
            {"description": "done", "expected_end_date": TODAY - timedelta(days=3), "status": "completed"},
        ],
    )
    notifier = _NotifierStub()

    sent = expired_tasks_sweep(db, notifier, TODAY)

    assert sent == 2
    assert sorted(email for email, _ in notifier.sent) == sorted([manager.email, operator.email])


def test_expired_tasks_sweep_with_nothing_due(db) -> None:
    manager = make_user(db, "production_manager")
    make_order(db, manager, tasks=[{"expected_end_date": TODAY + timedelta(days=1)}])

    assert expired_tasks_sweep(db, _NotifierStub(), TODAY) == 0


def test_urgent_deadline_sweep_uses_reminder_window(db) -> None:
    manager = make_user(db, "production_manager")
    operator = make_user(db, "operator")
    tomorrow = make_order(db, manager, kind="urgent", deadline=TODAY + timedelta(days=1), assignees=[operator])
    make_order(db, manager, kind="urgent", deadline=TODAY + timedelta(days=2))
    make_order(db, manager, kind="urgent", deadline=TODAY + timedelta(days=3))
    make_order(db, manager, kind="urgent", deadline=TODAY + timedelta(days=1), status="completed")
    make_order(db, manager, kind="urgent", deadline=TODAY)
    notifier = _NotifierStub()

    sent = urgent_deadline_sweep(db, notifier, TODAY)

    assert sent == 3
    subjects = [subject for _, subject in notifier.sent]
    assert f"Urgent order {tomorrow.order_number} is due in 1 day(s)" in subjects


def test_failed_deliveries_are_not_counted(db) -> None:
    manager = make_user(db, "production_manager")
    make_order(db, manager, kind="urgent", deadline=TODAY + timedelta(days=1))

    assert urgent_deadline_sweep(db, _NotifierStub(ok=False), TODAY) == 0


def test_email_notifier_reports_smtp_failure(monkeypatch) -> None:
    def _refuse(*_args, **_kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(smtplib, "SMTP", _refuse)
    notifier = EmailNotifier(host="mail.invalid")

    ok, error = notifier.notify(SimpleNamespace(email="x@example.com"), "subject", "body")

    assert ok is False
    assert error.startswith("ConnectionRefusedError")


def test_get_notifier_falls_back_to_logging(monkeypatch) -> None:
    monkeypatch.setattr(notifier_module.settings, "SMTP_HOST", None)
    assert isinstance(get_notifier(), LoggingNotifier)

    monkeypatch.setattr(notifier_module.settings, "SMTP_HOST", "smtp.example.com")
    assert isinstance(get_notifier(), EmailNotifier)
