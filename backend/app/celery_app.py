"""
Celery worker and beat schedule for the periodic notification sweeps.
"""
from celery import Celery
from celery.schedules import crontab
from datetime import date
import logging
from .config import settings
from .database import SessionLocal
from .services.notifier import get_notifier
from .services.order_stats import utc_today
from .services.sweeps import expired_tasks_sweep, urgent_deadline_sweep

logger = logging.getLogger(__name__)

celery_app = Celery(
    "production_orders",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
)


def _today() -> date:
    return utc_today()


@celery_app.task(name="expired_tasks_sweep")
def run_expired_tasks_sweep():
    """Notify creators and assignees about pending tasks past their expected end date."""
    db = SessionLocal()
    try:
        sent = expired_tasks_sweep(db, get_notifier(), _today())
    except Exception:
        logger.exception("Expired tasks sweep failed")
        raise
    finally:
        db.close()
    return {"notifications_sent": sent}


@celery_app.task(name="urgent_deadline_sweep")
def run_urgent_deadline_sweep():
    """Remind creators and assignees about urgent orders due within the reminder window."""
    db = SessionLocal()
    try:
        sent = urgent_deadline_sweep(db, get_notifier(), _today())
    except Exception:
        logger.exception("Urgent deadline sweep failed")
        raise
    finally:
        db.close()
    return {"notifications_sent": sent}


def build_beat_schedule() -> dict:
    hours = ",".join(str(hour) for hour in settings.urgent_deadline_sweep_hours)
    return {
        'expired-tasks-daily': {
            'task': 'expired_tasks_sweep',
            'schedule': crontab(minute=0, hour=settings.EXPIRED_TASKS_SWEEP_HOUR),
        },
        'urgent-deadline-reminders': {
            'task': 'urgent_deadline_sweep',
            'schedule': crontab(minute=0, hour=hours),
        },
    }


celery_app.conf.beat_schedule = build_beat_schedule()
