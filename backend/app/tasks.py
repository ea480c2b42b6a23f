import os
from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger

from .database import SessionLocal
from .services import checkouts

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

_logger = get_task_logger(__name__)

celery_app.conf.beat_schedule = {
    "checkouts-overdue-sweep": {
        "task": "app.tasks.mark_overdue_checkouts",
        "schedule": crontab(hour=int(os.getenv("OVERDUE_SWEEP_HOUR", "0")), minute=5),
    },
}


@celery_app.task(name="app.tasks.mark_overdue_checkouts")
def mark_overdue_checkouts() -> int:
    db = SessionLocal()
    try:
        updated = checkouts.run_overdue_sweep(db)
        db.commit()
    except Exception:
        db.rollback()
        _logger.exception("Overdue sweep failed")
        raise
    finally:
        db.close()
    _logger.info("Overdue sweep marked %d checkout(s) overdue", updated)
    return updated

