# coursestore/celery_worker.py
from celery import Celery

from coursestore.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery(
    "coursestore",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks must be imported explicitly so Celery registers them
celery_app.conf.imports = (
    "coursestore.tasks.fulfillment",
    "coursestore.tasks.expire",
)

celery_app.conf.beat_schedule = {
    "fulfill-pending-purchases-every-minute": {
        "task": "coursestore.tasks.fulfillment.fulfill_pending_purchases_task",
        "schedule": 60.0,
    },
    "expire-entitlements-every-hour": {
        "task": "coursestore.tasks.expire.expire_entitlements_task",
        "schedule": 60.0 * 60,
    },
}

celery_app.conf.timezone = "UTC"
