# coursestore/tasks/expire.py
from coursestore.celery_worker import celery_app
from coursestore.data.database import SessionLocal
from coursestore.services.ledger_service import LedgerService
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="coursestore.tasks.expire.expire_entitlements_task")
def expire_entitlements_task():
    logger.info("Expire entitlements task started")

    db = SessionLocal()
    try:
        count = LedgerService(db).deactivate_lapsed()
        logger.info(f"Deactivated {count} lapsed entitlements")
        return count
    finally:
        db.close()
