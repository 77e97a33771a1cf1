# coursestore/tasks/fulfillment.py
from coursestore.celery_worker import celery_app
from coursestore.data.database import SessionLocal
from coursestore.services.fulfillment_service import FulfillmentService
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="coursestore.tasks.fulfillment.fulfill_purchase_task")
def fulfill_purchase_task(purchase_id: str):
    logger.info(f"Fulfillment task started for purchase {purchase_id}")

    db = SessionLocal()
    try:
        purchase = FulfillmentService(db).fulfill(purchase_id)
        return {"purchase_id": purchase.id, "status": purchase.status}
    finally:
        db.close()


@celery_app.task(name="coursestore.tasks.fulfillment.fulfill_pending_purchases_task")
def fulfill_pending_purchases_task():
    logger.info("Fulfillment sweep started")

    db = SessionLocal()
    try:
        handled = FulfillmentService(db).fulfill_pending()
        logger.info(f"Fulfillment sweep handled {handled} purchases")
        return handled
    finally:
        db.close()
