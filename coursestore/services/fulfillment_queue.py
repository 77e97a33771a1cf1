# coursestore/services/fulfillment_queue.py
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


class FulfillmentQueue:
    """
    Hands paid purchases over to the fulfillment worker.
    Uses Celery so the webhook returns without waiting for entitlements.
    """

    @staticmethod
    def enqueue(purchase_id: str):
        from coursestore.tasks.fulfillment import fulfill_purchase_task

        logger.info(f"Queueing fulfillment for purchase {purchase_id}")
        fulfill_purchase_task.delay(purchase_id)
