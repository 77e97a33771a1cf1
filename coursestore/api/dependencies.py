# coursestore/api/dependencies.py
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from coursestore.data.database import get_db
from coursestore.domain.errors import Unauthorized
from coursestore.services.access_service import AccessService
from coursestore.services.cart_service import CartService
from coursestore.services.checkout_service import CheckoutService
from coursestore.services.content_client import ContentClient
from coursestore.services.fulfillment_queue import FulfillmentQueue
from coursestore.services.ledger_service import LedgerService
from coursestore.services.lock_service import LockService
from coursestore.services.payment_client import PaymentClient


def get_buyer_id(x_buyer_id: str | None = Header(default=None, alias="X-Buyer-Id")) -> str:
    #identity is resolved by the auth gateway in front of us
    if not x_buyer_id or not x_buyer_id.strip():
        raise Unauthorized("Missing buyer identity")
    return x_buyer_id.strip()


# collaborators, overridden in tests
def get_content_client() -> ContentClient:
    return ContentClient()


def get_payment_client() -> PaymentClient:
    return PaymentClient()


def get_lock_service() -> LockService:
    return LockService()


def get_fulfillment_queue() -> FulfillmentQueue:
    return FulfillmentQueue()


def get_access_service(db: Session = Depends(get_db)) -> AccessService:
    return AccessService(db)


def get_cart_service(
    db: Session = Depends(get_db),
    content_client: ContentClient = Depends(get_content_client),
) -> CartService:
    return CartService(db=db, content_client=content_client)


def get_ledger_service(
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
) -> LedgerService:
    return LedgerService(db, payment_client=payment_client)


def get_checkout_service(
    db: Session = Depends(get_db),
    content_client: ContentClient = Depends(get_content_client),
    payment_client: PaymentClient = Depends(get_payment_client),
    lock_service: LockService = Depends(get_lock_service),
    fulfillment_queue: FulfillmentQueue = Depends(get_fulfillment_queue),
) -> CheckoutService:
    return CheckoutService(
        db=db,
        content_client=content_client,
        payment_client=payment_client,
        lock_service=lock_service,
        fulfillment_queue=fulfillment_queue,
    )
