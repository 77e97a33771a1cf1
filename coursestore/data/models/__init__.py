# import of all models so SQLAlchemy registers them on Base.metadata

from coursestore.data.models.cart import CartModel
from coursestore.data.models.purchase import PurchaseModel
from coursestore.data.models.entitlement import EntitlementModel

__all__ = ["CartModel", "PurchaseModel", "EntitlementModel"]
