# coursestore/api/__init__.py
from coursestore.api.routers import access, carts, checkout, health, purchases, webhooks

ROUTERS = (
    health.router,
    carts.router,
    checkout.router,
    webhooks.router,
    access.router,
    purchases.router,
)
