# coursestore/data/models/cart.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, JSON

from coursestore.data.database import Base
from coursestore.data.types import UtcDateTime


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    buyer_id = Column(String, nullable=False, unique=True, index=True)

    # lines and summary are always written together as one snapshot
    lines = Column(JSON, nullable=False, default=list)
    summary = Column(JSON, nullable=False, default=dict)

    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(
        UtcDateTime(),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
