# coursestore/repos/purchase_repo.py
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from coursestore.data.models.purchase import PurchaseModel


class PurchaseRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_purchase(self, purchase: PurchaseModel) -> PurchaseModel:
        self.db.add(purchase)
        self.db.commit()
        self.db.refresh(purchase)
        return purchase

    def get_purchase(self, purchase_id: str) -> PurchaseModel | None:
        return self.db.get(PurchaseModel, purchase_id)

    def get_buyer_purchase(self, buyer_id: str, purchase_id: str) -> PurchaseModel | None:
        return self.db.execute(
            select(PurchaseModel).where(
                PurchaseModel.id == purchase_id,
                PurchaseModel.buyer_id == buyer_id,
            )
        ).scalar_one_or_none()

    def list_by_buyer(self, buyer_id: str, status: str | None = None) -> list[PurchaseModel]:
        query = select(PurchaseModel).where(PurchaseModel.buyer_id == buyer_id)
        if status:
            query = query.where(PurchaseModel.status == status)
        query = query.order_by(PurchaseModel.created_at.desc())
        return list(self.db.execute(query).scalars().all())

    def list_pending(self, paid_only: bool = True) -> list[PurchaseModel]:
        query = select(PurchaseModel).where(PurchaseModel.status == "pending")
        if paid_only:
            query = query.where(PurchaseModel.paid_at.is_not(None))
        query = query.order_by(PurchaseModel.paid_at.asc(), PurchaseModel.created_at.asc())
        return list(self.db.execute(query).scalars().all())

    def list_stalled(self, started_before: datetime) -> list[PurchaseModel]:
        query = (
            select(PurchaseModel)
            .where(
                PurchaseModel.status == "processing",
                PurchaseModel.processing_started_at < started_before,
            )
            .order_by(PurchaseModel.processing_started_at.asc())
        )
        return list(self.db.execute(query).scalars().all())

    def update_purchase(self, purchase: PurchaseModel, new_data: dict) -> PurchaseModel:
        for field, value in new_data.items():
            setattr(purchase, field, value)
        self.db.commit()
        self.db.refresh(purchase)
        return purchase

    def update_status_if(self, purchase_id: str, old_status: str, new_data: dict) -> int:
        # compare-and-swap: UPDATE purchases SET ... WHERE id = :id AND status = :old
        result = self.db.execute(
            update(PurchaseModel)
            .where(PurchaseModel.id == purchase_id, PurchaseModel.status == old_status)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def refresh(self, purchase: PurchaseModel) -> PurchaseModel:
        self.db.refresh(purchase)
        return purchase

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
