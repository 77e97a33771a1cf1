# coursestore/repos/entitlement_repo.py
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from coursestore.data.models.entitlement import EntitlementModel


class EntitlementRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_entitlement(self, entitlement: EntitlementModel) -> EntitlementModel:
        self.db.add(entitlement)
        self.db.commit()
        self.db.refresh(entitlement)
        return entitlement

    def get_entitlement(self, entitlement_id: str) -> EntitlementModel | None:
        return self.db.get(EntitlementModel, entitlement_id)

    def _active(self, buyer_id: str, now: datetime):
        # strictly future expiry, expires_at == now is no longer active
        return select(EntitlementModel).where(
            EntitlementModel.buyer_id == buyer_id,
            EntitlementModel.is_active.is_(True),
            EntitlementModel.expires_at > now,
        )

    def find_active_direct(self, buyer_id: str, course_id: str, now: datetime) -> EntitlementModel | None:
        query = (
            self._active(buyer_id, now)
            .where(
                EntitlementModel.grant_type == "course",
                EntitlementModel.target_id == course_id,
            )
            .order_by(EntitlementModel.expires_at.desc())
        )
        return self.db.execute(query).scalars().first()

    def list_active(self, buyer_id: str, now: datetime, grant_type: str | None = None) -> list[EntitlementModel]:
        query = self._active(buyer_id, now)
        if grant_type:
            query = query.where(EntitlementModel.grant_type == grant_type)
        query = query.order_by(EntitlementModel.expires_at.asc(), EntitlementModel.granted_at.asc())
        return list(self.db.execute(query).scalars().all())

    def list_by_buyer(self, buyer_id: str) -> list[EntitlementModel]:
        query = (
            select(EntitlementModel)
            .where(EntitlementModel.buyer_id == buyer_id)
            .order_by(EntitlementModel.granted_at.desc())
        )
        return list(self.db.execute(query).scalars().all())

    def list_by_purchase(self, purchase_id: str) -> list[EntitlementModel]:
        query = select(EntitlementModel).where(EntitlementModel.purchase_id == purchase_id)
        return list(self.db.execute(query).scalars().all())

    def list_expiring(self, buyer_id: str, now: datetime, until: datetime) -> list[EntitlementModel]:
        query = (
            self._active(buyer_id, now)
            .where(EntitlementModel.expires_at <= until)
            .order_by(EntitlementModel.expires_at.asc())
        )
        return list(self.db.execute(query).scalars().all())

    def list_lapsed(self, now: datetime) -> list[EntitlementModel]:
        query = select(EntitlementModel).where(
            EntitlementModel.is_active.is_(True),
            EntitlementModel.expires_at <= now,
        )
        return list(self.db.execute(query).scalars().all())

    def update_entitlement(self, entitlement: EntitlementModel, new_data: dict) -> EntitlementModel:
        for field, value in new_data.items():
            setattr(entitlement, field, value)
        self.db.commit()
        self.db.refresh(entitlement)
        return entitlement
