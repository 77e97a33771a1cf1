# coursestore/services/access_service.py
import math
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List

from sqlalchemy.orm import Session

from coursestore.data.models.entitlement import EntitlementModel
from coursestore.domain.schemas import AccessInfo, AccessType
from coursestore.repos.entitlement_repo import EntitlementRepo
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def days_until_expiry(expires_at: datetime, now: datetime) -> int:
    """Whole days left, rounded up. Negative when already expired."""
    return math.ceil((expires_at - now).total_seconds() / SECONDS_PER_DAY)


class AccessService:
    """
    Decides whether a buyer may consume a course.

    Direct course entitlements win over bundle ones. Bundle coverage is read
    from the course id snapshot stored on the entitlement, never from the
    current bundle contents.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.repo = EntitlementRepo(db)
        self.clock = clock

    def _info(self, entitlement: EntitlementModel, access_type: AccessType, now: datetime) -> AccessInfo:
        return AccessInfo(
            has_access=True,
            type=access_type,
            expires_at=entitlement.expires_at,
            days_until_expiry=max(0, days_until_expiry(entitlement.expires_at, now)),
            entitlement_id=entitlement.id,
            bundle_id=entitlement.target_id if access_type == AccessType.BUNDLE else None,
            purchase_id=entitlement.purchase_id,
        )

    #query
    def check_access(self, buyer_id: str, course_id: str) -> AccessInfo:
        now = self.clock()

        direct = self.repo.find_active_direct(buyer_id, course_id, now)
        if direct:
            return self._info(direct, AccessType.DIRECT, now)

        for entitlement in self.repo.list_active(buyer_id, now, grant_type="bundle"):
            if course_id in (entitlement.bundle_course_ids or []):
                return self._info(entitlement, AccessType.BUNDLE, now)

        return AccessInfo.none()

    def check_multiple_access(self, buyer_id: str, course_ids: Iterable[str]) -> Dict[str, AccessInfo]:
        results: Dict[str, AccessInfo] = {}

        for course_id in course_ids:
            try:
                results[course_id] = self.check_access(buyer_id, course_id)
            except Exception as e:
                # one failed lookup only degrades that course
                logger.error(f"Access check failed for buyer {buyer_id}, course {course_id}: {e}")
                self.db.rollback()
                results[course_id] = AccessInfo.none()

        return results

    def owns_bundle(self, buyer_id: str, bundle_id: str) -> bool:
        now = self.clock()
        return any(
            e.target_id == bundle_id
            for e in self.repo.list_active(buyer_id, now, grant_type="bundle")
        )

    def owned_course_ids(self, buyer_id: str) -> List[str]:
        now = self.clock()
        owned: list[str] = []

        for entitlement in self.repo.list_active(buyer_id, now):
            if entitlement.grant_type == "course":
                candidates = [entitlement.target_id]
            else:
                candidates = entitlement.bundle_course_ids or []
            for course_id in candidates:
                if course_id not in owned:
                    owned.append(course_id)

        return owned
