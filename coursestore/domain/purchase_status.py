# coursestore/domain/purchase_status.py
from enum import Enum

from coursestore.domain.errors import InvalidTransition


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {PurchaseStatus.COMPLETED, PurchaseStatus.PARTIAL, PurchaseStatus.FAILED}
)

# forward only, nothing leaves a terminal state
_TRANSITIONS = {
    PurchaseStatus.PENDING: frozenset({PurchaseStatus.PROCESSING}),
    PurchaseStatus.PROCESSING: TERMINAL_STATUSES,
    PurchaseStatus.COMPLETED: frozenset(),
    PurchaseStatus.PARTIAL: frozenset(),
    PurchaseStatus.FAILED: frozenset(),
}


def can_transition(current: PurchaseStatus | str, target: PurchaseStatus | str) -> bool:
    current, target = PurchaseStatus(current), PurchaseStatus(target)
    return target in _TRANSITIONS[current]


def assert_transition(current: PurchaseStatus | str, target: PurchaseStatus | str) -> bool:
    """
    Validate a status change.

    Returns False when the purchase is already in the target state (redelivered
    event, nothing to do), True when the change should be applied, and raises
    InvalidTransition otherwise.
    """
    current, target = PurchaseStatus(current), PurchaseStatus(target)
    if current == target:
        return False
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Purchase cannot move from '{current.value}' to '{target.value}'"
        )
    return True


def is_terminal(status: PurchaseStatus | str) -> bool:
    return PurchaseStatus(status) in TERMINAL_STATUSES
