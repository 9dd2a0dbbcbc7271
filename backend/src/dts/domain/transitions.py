"""
Allocation state machine.

Pure functions over AllocationStatus; nothing here touches storage.

    pending  --approve-->  approved --disburse--> disbursed   (terminal)
    pending  --reject-->   rejected                           (terminal)
    approved --revert-->   pending

Design Decisions:
- Manual status changes and disbursement are separate edges; the status
  endpoint can never reach or leave ``disbursed``
- A same-status request is an invalid transition, not a silent no-op
"""

from .errors import InvalidTransition, ValidationFailed
from .models import AllocationStatus

# Edges reachable through set_allocation_status
MANUAL_TRANSITIONS: dict[AllocationStatus, frozenset[AllocationStatus]] = {
    AllocationStatus.PENDING: frozenset({AllocationStatus.APPROVED, AllocationStatus.REJECTED}),
    AllocationStatus.APPROVED: frozenset({AllocationStatus.PENDING}),
    AllocationStatus.REJECTED: frozenset(),
    AllocationStatus.DISBURSED: frozenset(),
}

TERMINAL_STATUSES = frozenset({AllocationStatus.REJECTED, AllocationStatus.DISBURSED})


def parse_status(value: str | AllocationStatus | None) -> AllocationStatus:
    """
    Coerce a caller-supplied status.

    A missing status is a validation failure; a status that does not exist
    is treated as a request for an illegal transition.
    """
    if isinstance(value, AllocationStatus):
        return value
    if value is None or not str(value).strip():
        raise ValidationFailed("Status is required")
    try:
        return AllocationStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in AllocationStatus)
        raise InvalidTransition(f"Unknown status: {value!r}. Allowed: {allowed}") from None


def can_transition(current: AllocationStatus, target: AllocationStatus) -> bool:
    return target in MANUAL_TRANSITIONS[current]


def check_transition(current: AllocationStatus, target: AllocationStatus) -> None:
    """
    Raise InvalidTransition unless ``current -> target`` is a legal manual edge.
    """
    if can_transition(current, target):
        return
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"Allocation is {current.value}; no further status changes are allowed")
    raise InvalidTransition(f"Cannot change allocation status from {current.value} to {target.value}")


def check_disbursable(current: AllocationStatus) -> None:
    """Only approved allocations can be disbursed."""
    if current is not AllocationStatus.APPROVED:
        raise InvalidTransition(
            f"Allocation must be approved before disbursement (current status: {current.value})"
        )
