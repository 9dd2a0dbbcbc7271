"""
Access policy: which roles may invoke which ledger operations.

The whole permission matrix lives in one static table so it can be reviewed
and tested on its own. Every lifecycle operation calls require() before it
touches the store.
"""

from enum import Enum

from .errors import Forbidden
from .models import Actor, Role


class Operation(str, Enum):
    """Operations guarded by the access policy."""
    RECORD_DONATION = "record_donation"
    VERIFY_DONATION = "verify_donation"
    SET_ALLOCATION_STATUS = "set_allocation_status"
    RECORD_DISBURSEMENT = "record_disbursement"
    ATTACH_DOCUMENT = "attach_document"
    READ_AUDIT_LOG = "read_audit_log"
    CREATE_CAMPAIGN = "create_campaign"
    CREATE_RECEIVER = "create_receiver"
    RECONCILE_BALANCES = "reconcile_balances"


POLICY: dict[Role, frozenset[Operation]] = {
    Role.DONOR: frozenset({
        Operation.RECORD_DONATION,
    }),
    Role.OPERATOR: frozenset({
        Operation.VERIFY_DONATION,
        Operation.SET_ALLOCATION_STATUS,
        Operation.CREATE_CAMPAIGN,
    }),
    Role.ACCOUNTANT: frozenset({
        Operation.SET_ALLOCATION_STATUS,
        Operation.RECORD_DISBURSEMENT,
        Operation.ATTACH_DOCUMENT,
        Operation.CREATE_RECEIVER,
        Operation.RECONCILE_BALANCES,
    }),
    Role.AUDITOR: frozenset({
        Operation.READ_AUDIT_LOG,
        Operation.RECONCILE_BALANCES,
    }),
    Role.ADMIN: frozenset(Operation),
}


def allowed(role: Role, operation: Operation) -> bool:
    """Return True if ``role`` may invoke ``operation``."""
    return operation in POLICY.get(role, frozenset())


def require(actor: Actor, operation: Operation) -> None:
    """
    Raise Forbidden unless the actor's role permits the operation.

    The message deliberately carries no information about the target entity.
    """
    if not allowed(actor.role, operation):
        raise Forbidden(f"Role {actor.role.value} may not {operation.value}")
