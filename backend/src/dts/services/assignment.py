"""
Receiver assignment for newly recorded donations.

Every donation gets exactly one allocation, and that allocation must be bound
to a receiver at creation time. The rule is deterministic and configurable:
the same ledger history always yields the same receiver.
"""

import logging
from abc import ABC, abstractmethod

from dts.domain.errors import ValidationFailed
from dts.infrastructure.database import ReceiverRecord
from dts.infrastructure.store import LedgerSession

logger = logging.getLogger(__name__)


class ReceiverAssigner(ABC):
    """Chooses the receiver for a new allocation."""

    name: str

    @abstractmethod
    async def choose(self, ledger: LedgerSession) -> ReceiverRecord:
        """Return the receiver for the next allocation."""
        pass

    async def _candidates(self, ledger: LedgerSession) -> list[ReceiverRecord]:
        receivers = list(await ledger.receivers())
        if not receivers:
            raise ValidationFailed("No receiver is registered to allocate the donation to")
        return receivers


class RoundRobinAssigner(ReceiverAssigner):
    """
    Cycle through receivers in id order.

    The position in the cycle is the number of allocations already recorded,
    so the rotation survives restarts without any extra state.
    """

    name = "round_robin"

    async def choose(self, ledger: LedgerSession) -> ReceiverRecord:
        receivers = await self._candidates(ledger)
        position = await ledger.count_allocations()
        return receivers[position % len(receivers)]


class LeastLoadedAssigner(ReceiverAssigner):
    """Pick the receiver with the fewest pending or approved allocations; ties go to the lowest id."""

    name = "least_loaded"

    async def choose(self, ledger: LedgerSession) -> ReceiverRecord:
        receivers = await self._candidates(ledger)
        counts = await ledger.open_allocation_counts()
        return min(receivers, key=lambda r: (counts.get(r.id, 0), r.id))


ASSIGNERS: dict[str, type[ReceiverAssigner]] = {
    RoundRobinAssigner.name: RoundRobinAssigner,
    LeastLoadedAssigner.name: LeastLoadedAssigner,
}


def make_assigner(name: str) -> ReceiverAssigner:
    """Build the assigner configured by name."""
    try:
        return ASSIGNERS[name]()
    except KeyError:
        raise ValueError(f"Unknown receiver assignment policy: {name}") from None
