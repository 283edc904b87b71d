"""
Epoch Crank Data Models - Entity state and tracker requests.

Entities and trackers live on the remote ledger. These types only carry
what the lifecycle needs to decide and request mutations.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class TrackerOperation(Enum):
    """Remote tracker mutations the crank requests."""
    INITIALIZE = "initialize"
    CLOSE = "close"


class Commitment(Enum):
    """Ledger commitment levels, weakest first."""
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return list(Commitment).index(self)

    def is_reached_by(self, status: Optional[str]) -> bool:
        """Check whether a reported confirmation status satisfies this level."""
        if status is None:
            return False
        try:
            return Commitment(status).rank >= self.rank
        except ValueError:
            return False


@dataclass(frozen=True)
class EntityState:
    """On-record state of a tracked entity."""
    address: str
    last_full_update_slot: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "last_full_update_slot": self.last_full_update_slot,
        }


@dataclass(frozen=True)
class TrackerInstruction:
    """A request to open or close one entity's tracker for one epoch."""
    operation: TrackerOperation
    address: str
    epoch: int
    payer: str
    vault_program_id: str
    restaking_program_id: str
    config_address: str
    group_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "address": self.address,
            "epoch": self.epoch,
            "payer": self.payer,
            "vault_program_id": self.vault_program_id,
            "restaking_program_id": self.restaking_program_id,
            "config_address": self.config_address,
            "group_id": self.group_id,
        }
