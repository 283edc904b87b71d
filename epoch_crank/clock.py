"""
Epoch Clock - Current epoch derived from the ledger slot.

epoch = slot // epoch_length
"""

import logging
from dataclasses import dataclass

from .exceptions import ClockUnavailableError, RPCError
from .rpc import SolanaRpcClient


logger = logging.getLogger(__name__)


def epoch_for_slot(slot: int, epoch_length: int) -> int:
    """Floor-divide a slot into its epoch."""
    if epoch_length <= 0:
        raise ValueError(f"epoch_length must be positive, got {epoch_length}")
    return slot // epoch_length


@dataclass(frozen=True)
class EpochReading:
    """A slot observation and the epoch it falls in."""
    slot: int
    epoch: int


class EpochClock:
    """Clock source reading the slot from the remote ledger."""

    def __init__(self, rpc: SolanaRpcClient, epoch_length: int) -> None:
        if epoch_length <= 0:
            raise ValueError(f"epoch_length must be positive, got {epoch_length}")
        self.rpc = rpc
        self.epoch_length = epoch_length

    async def read(self) -> EpochReading:
        """
        Fetch the current slot and compute its epoch.

        Raises:
            ClockUnavailableError: if the slot cannot be fetched
        """
        try:
            slot = await self.rpc.get_slot()
        except RPCError as e:
            raise ClockUnavailableError(f"Failed to get slot: {e}") from e

        return EpochReading(slot=slot, epoch=epoch_for_slot(slot, self.epoch_length))

    async def current_epoch(self) -> int:
        return (await self.read()).epoch
