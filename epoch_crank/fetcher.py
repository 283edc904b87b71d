"""
Entity State Fetcher - Bulk read of entity records.
"""

import logging
from typing import Iterable

from .exceptions import FetchFailedError, RecordDecodeError, RPCError
from .models import EntityState
from .records import RecordLayout, decode_entity_marker
from .rpc import SolanaRpcClient


logger = logging.getLogger(__name__)


class EntityStateFetcher:
    """Reads the last-full-update marker of each entity."""

    def __init__(self, rpc: SolanaRpcClient, layout: RecordLayout) -> None:
        self.rpc = rpc
        self.layout = layout

    async def fetch_states(self, addresses: Iterable[str]) -> dict[str, EntityState]:
        """
        Fetch states keyed by address.

        Entities without an account are absent from the result.

        Raises:
            FetchFailedError: if the bulk read or a record decode fails
        """
        ordered = sorted(set(addresses))
        if not ordered:
            return {}

        try:
            accounts = await self.rpc.get_multiple_accounts(ordered)
        except RPCError as e:
            raise FetchFailedError(f"Failed to fetch entity records: {e}") from e

        states: dict[str, EntityState] = {}
        for address, data in accounts.items():
            try:
                marker = decode_entity_marker(data, self.layout, address)
            except RecordDecodeError as e:
                raise FetchFailedError(
                    f"Failed to decode entity {address}: {e}",
                    details=e.details,
                ) from e
            states[address] = EntityState(address=address, last_full_update_slot=marker)

        missing = len(ordered) - len(states)
        if missing:
            logger.info(f"{missing} of {len(ordered)} entities have no record")

        return states
