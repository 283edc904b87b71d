"""
Entity Directory - Membership of a group from the on-chain registry.

A failed listing after bootstrap falls back to the last known membership.
The fallback is reported in the result so callers and tests can see it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .exceptions import DirectoryUnavailableError, RPCError
from .records import ADDRESS_LENGTH, RecordLayout
from .rpc import SolanaRpcClient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryResult:
    """Membership returned by the directory."""
    entities: frozenset[str]
    stale: bool = False
    error: Optional[DirectoryUnavailableError] = None


class EntityDirectory:
    """Lists the entity addresses registered with a group."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        registry_program_id: str,
        layout: RecordLayout,
    ) -> None:
        self.rpc = rpc
        self.registry_program_id = registry_program_id
        self.layout = layout

    async def fetch(self, group_id: str) -> frozenset[str]:
        """
        Fetch current membership.

        Raises:
            DirectoryUnavailableError: if the registry cannot be read
        """
        filters = [
            {"memcmp": {"offset": self.layout.registry_group_offset, "bytes": group_id}},
        ]
        try:
            members = await self.rpc.get_program_account_slices(
                self.registry_program_id,
                filters,
                offset=self.layout.registry_member_offset,
                length=ADDRESS_LENGTH,
            )
        except RPCError as e:
            raise DirectoryUnavailableError(group_id, str(e)) from e

        return frozenset(members)

    async def list_entities(
        self,
        group_id: str,
        previous: Optional[frozenset[str]] = None,
    ) -> DirectoryResult:
        """
        List membership, falling back to previous on failure.

        Without a previous membership (bootstrap) the failure propagates.
        """
        try:
            entities = await self.fetch(group_id)
        except DirectoryUnavailableError as e:
            if previous is None:
                raise
            logger.warning(
                f"Directory unavailable, reusing {len(previous)} known entities: {e.reason}"
            )
            return DirectoryResult(entities=previous, stale=True, error=e)

        logger.debug(f"Directory listed {len(entities)} entities for group {group_id}")
        return DirectoryResult(entities=entities)
