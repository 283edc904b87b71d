"""
Tracker Lifecycle Driver - Decides which trackers are due and requests them.

Holds no state between calls. Partial failure is not tracked here: a
failed initialize or close fails the whole call and the orchestration
loop recomputes the due set from the ledger on its next attempt.
"""

import logging
from typing import Iterable, Mapping

from .clock import epoch_for_slot
from .exceptions import (
    CrankError,
    SubmitFailedError,
    TrackerAlreadyExistsError,
    TrackerMissingError,
)
from .models import EntityState, TrackerInstruction, TrackerOperation
from .rpc import SolanaRpcClient
from .signer import TransactionSigner


logger = logging.getLogger(__name__)


def select_due(
    states: Mapping[str, EntityState],
    epoch_length: int,
    target_epoch: int,
) -> frozenset[str]:
    """
    Entities that need a tracker for target_epoch.

    The marker is a slot, so it goes through the same floor division as
    the clock before it is compared with the epoch.
    """
    return frozenset(
        address
        for address, state in states.items()
        if epoch_for_slot(state.last_full_update_slot, epoch_length) != target_epoch
    )


class TrackerLifecycleDriver:
    """Submits initialize and close requests, one transaction per entity."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        signer: TransactionSigner,
        payer: str,
        vault_program_id: str,
        restaking_program_id: str,
        config_address: str,
        group_id: str,
    ) -> None:
        self.rpc = rpc
        self.signer = signer
        self.payer = payer
        self.vault_program_id = vault_program_id
        self.restaking_program_id = restaking_program_id
        self.config_address = config_address
        self.group_id = group_id

    def _instruction(
        self,
        operation: TrackerOperation,
        address: str,
        epoch: int,
    ) -> TrackerInstruction:
        return TrackerInstruction(
            operation=operation,
            address=address,
            epoch=epoch,
            payer=self.payer,
            vault_program_id=self.vault_program_id,
            restaking_program_id=self.restaking_program_id,
            config_address=self.config_address,
            group_id=self.group_id,
        )

    async def initialize(self, addresses: Iterable[str], epoch: int) -> None:
        """
        Open a tracker for epoch on every address.

        A tracker that already exists counts as opened.

        Raises:
            SubmitFailedError: if any submission failed
        """
        await self._submit_all(TrackerOperation.INITIALIZE, addresses, epoch)

    async def close(self, addresses: Iterable[str], epoch: int) -> None:
        """
        Close the epoch's tracker on every address.

        A tracker that no longer exists counts as closed.

        Raises:
            SubmitFailedError: if any submission failed
        """
        await self._submit_all(TrackerOperation.CLOSE, addresses, epoch)

    async def _submit_all(
        self,
        operation: TrackerOperation,
        addresses: Iterable[str],
        epoch: int,
    ) -> None:
        ordered = sorted(addresses)
        failures: list[SubmitFailedError] = []

        for address in ordered:
            try:
                await self._submit(operation, address, epoch)
            except SubmitFailedError as e:
                logger.warning(str(e))
                failures.append(e)

        if failures:
            first = failures[0]
            first.details["failed"] = len(failures)
            first.details["total"] = len(ordered)
            raise first

        if ordered:
            logger.info(
                f"{operation.value} succeeded for {len(ordered)} trackers at epoch {epoch}"
            )

    async def _submit(
        self,
        operation: TrackerOperation,
        address: str,
        epoch: int,
    ) -> None:
        instruction = self._instruction(operation, address, epoch)

        try:
            transaction = await self.signer.sign(instruction)
            signature = await self.rpc.send_and_confirm(transaction)
        except TrackerAlreadyExistsError:
            if operation is not TrackerOperation.INITIALIZE:
                raise SubmitFailedError(
                    operation.value, address, epoch, "tracker already exists"
                )
            logger.info(f"Tracker for {address} at epoch {epoch} already initialized")
            return
        except TrackerMissingError:
            if operation is not TrackerOperation.CLOSE:
                raise SubmitFailedError(
                    operation.value, address, epoch, "tracker account missing"
                )
            logger.info(f"Tracker for {address} at epoch {epoch} already closed")
            return
        except (CrankError, ValueError) as e:
            raise SubmitFailedError(operation.value, address, epoch, str(e)) from e

        logger.debug(f"{operation.value} {address} epoch={epoch} signature={signature}")
