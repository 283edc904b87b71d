"""
Epoch Crank - Orchestration Loop.

============================================================
RESPONSIBILITY
============================================================
Drives the tracker lifecycle on a fixed cadence.

- Bootstraps: reads the group, opens trackers for the current epoch
- Each tick: reads the epoch, and on a change (or a pending retry)
  closes the previous epoch's trackers and opens the new ones
- Owns the only long-lived state: LoopState

============================================================
FAILURE POLICY
============================================================
- Bootstrap failures are fatal
- Clock or fetch failures abort the tick only
- Close failures are retried on later ticks, up to max_close_attempts
- Initialize failure after a successful close is fatal

============================================================
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

from .clock import EpochClock, EpochReading
from .config import CrankConfig
from .directory import EntityDirectory
from .driver import TrackerLifecycleDriver, select_due
from .exceptions import (
    BootstrapError,
    ClockUnavailableError,
    CloseRetriesExhaustedError,
    CrankError,
    DirectoryUnavailableError,
    FatalTransitionError,
    FetchFailedError,
    RecordDecodeError,
    RPCError,
    SubmitFailedError,
)
from .fetcher import EntityStateFetcher
from .records import decode_epoch_length
from .rpc import SolanaRpcClient
from .signer import RemoteSigner, TransactionSigner
from .state_machine import MAX_CLOSE_ATTEMPTS, LoopState


logger = logging.getLogger(__name__)


class TickOutcome(Enum):
    """What a single tick did."""
    IDLE = "idle"
    TRANSITIONED = "transitioned"
    CLOSE_FAILED = "close_failed"
    ABORTED = "aborted"


class CrankLoop:
    """
    Epoch transition loop.

    Usage:
        crank = await create_crank(config)
        try:
            await crank.run_forever()
        finally:
            await crank.close()
    """

    def __init__(
        self,
        clock: EpochClock,
        directory: EntityDirectory,
        fetcher: EntityStateFetcher,
        driver: TrackerLifecycleDriver,
        group_id: str,
        tick_interval_seconds: float = 3600,
        max_close_attempts: int = MAX_CLOSE_ATTEMPTS,
    ) -> None:
        self.clock = clock
        self.directory = directory
        self.fetcher = fetcher
        self.driver = driver
        self.group_id = group_id
        self.tick_interval_seconds = tick_interval_seconds
        self.max_close_attempts = max_close_attempts

        self.state: Optional[LoopState] = None

        self._stats = {
            "ticks": 0,
            "transitions": 0,
            "close_failures": 0,
            "aborted_ticks": 0,
            "stale_directory_reads": 0,
        }

    @property
    def epoch_length(self) -> int:
        return self.clock.epoch_length

    # --------------------------------------------------------
    # Bootstrap
    # --------------------------------------------------------

    async def bootstrap(self) -> LoopState:
        """
        Establish the initial state and open trackers for the current epoch.

        Raises:
            BootstrapError: on any failure; there is no state to fall back to
        """
        try:
            result = await self.directory.list_entities(self.group_id)
            if not result.entities:
                raise BootstrapError(f"No entities registered for group {self.group_id}")

            states = await self.fetcher.fetch_states(result.entities)
            reading = await self.clock.read()

            due = select_due(states, self.epoch_length, reading.epoch)
            logger.info(
                f"Bootstrap: slot={reading.slot} epoch={reading.epoch} "
                f"entities={len(result.entities)} due={len(due)}"
            )
            await self.driver.initialize(due, reading.epoch)

        except BootstrapError:
            raise
        except (
            DirectoryUnavailableError,
            FetchFailedError,
            ClockUnavailableError,
            SubmitFailedError,
        ) as e:
            raise BootstrapError(f"Bootstrap failed: {e}", details=e.to_dict()) from e

        self.state = LoopState(
            last_epoch=reading.epoch,
            known_entities=result.entities,
            max_close_attempts=self.max_close_attempts,
        )
        return self.state

    # --------------------------------------------------------
    # Tick
    # --------------------------------------------------------

    async def tick(self) -> TickOutcome:
        """
        Run one tick.

        Raises:
            CloseRetriesExhaustedError: when the close attempt bound is hit
            FatalTransitionError: when initialize fails after a close
        """
        if self.state is None:
            raise BootstrapError("tick() called before bootstrap()")

        state = self.state
        self._stats["ticks"] += 1

        try:
            reading = await self.clock.read()
        except ClockUnavailableError as e:
            logger.error(f"Tick aborted: {e}")
            self._stats["aborted_ticks"] += 1
            return TickOutcome.ABORTED

        logger.info(
            f"Slot: {reading.slot}, Current Epoch: {reading.epoch}, "
            f"Last Epoch: {state.last_epoch}"
        )

        if not state.needs_transition(reading.epoch):
            return TickOutcome.IDLE

        state.begin(reading.epoch)

        try:
            due = await self._due_entities(reading)
        except FetchFailedError as e:
            state.abort()
            logger.error(f"Tick aborted: {e}")
            self._stats["aborted_ticks"] += 1
            return TickOutcome.ABORTED

        logger.info(
            f"Transition {state.last_epoch} -> {reading.epoch}: "
            f"{len(due)} due entities (attempt {state.attempt_count + 1})"
        )

        try:
            await self.driver.close(due, state.last_epoch)
        except SubmitFailedError as e:
            attempts = state.record_close_failure()
            self._stats["close_failures"] += 1

            if state.retries_exhausted:
                logger.error("Error: Failed to close tracker")
                raise CloseRetriesExhaustedError(state.last_epoch, attempts, e) from e

            logger.warning(
                f"Close failed for epoch {state.last_epoch} "
                f"(attempt {attempts}/{state.max_close_attempts}): {e}"
            )
            return TickOutcome.CLOSE_FAILED

        try:
            await self.driver.initialize(due, reading.epoch)
        except SubmitFailedError as e:
            logger.critical(f"Initialize failed after close: {e}")
            raise FatalTransitionError(state.last_epoch, reading.epoch, e) from e

        state.complete(reading.epoch)
        self._stats["transitions"] += 1
        return TickOutcome.TRANSITIONED

    async def _due_entities(self, reading: EpochReading) -> frozenset[str]:
        """Recompute the due set against the observed epoch."""
        state = self.state
        result = await self.directory.list_entities(
            self.group_id, previous=state.known_entities
        )
        if result.stale:
            self._stats["stale_directory_reads"] += 1
        state.known_entities = result.entities

        states = await self.fetcher.fetch_states(result.entities)
        return select_due(states, self.epoch_length, reading.epoch)

    # --------------------------------------------------------
    # Main Loop
    # --------------------------------------------------------

    async def run_forever(self, max_ticks: Optional[int] = None) -> None:
        """
        Bootstrap if needed, then tick every tick_interval_seconds.

        Returns only after max_ticks ticks; fatal errors propagate.
        """
        if self.state is None:
            await self.bootstrap()

        logger.info(
            f"Starting main loop | interval={self.tick_interval_seconds}s "
            f"epoch_length={self.epoch_length}"
        )

        ticks = 0
        while True:
            outcome = await self.tick()
            logger.debug(f"Tick outcome: {outcome.value}")

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                logger.info(f"Stopping after {ticks} ticks")
                return

            # ---------- SLEEP ----------
            await asyncio.sleep(self.tick_interval_seconds)

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "state": self.state.to_dict() if self.state else None,
        }

    async def close(self) -> None:
        """Cleanup resources."""
        await self.driver.signer.close()
        await self.driver.rpc.close()


# ============================================================
# FACTORY
# ============================================================

async def read_epoch_length(rpc: SolanaRpcClient, config: CrankConfig) -> int:
    """
    Read epoch_length from the configuration account.

    Raises:
        BootstrapError: if the account is missing or unreadable
    """
    try:
        data = await rpc.get_account_data(config.config_address)
    except RPCError as e:
        raise BootstrapError(f"Failed to read config account: {e}") from e

    if data is None:
        raise BootstrapError(f"Config account {config.config_address} not found")

    try:
        return decode_epoch_length(
            data, config.layout, config.config_address
        )
    except RecordDecodeError as e:
        raise BootstrapError(f"Failed to decode config account: {e}") from e


async def create_crank(
    config: CrankConfig,
    signer: Optional[TransactionSigner] = None,
    rpc: Optional[SolanaRpcClient] = None,
) -> CrankLoop:
    """
    Wire a CrankLoop from configuration.

    Reads epoch_length once; it is fixed for the life of the process.
    """
    rpc = rpc or SolanaRpcClient(
        config.rpc_url,
        timeout_seconds=config.rpc_timeout_seconds,
        commitment=config.commitment,
        confirm_timeout_seconds=config.confirm_timeout_seconds,
        confirm_poll_seconds=config.confirm_poll_seconds,
    )
    signer = signer or RemoteSigner(
        config.signer_url,
        token=config.signer_token,
        timeout_seconds=config.rpc_timeout_seconds,
    )

    try:
        epoch_length = await read_epoch_length(rpc, config)
    except CrankError:
        await signer.close()
        await rpc.close()
        raise
    logger.info(f"Epoch length: {epoch_length} slots")

    driver = TrackerLifecycleDriver(
        rpc,
        signer,
        payer=config.payer,
        vault_program_id=config.vault_program_id,
        restaking_program_id=config.restaking_program_id,
        config_address=config.config_address,
        group_id=config.group_id,
    )

    return CrankLoop(
        clock=EpochClock(rpc, epoch_length),
        directory=EntityDirectory(rpc, config.restaking_program_id, config.layout),
        fetcher=EntityStateFetcher(rpc, config.layout),
        driver=driver,
        group_id=config.group_id,
        tick_interval_seconds=config.tick_interval_seconds,
        max_close_attempts=config.max_close_attempts,
    )
