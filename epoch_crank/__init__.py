"""
Epoch Crank - Per-epoch state tracker lifecycle.

Keeps exactly one open state tracker per entity per epoch: when the ledger
epoch advances, the previous epoch's trackers are closed and new ones are
opened for every entity that has not been fully updated for the new epoch.

Usage:
    from epoch_crank import CrankConfig, create_crank

    config = CrankConfig.from_env()
    crank = await create_crank(config)
    try:
        await crank.run_forever()
    finally:
        await crank.close()

Failure policy:
- Bootstrap failures are fatal
- Close failures are retried once per tick, up to 9 attempts
- Initialize failure after a successful close is fatal
"""

from .clock import EpochClock, EpochReading, epoch_for_slot
from .config import CrankConfig, get_config, set_config
from .directory import DirectoryResult, EntityDirectory
from .driver import TrackerLifecycleDriver, select_due
from .exceptions import (
    BootstrapError,
    ClockUnavailableError,
    CloseRetriesExhaustedError,
    ConfigurationError,
    CrankError,
    DirectoryUnavailableError,
    FatalTransitionError,
    FetchFailedError,
    InvalidTransitionError,
    RateLimitError,
    RecordDecodeError,
    RPCError,
    SignerError,
    SubmitFailedError,
    TrackerAlreadyExistsError,
    TrackerMissingError,
)
from .fetcher import EntityStateFetcher
from .loop import CrankLoop, TickOutcome, create_crank, read_epoch_length
from .models import Commitment, EntityState, TrackerInstruction, TrackerOperation
from .records import RecordLayout, read_u64
from .rpc import SolanaRpcClient
from .signer import RemoteSigner, TransactionSigner
from .state_machine import MAX_CLOSE_ATTEMPTS, LoopState, TransitionPhase


__all__ = [
    # Loop
    "CrankLoop",
    "TickOutcome",
    "create_crank",
    "read_epoch_length",

    # Components
    "EpochClock",
    "EpochReading",
    "epoch_for_slot",
    "EntityDirectory",
    "DirectoryResult",
    "EntityStateFetcher",
    "TrackerLifecycleDriver",
    "select_due",
    "SolanaRpcClient",
    "TransactionSigner",
    "RemoteSigner",

    # State machine
    "LoopState",
    "TransitionPhase",
    "MAX_CLOSE_ATTEMPTS",

    # Models
    "Commitment",
    "EntityState",
    "TrackerInstruction",
    "TrackerOperation",
    "RecordLayout",
    "read_u64",

    # Config
    "CrankConfig",
    "get_config",
    "set_config",

    # Exceptions
    "CrankError",
    "ConfigurationError",
    "RPCError",
    "RateLimitError",
    "ClockUnavailableError",
    "DirectoryUnavailableError",
    "FetchFailedError",
    "RecordDecodeError",
    "SignerError",
    "SubmitFailedError",
    "TrackerAlreadyExistsError",
    "TrackerMissingError",
    "BootstrapError",
    "InvalidTransitionError",
    "FatalTransitionError",
    "CloseRetriesExhaustedError",
]


# Version
__version__ = "1.0.0"
