"""
Shared fixtures for epoch crank tests.

FakeLedger stands in for the RPC node: it holds a slot, the registry
membership, entity markers and the set of open trackers, and records every
submission. FakeSigner encodes instructions as JSON so the fake ledger can
read them back.
"""

import json
import struct
from typing import Optional

import pytest

from epoch_crank import (
    CrankLoop,
    EntityDirectory,
    EntityStateFetcher,
    EpochClock,
    RecordLayout,
    RPCError,
    TrackerAlreadyExistsError,
    TrackerInstruction,
    TrackerLifecycleDriver,
    TrackerMissingError,
)


EPOCH_LENGTH = 100
GROUP_ID = "Ncn1111111111111111111111111111111111111111"
CONFIG_ADDRESS = "Cfg1111111111111111111111111111111111111111"
LAYOUT = RecordLayout(entity_marker_offset=8)


def entity_record(marker: int) -> bytes:
    """Entity record with an 8-byte discriminator followed by the marker."""
    return b"\x00" * 8 + struct.pack("<Q", marker) + b"\x00" * 16


def config_record(epoch_length: int) -> bytes:
    return b"\x00" * 72 + struct.pack("<Q", epoch_length) + b"\x00" * 8


class FakeLedger:
    """In-memory replacement for SolanaRpcClient."""

    def __init__(self) -> None:
        self.slot = 0
        self.members: set[str] = set()
        self.markers: dict[str, int] = {}
        self.trackers: set[tuple[str, int]] = set()
        self.config_data: Optional[bytes] = config_record(EPOCH_LENGTH)

        self.slot_error: Optional[Exception] = None
        self.directory_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.fail_operations: set[str] = set()

        self.submissions: list[tuple[str, str, int]] = []
        self.fetched: list[list[str]] = []
        self.closed = False

    # Reads

    async def get_slot(self) -> int:
        if self.slot_error:
            raise self.slot_error
        return self.slot

    async def get_account_data(self, address: str) -> Optional[bytes]:
        return self.config_data

    async def get_program_account_slices(self, program_id, filters, offset, length):
        if self.directory_error:
            raise self.directory_error
        return sorted(self.members)

    async def get_multiple_accounts(self, addresses):
        self.fetched.append(list(addresses))
        if self.fetch_error:
            raise self.fetch_error
        return {
            address: entity_record(self.markers[address])
            for address in addresses
            if address in self.markers
        }

    # Writes

    async def send_and_confirm(self, encoded_transaction: str) -> str:
        instruction = json.loads(encoded_transaction)
        operation = instruction["operation"]
        key = (instruction["address"], instruction["epoch"])
        self.submissions.append((operation, key[0], key[1]))

        if operation in self.fail_operations:
            raise RPCError(f"{operation} rejected")

        if operation == "initialize":
            if key in self.trackers:
                raise TrackerAlreadyExistsError("Allocate: account already in use")
            self.trackers.add(key)
        else:
            if key not in self.trackers:
                raise TrackerMissingError("AccountNotFound")
            self.trackers.discard(key)

        return f"sig-{len(self.submissions)}"

    async def close(self) -> None:
        self.closed = True

    def calls(self, operation: str) -> list[tuple[str, int]]:
        return [(a, e) for op, a, e in self.submissions if op == operation]


class FakeSigner:
    """Signer that returns the instruction itself as the transaction."""

    def __init__(self) -> None:
        self.signed: list[TrackerInstruction] = []
        self.closed = False

    async def sign(self, instruction: TrackerInstruction) -> str:
        self.signed.append(instruction)
        return json.dumps(instruction.to_dict())

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def ledger():
    ledger = FakeLedger()
    ledger.members = {"A", "B"}
    ledger.markers = {"A": 0, "B": 0}
    ledger.slot = 150
    return ledger


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def driver(ledger, signer):
    return TrackerLifecycleDriver(
        ledger,
        signer,
        payer="Payer111111111111111111111111111111111111111",
        vault_program_id="Vault11111111111111111111111111111111111111",
        restaking_program_id="Restake1111111111111111111111111111111111111",
        config_address=CONFIG_ADDRESS,
        group_id=GROUP_ID,
    )


@pytest.fixture
def crank(ledger, driver):
    return CrankLoop(
        clock=EpochClock(ledger, EPOCH_LENGTH),
        directory=EntityDirectory(ledger, "Restake1111111111111111111111111111111111111", LAYOUT),
        fetcher=EntityStateFetcher(ledger, LAYOUT),
        driver=driver,
        group_id=GROUP_ID,
        tick_interval_seconds=3600,
    )
