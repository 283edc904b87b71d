"""
Account Record Decoding - Byte offsets of the fields the crank reads.

Program account layouts change between program versions, so offsets are
configuration. All integers are little-endian u64.
"""

import struct
from dataclasses import dataclass
from typing import Any, Optional

from .exceptions import RecordDecodeError


U64 = struct.Struct("<Q")
ADDRESS_LENGTH = 32


@dataclass(frozen=True)
class RecordLayout:
    """Field offsets inside the configuration, entity and registry records."""

    # Configuration account: 8-byte discriminator, admin, restaking program
    config_epoch_length_offset: int = 72

    # Entity record: no default, depends on the deployed program version
    entity_marker_offset: Optional[int] = None

    # Registry (group membership) record: discriminator, group, member
    registry_group_offset: int = 8
    registry_member_offset: int = 40

    def validate(self) -> list[str]:
        errors = []
        if self.entity_marker_offset is None:
            errors.append("entity_marker_offset is required")
        for name in (
            "config_epoch_length_offset",
            "entity_marker_offset",
            "registry_group_offset",
            "registry_member_offset",
        ):
            value = getattr(self, name)
            if value is not None and value < 0:
                errors.append(f"{name} must not be negative")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "config_epoch_length_offset": self.config_epoch_length_offset,
            "entity_marker_offset": self.entity_marker_offset,
            "registry_group_offset": self.registry_group_offset,
            "registry_member_offset": self.registry_member_offset,
        }


def read_u64(data: bytes, offset: int, address: Optional[str] = None) -> int:
    """Read a little-endian u64 at offset."""
    if offset < 0 or len(data) < offset + U64.size:
        raise RecordDecodeError(
            f"Record too short for u64 at offset {offset}",
            address=address,
            data_length=len(data),
        )
    return U64.unpack_from(data, offset)[0]


def decode_epoch_length(
    data: bytes,
    layout: RecordLayout,
    address: Optional[str] = None,
) -> int:
    """Decode epoch_length from the configuration account."""
    epoch_length = read_u64(data, layout.config_epoch_length_offset, address)
    if epoch_length == 0:
        raise RecordDecodeError(
            "Configuration epoch_length is zero",
            address=address,
            data_length=len(data),
        )
    return epoch_length


def decode_entity_marker(
    data: bytes,
    layout: RecordLayout,
    address: Optional[str] = None,
) -> int:
    """Decode the last-full-state-update slot from an entity record."""
    if layout.entity_marker_offset is None:
        raise RecordDecodeError("entity_marker_offset is not configured", address=address)
    return read_u64(data, layout.entity_marker_offset, address)
