"""
Epoch Crank Configuration - Endpoints, program ids and loop cadence.

Values can be supplied directly, through environment variables, or through
a .env file loaded with python-dotenv. Signing credentials come from the
environment only.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .models import Commitment
from .records import RecordLayout


DEFAULT_RPC_URL = "https://api.devnet.solana.com"
DEFAULT_VAULT_PROGRAM_ID = "34X2uqBhEGiWHu43RDEMwrMqXF4CpCPEZNaKdAaUS9jx"
DEFAULT_RESTAKING_PROGRAM_ID = "78J8YzXGGNynLRpn85MH77PVLBZsWyLCHZAXRvKaB6Ng"

# Consecutive close failures tolerated before the process gives up
DEFAULT_MAX_CLOSE_ATTEMPTS = 9


@dataclass
class CrankConfig:
    """Main configuration for the epoch crank."""

    # Remote endpoints
    rpc_url: str = DEFAULT_RPC_URL
    signer_url: str = ""
    signer_token: Optional[str] = None
    payer: str = ""

    # Programs and accounts
    vault_program_id: str = DEFAULT_VAULT_PROGRAM_ID
    restaking_program_id: str = DEFAULT_RESTAKING_PROGRAM_ID
    group_id: str = ""
    config_address: str = ""
    layout: RecordLayout = field(default_factory=RecordLayout)

    # Network behaviour
    rpc_timeout_seconds: float = 60.0
    confirm_timeout_seconds: float = 30.0
    confirm_poll_seconds: float = 1.0
    commitment: Commitment = Commitment.CONFIRMED

    # Loop
    tick_interval_seconds: int = 3600  # 1 hour
    max_close_attempts: int = DEFAULT_MAX_CLOSE_ATTEMPTS

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = "app.log"

    @classmethod
    def from_env(cls, **overrides: Any) -> "CrankConfig":
        """Build a configuration from the environment, then apply overrides."""
        load_dotenv()

        raw_offset = os.environ.get("ENTITY_MARKER_OFFSET")
        marker_offset: Optional[int] = None
        if raw_offset:
            try:
                marker_offset = int(raw_offset)
            except ValueError as e:
                raise ConfigurationError(
                    f"ENTITY_MARKER_OFFSET must be an integer, got {raw_offset!r}",
                    details={"ENTITY_MARKER_OFFSET": raw_offset},
                ) from e

        values: dict[str, Any] = {
            "rpc_url": os.environ.get("RPC_URL", DEFAULT_RPC_URL),
            "signer_url": os.environ.get("SIGNER_URL", ""),
            "signer_token": os.environ.get("SIGNER_TOKEN"),
            "payer": os.environ.get("PAYER", ""),
            "vault_program_id": os.environ.get(
                "VAULT_PROGRAM_ID", DEFAULT_VAULT_PROGRAM_ID
            ),
            "restaking_program_id": os.environ.get(
                "RESTAKING_PROGRAM_ID", DEFAULT_RESTAKING_PROGRAM_ID
            ),
            "group_id": os.environ.get("NCN", ""),
            "config_address": os.environ.get("CONFIG_ADDRESS", ""),
            "layout": RecordLayout(
                entity_marker_offset=marker_offset,
            ),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self) -> list[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.rpc_url:
            errors.append("rpc_url is required")
        if not self.signer_url:
            errors.append("signer_url is required")
        if not self.payer:
            errors.append("payer is required")
        if not self.group_id:
            errors.append("group_id (NCN) is required")
        if not self.config_address:
            errors.append("config_address is required")

        if self.rpc_timeout_seconds <= 0:
            errors.append("rpc_timeout_seconds must be positive")
        if self.confirm_timeout_seconds <= 0:
            errors.append("confirm_timeout_seconds must be positive")
        if self.tick_interval_seconds < 1:
            errors.append("tick_interval_seconds must be at least 1")
        if self.max_close_attempts < 1:
            errors.append("max_close_attempts must be at least 1")

        errors.extend(self.layout.validate())
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "rpc_url": self.rpc_url,
            "signer_url": self.signer_url,
            "payer": self.payer,
            "vault_program_id": self.vault_program_id,
            "restaking_program_id": self.restaking_program_id,
            "group_id": self.group_id,
            "config_address": self.config_address,
            "layout": self.layout.to_dict(),
            "rpc_timeout_seconds": self.rpc_timeout_seconds,
            "confirm_timeout_seconds": self.confirm_timeout_seconds,
            "commitment": self.commitment.value,
            "tick_interval_seconds": self.tick_interval_seconds,
            "max_close_attempts": self.max_close_attempts,
            "log_level": self.log_level,
            "log_file": self.log_file,
        }


# Default configuration instance
_default_config: Optional[CrankConfig] = None


def get_config() -> CrankConfig:
    """Get the default configuration."""
    global _default_config
    if _default_config is None:
        _default_config = CrankConfig.from_env()
    return _default_config


def set_config(config: CrankConfig) -> None:
    """Set the default configuration."""
    global _default_config
    _default_config = config
