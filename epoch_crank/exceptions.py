"""
Epoch Crank Exceptions - Error hierarchy for the tracker lifecycle.

Transient errors (RPC, clock, directory, fetch, close submission) are
recovered by the orchestration loop. Bootstrap errors, initialize failures
after a successful close and exhausted close retries are fatal.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class CrankError(Exception):
    """Base exception for all epoch crank errors."""

    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.recoverable = (
            recoverable if recoverable is not None else self.default_recoverable
        )
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(CrankError):
    """Invalid configuration."""

    default_recoverable = False


class RPCError(CrankError):
    """RPC node connection or response error."""

    def __init__(
        self,
        message: str,
        rpc_url: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.rpc_url = rpc_url
        self.status_code = status_code


class RateLimitError(RPCError):
    """Rate limit exceeded on the RPC node."""

    def __init__(
        self,
        message: str,
        rpc_url: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, rpc_url=rpc_url, status_code=429, details=details)
        self.retry_after_seconds = retry_after_seconds


class ClockUnavailableError(CrankError):
    """Current slot could not be fetched."""


class DirectoryUnavailableError(CrankError):
    """Group membership could not be listed."""

    def __init__(self, group_id: str, reason: str = "Unknown") -> None:
        super().__init__(
            f"Directory unavailable for group {group_id}: {reason}",
            details={"group_id": group_id},
        )
        self.group_id = group_id
        self.reason = reason


class FetchFailedError(CrankError):
    """Bulk read of entity records failed."""


class RecordDecodeError(CrankError):
    """Account data is too short or malformed for the configured layout."""

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        data_length: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            details={"address": address, "data_length": data_length},
        )
        self.address = address
        self.data_length = data_length


class SignerError(CrankError):
    """Signing service rejected or failed to build a transaction."""


class SubmitFailedError(CrankError):
    """Submission of an initialize or close request failed."""

    def __init__(
        self,
        operation: str,
        address: str,
        epoch: int,
        reason: str = "Unknown",
    ) -> None:
        super().__init__(
            f"Failed to {operation} tracker for {address} at epoch {epoch}: {reason}",
            details={"operation": operation, "address": address, "epoch": epoch},
        )
        self.operation = operation
        self.address = address
        self.epoch = epoch
        self.reason = reason


class TrackerAlreadyExistsError(RPCError):
    """The tracker account the transaction would create already exists."""


class TrackerMissingError(RPCError):
    """The tracker account the transaction would close does not exist."""


class BootstrapError(CrankError):
    """Startup could not establish a known-good state."""

    default_recoverable = False


class InvalidTransitionError(CrankError):
    """Illegal transition phase change."""

    default_recoverable = False


class FatalTransitionError(CrankError):
    """Initialize failed after the previous epoch's trackers were closed."""

    default_recoverable = False

    def __init__(
        self,
        from_epoch: int,
        to_epoch: int,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            f"Initialize failed after close ({from_epoch} -> {to_epoch}): {cause}",
            details={"from_epoch": from_epoch, "to_epoch": to_epoch},
        )
        self.from_epoch = from_epoch
        self.to_epoch = to_epoch
        self.cause = cause


class CloseRetriesExhaustedError(CrankError):
    """Closing the previous epoch's trackers failed too many times in a row."""

    default_recoverable = False

    def __init__(
        self,
        epoch: int,
        attempts: int,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            f"Failed to close trackers for epoch {epoch} after {attempts} attempts",
            details={"epoch": epoch, "attempts": attempts},
        )
        self.epoch = epoch
        self.attempts = attempts
        self.cause = cause
