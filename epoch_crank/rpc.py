"""
Solana RPC Client - JSON-RPC access to the remote ledger.

Every call is awaited on its own; the session carries a total timeout so a
hung node surfaces as a transient RPCError.
"""

import asyncio
import base64
import logging
from typing import Any, Optional

import aiohttp

from .exceptions import (
    RateLimitError,
    RPCError,
    TrackerAlreadyExistsError,
    TrackerMissingError,
)
from .models import Commitment


logger = logging.getLogger(__name__)


# getMultipleAccounts accepts at most 100 keys per request
MAX_ACCOUNTS_PER_REQUEST = 100

ALREADY_EXISTS_MARKERS = ("already in use", "already initialized")
MISSING_MARKERS = ("accountnotfound", "account not found", "uninitialized account")


class SolanaRpcClient:
    """
    Minimal async Solana JSON-RPC client.

    Only the reads and writes the crank needs: slot, account data, bulk
    account data, program account slices, and transaction submission.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout_seconds: float = 60.0,
        commitment: Commitment = Commitment.CONFIRMED,
        confirm_timeout_seconds: float = 30.0,
        confirm_poll_seconds: float = 1.0,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self.commitment = commitment
        self.confirm_timeout_seconds = confirm_timeout_seconds
        self.confirm_poll_seconds = confirm_poll_seconds

        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            headers = {"Content-Type": "application/json"}
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
            )
        return self._session

    def _next_request_id(self) -> int:
        """Get next JSON-RPC request ID."""
        self._request_id += 1
        return self._request_id

    async def _rpc_call(
        self,
        method: str,
        params: list[Any],
    ) -> Any:
        """Make a JSON-RPC call."""
        session = await self._get_session()

        payload = {
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": method,
            "params": params,
        }

        try:
            async with session.post(self.rpc_url, json=payload) as response:
                if response.status == 429:
                    raise RateLimitError(
                        "Solana RPC rate limit exceeded",
                        rpc_url=self.rpc_url,
                        retry_after_seconds=5,
                    )

                if response.status != 200:
                    raise RPCError(
                        f"RPC error: {response.status}",
                        rpc_url=self.rpc_url,
                        status_code=response.status,
                    )

                data = await response.json()

                if not isinstance(data, dict):
                    raise RPCError(
                        f"Malformed {method} response: {type(data).__name__}",
                        rpc_url=self.rpc_url,
                    )

                if "error" in data:
                    raise _classify_rpc_error(method, data["error"], self.rpc_url)

                return data.get("result")

        except aiohttp.ClientError as e:
            raise RPCError(
                f"Network error: {e}",
                rpc_url=self.rpc_url,
            ) from e
        except asyncio.TimeoutError as e:
            raise RPCError(
                f"Timeout after {self.timeout_seconds}s calling {method}",
                rpc_url=self.rpc_url,
            ) from e
        except ValueError as e:
            raise RPCError(
                f"Invalid JSON in {method} response: {e}",
                rpc_url=self.rpc_url,
            ) from e

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------

    async def get_slot(self) -> int:
        """Get the current slot at the configured commitment."""
        result = await self._rpc_call(
            "getSlot", [{"commitment": self.commitment.value}]
        )
        if not isinstance(result, int) or isinstance(result, bool):
            raise RPCError(
                f"getSlot returned a non-integer result: {result!r}",
                rpc_url=self.rpc_url,
            )
        return result

    async def get_account_data(self, address: str) -> Optional[bytes]:
        """Get the raw data of one account, or None if it does not exist."""
        result = await self._rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment.value}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None
        return _decode_base64_data(value)

    async def get_multiple_accounts(self, addresses: list[str]) -> dict[str, bytes]:
        """
        Get raw data for many accounts.

        Accounts that do not exist are omitted from the result.
        """
        accounts: dict[str, bytes] = {}

        for start in range(0, len(addresses), MAX_ACCOUNTS_PER_REQUEST):
            chunk = addresses[start:start + MAX_ACCOUNTS_PER_REQUEST]
            result = await self._rpc_call(
                "getMultipleAccounts",
                [chunk, {"encoding": "base64", "commitment": self.commitment.value}],
            )
            values = (result or {}).get("value") or []
            for address, value in zip(chunk, values):
                if value is not None:
                    accounts[address] = _decode_base64_data(value)

        return accounts

    async def get_program_account_slices(
        self,
        program_id: str,
        filters: list[dict[str, Any]],
        offset: int,
        length: int,
    ) -> list[str]:
        """
        Get a base58-encoded slice of every program account matching filters.

        Used to read a 32-byte address field out of registry records.
        """
        result = await self._rpc_call(
            "getProgramAccounts",
            [
                program_id,
                {
                    "encoding": "base58",
                    "commitment": self.commitment.value,
                    "dataSlice": {"offset": offset, "length": length},
                    "filters": filters,
                },
            ],
        )

        slices = []
        for item in result or []:
            data = item.get("account", {}).get("data")
            if isinstance(data, list) and data:
                slices.append(data[0])
        return slices

    # --------------------------------------------------------
    # Writes
    # --------------------------------------------------------

    async def send_transaction(self, encoded_transaction: str) -> str:
        """Submit a base64 wire transaction and return its signature."""
        signature = await self._rpc_call(
            "sendTransaction",
            [
                encoded_transaction,
                {
                    "encoding": "base64",
                    "preflightCommitment": self.commitment.value,
                },
            ],
        )
        return str(signature)

    async def confirm_transaction(self, signature: str) -> None:
        """
        Wait until a signature reaches the configured commitment.

        Raises:
            RPCError: if the transaction failed or was not confirmed in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout_seconds

        while True:
            result = await self._rpc_call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": False}],
            )
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]

            if status is not None:
                if status.get("err"):
                    raise _classify_rpc_error(
                        "getSignatureStatuses",
                        {"message": f"Transaction failed: {status['err']}"},
                        self.rpc_url,
                    )
                if self.commitment.is_reached_by(status.get("confirmationStatus")):
                    return

            if loop.time() >= deadline:
                raise RPCError(
                    f"Transaction {signature} not confirmed within "
                    f"{self.confirm_timeout_seconds}s",
                    rpc_url=self.rpc_url,
                )

            await asyncio.sleep(self.confirm_poll_seconds)

    async def send_and_confirm(self, encoded_transaction: str) -> str:
        """Submit a transaction and wait for confirmation."""
        signature = await self.send_transaction(encoded_transaction)
        logger.debug(f"Submitted transaction {signature}")
        await self.confirm_transaction(signature)
        return signature

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()


def _decode_base64_data(value: dict[str, Any]) -> bytes:
    data = value.get("data") or ["", "base64"]
    return base64.b64decode(data[0])


def _classify_rpc_error(
    method: str,
    error: dict[str, Any],
    rpc_url: str,
) -> RPCError:
    """Map a JSON-RPC error member onto the error hierarchy."""
    message = str(error.get("message", "Unknown"))
    logs = (error.get("data") or {}).get("logs") or []
    haystack = " ".join([message, *map(str, logs)]).lower()

    if any(marker in haystack for marker in ALREADY_EXISTS_MARKERS):
        return TrackerAlreadyExistsError(
            f"{method}: {message}", rpc_url=rpc_url, details=error
        )
    if any(marker in haystack for marker in MISSING_MARKERS):
        return TrackerMissingError(
            f"{method}: {message}", rpc_url=rpc_url, details=error
        )
    return RPCError(f"RPC error: {message}", rpc_url=rpc_url, details=error)
