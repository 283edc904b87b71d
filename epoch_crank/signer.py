"""
Transaction Signing - Turns tracker instructions into wire transactions.

The crank does not hold key material. A TransactionSigner builds and signs
the transaction for a TrackerInstruction; the RPC client submits it.
"""

import asyncio
import logging
from typing import Optional, Protocol

import aiohttp

from .exceptions import SignerError
from .models import TrackerInstruction


logger = logging.getLogger(__name__)


class TransactionSigner(Protocol):
    """Builds a signed, base64-encoded transaction for an instruction."""

    async def sign(self, instruction: TrackerInstruction) -> str:
        ...

    async def close(self) -> None:
        ...


class RemoteSigner:
    """
    Signer backed by an external signing service.

    POSTs the instruction as JSON to signer_url and expects
    {"transaction": "<base64>"} back. The bearer token is the
    signing credential.
    """

    def __init__(
        self,
        signer_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.signer_url = signer_url
        self._token = token
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers=headers,
            )
        return self._session

    async def sign(self, instruction: TrackerInstruction) -> str:
        session = await self._get_session()

        try:
            async with session.post(self.signer_url, json=instruction.to_dict()) as response:
                if response.status != 200:
                    text = await response.text()
                    raise SignerError(
                        f"Signer returned {response.status}: {text[:200]}",
                        details=instruction.to_dict(),
                    )

                data = await response.json()

        except aiohttp.ClientError as e:
            raise SignerError(f"Signer network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise SignerError(
                f"Signer timeout after {self.timeout_seconds}s"
            ) from e
        except ValueError as e:
            raise SignerError(
                f"Signer returned invalid JSON: {e}",
                details=instruction.to_dict(),
            ) from e

        if not isinstance(data, dict):
            raise SignerError(
                f"Signer response is not an object: {type(data).__name__}",
                details=instruction.to_dict(),
            )

        transaction = data.get("transaction")
        if not transaction:
            raise SignerError(
                "Signer response has no transaction",
                details=instruction.to_dict(),
            )
        return transaction

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
