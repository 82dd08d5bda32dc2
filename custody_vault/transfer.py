"""
Value Transfer Gate Module

The boundary that moves custodied value out of the vault to an account's
external destination. A gate reports a definite success or failure, or raises
TransferIndeterminate when it cannot tell. The vault engine invokes it only
after the ledger already reflects the withdrawal.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import httpx
import logging
import time
import uuid

from .errors import TransferIndeterminate

logger = logging.getLogger("custody_vault.transfer")


class TransferGate(ABC):
    """Outbound value transfer collaborator"""

    @abstractmethod
    def transfer(self, to: str, amount: int) -> bool:
        """
        Move amount units of the asset to the external account of `to`.

        Returns:
            True only if the value was actually moved, False only if it
            certainly was not

        Raises:
            TransferIndeterminate: the outcome is unknown
        """
        pass

    def close(self) -> None:
        """Release any resources held by the gate"""
        pass


@dataclass
class TransferRecord:
    """One outbound transfer attempt"""
    to: str
    amount: int
    success: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryTransferGate(TransferGate):
    """
    Gate that settles into an in-process payout book.

    `fail` makes every transfer report failure; `on_transfer` is called with
    (to, amount) before a transfer settles and may itself call back into the
    vault. If the hook raises, the transfer fails with that exception.
    """

    def __init__(self, fail: bool = False, on_transfer: Optional[Callable[[str, int], None]] = None):
        self.fail = fail
        self.on_transfer = on_transfer
        self.payouts: Dict[str, int] = {}
        self.history: List[TransferRecord] = []

    def transfer(self, to: str, amount: int) -> bool:
        if self.on_transfer:
            self.on_transfer(to, amount)

        if self.fail:
            self.history.append(TransferRecord(to=to, amount=amount, success=False))
            return False

        self.payouts[to] = self.payouts.get(to, 0) + amount
        self.history.append(TransferRecord(to=to, amount=amount, success=True))
        return True

    def paid_to(self, account: str) -> int:
        """Total value settled to an account"""
        return self.payouts.get(account, 0)


class HttpTransferGate(TransferGate):
    """
    REST client for an external settlement service.

    Every transfer carries a fresh Idempotency-Key header. Amounts travel as
    decimal strings. A failure while connecting means the request never
    reached the service and is reported as False. A failure after the
    request may have been delivered (read timeout, dropped connection) is
    resolved by asking the service for the outcome under the same key; if
    that is not conclusive either, TransferIndeterminate is raised.

    The vault holds its lock for the whole call, so keep `timeout` short.
    """

    UNDELIVERED = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)

    def __init__(
        self,
        base_url: str = "http://localhost:8081",
        timeout: float = 2.0,
        api_key: Optional[str] = None,
        vault_id: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self.vault_id = vault_id
        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self, reference: str) -> Dict[str, str]:
        headers = {"Idempotency-Key": reference}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def transfer(self, to: str, amount: int) -> bool:
        """Ask the settlement service to pay out

        Args:
            to: Account identity receiving the value
            amount: Units of the asset to move

        Returns:
            True only on HTTP 200 with {"success": true}

        Raises:
            TransferIndeterminate: the service may have paid out and did not
                confirm either way
        """
        reference = str(uuid.uuid4())
        payload = {
            "to": to,
            "amount": str(amount),
            "vault_id": self.vault_id
        }

        start = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/transfers",
                json=payload,
                headers=self._headers(reference),
                timeout=self.timeout
            )
        except self.UNDELIVERED as e:
            logger.error(f"Settlement service unreachable: {e}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Transfer {reference} interrupted ({type(e).__name__}); querying outcome")
            return self._resolve(reference, e)

        latency_ms = (time.time() - start) * 1000

        if response.status_code != 200:
            logger.warning(f"Settlement service returned {response.status_code}: {response.text}")
            return False

        success = _success_flag(response) is True
        logger.debug(f"Transfer {reference} of {amount} to {to} settled={success} in {latency_ms:.1f}ms")
        return success

    def _resolve(self, reference: str, cause: Exception) -> bool:
        """Look up the outcome of an interrupted transfer"""
        try:
            response = self._client.get(
                f"{self.base_url}/transfers/{reference}",
                headers=self._headers(reference),
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.error(f"Transfer {reference} outcome unknown: {e}")
            raise TransferIndeterminate(reference) from e

        if response.status_code == 200:
            flag = _success_flag(response)
            if isinstance(flag, bool):
                logger.info(f"Transfer {reference} resolved settled={flag}")
                return flag

        logger.error(f"Transfer {reference} outcome unknown: status query returned {response.status_code}")
        raise TransferIndeterminate(reference) from cause

    def health_check(self) -> bool:
        """Check if the settlement service is healthy"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self):
        """Close the HTTP client"""
        self._client.close()


def _success_flag(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        logger.warning("Settlement service returned a non-JSON body")
        return None
    return body.get("success") if isinstance(body, dict) else None
