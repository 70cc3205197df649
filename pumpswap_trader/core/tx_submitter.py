"""
Transaction submitter
Sends signed transactions with retry and polls signature status until final
"""

import asyncio
import base64
from typing import Optional, Dict, Any
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from solders.transaction import Transaction

from pumpswap_trader.core.config import TransactionConfig
from pumpswap_trader.core.rpc_manager import RPCManager
from pumpswap_trader.core.logger import get_logger
from pumpswap_trader.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class ConfirmationStatus(Enum):
    """Transaction confirmation status"""
    PENDING = "pending"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"


_STATUS_BY_LEVEL = {
    "processed": ConfirmationStatus.PROCESSED,
    "confirmed": ConfirmationStatus.CONFIRMED,
    "finalized": ConfirmationStatus.FINALIZED,
}


@dataclass
class ConfirmedTransaction:
    """Where a submitted transaction ended up"""
    signature: str
    slot: int
    confirmation_status: ConfirmationStatus
    error: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.confirmation_status in (ConfirmationStatus.CONFIRMED, ConfirmationStatus.FINALIZED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "confirmation_status": self.confirmation_status.value,
            "error": self.error,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None
        }


class TransactionSubmitter:
    """
    Submits signed transactions through the RPC manager

    Usage:
        submitter = TransactionSubmitter(rpc_manager, bot_config.transaction_config)
        confirmed = await submitter.submit_and_confirm(signed_tx)
        if not confirmed.succeeded:
            ...
    """

    def __init__(self, rpc_manager: RPCManager, config: Optional[TransactionConfig] = None):
        self.rpc_manager = rpc_manager
        self.config = config or TransactionConfig()

    async def submit_transaction(self, signed_tx: Transaction) -> str:
        """
        Send a signed transaction, retrying with exponential backoff

        Returns:
            Transaction signature

        Raises:
            Exception: Last submission error once all retries fail
        """
        tx_base64 = base64.b64encode(bytes(signed_tx)).decode('utf-8')
        params = [
            tx_base64,
            {
                "skipPreflight": self.config.skip_preflight,
                "encoding": "base64",
                "maxRetries": 0  # retries are ours
            }
        ]
        max_retries = max(1, self.config.max_retries)

        with LatencyTimer(metrics, "tx_submit"):
            for attempt in range(max_retries):
                try:
                    response = await self.rpc_manager.call_http_rpc("sendTransaction", params)
                    signature = response.get("result") or str(signed_tx.signatures[0])

                    metrics.increment_counter("transactions_submitted_success")
                    logger.info("transaction_submitted", signature=signature, attempt=attempt + 1)
                    return signature

                except Exception as e:
                    logger.warning(
                        "transaction_submission_error",
                        error=str(e),
                        attempt=attempt + 1,
                        max_retries=max_retries
                    )
                    if attempt == max_retries - 1:
                        metrics.increment_counter("transactions_submitted_failed")
                        raise

                    delay = self.config.retry_delay_ms * (2 ** attempt) / 1000
                    await asyncio.sleep(delay)

        raise RuntimeError("unreachable")

    async def submit_and_confirm(
        self,
        signed_tx: Transaction,
        timeout_seconds: Optional[float] = None
    ) -> ConfirmedTransaction:
        """
        Submit a transaction and wait for a final status

        Raises:
            TimeoutError: If no final status is seen within the timeout
            Exception: If submission fails
        """
        timeout = timeout_seconds or self.config.confirmation_timeout_s

        with LatencyTimer(metrics, "tx_submit_and_confirm"):
            signature = await self.submit_transaction(signed_tx)
            return await self._wait_for_confirmation(signature, timeout)

    async def _wait_for_confirmation(self, signature: str, timeout_seconds: float) -> ConfirmedTransaction:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds

        while True:
            status = await self.get_signature_status(signature)

            if status and status.confirmation_status in (
                ConfirmationStatus.CONFIRMED,
                ConfirmationStatus.FINALIZED,
                ConfirmationStatus.FAILED
            ):
                metrics.increment_counter(
                    "transaction_confirmations",
                    labels={"status": status.confirmation_status.value}
                )
                return status

            if loop.time() >= deadline:
                metrics.increment_counter("transaction_confirmations_timeout")
                raise TimeoutError(f"Transaction confirmation timed out after {timeout_seconds}s")

            await asyncio.sleep(self.config.confirmation_poll_interval_s)

    async def get_signature_status(self, signature: str) -> Optional[ConfirmedTransaction]:
        """Current status of a signature, None if the cluster has not seen it"""
        try:
            response = await self.rpc_manager.call_http_rpc(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}]
            )
        except Exception as e:
            logger.warning("get_signature_status_error", signature=signature, error=str(e))
            return None

        value = response.get("result", {}).get("value") or []
        if not value or value[0] is None:
            return None

        status_data = value[0]
        status = _STATUS_BY_LEVEL.get(
            status_data.get("confirmationStatus", "processed"), ConfirmationStatus.PENDING
        )

        error = None
        if status_data.get("err"):
            status = ConfirmationStatus.FAILED
            error = str(status_data["err"])

        return ConfirmedTransaction(
            signature=signature,
            slot=status_data.get("slot", 0),
            confirmation_status=status,
            error=error,
            confirmed_at=datetime.now(timezone.utc)
        )
