"""Custody transaction lifecycle monitoring.

Tracks a custody transaction from creation through approval, signing and
broadcasting (phase 1) and, when a chain query is available, until the
transaction has enough on-chain confirmations (phase 2).

A failed custody outcome and an unverifiable chain outcome are reported
differently: the former sets failure=CUSTODY, the latter keeps the
COMPLETED custody status and sets failure=CHAIN.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from custodysign.chain.base import ChainQuery, ChainQueryError, ChainReceipt
from custodysign.custody.base import (
    CustodyClient,
    CustodyTransaction,
    CustodyUnavailableError,
    TransactionStatus,
)
from custodysign.utils.polling import PollPolicy, PollTimeoutError, poll, run_with_deadline

logger = logging.getLogger(__name__)

DEFAULT_CUSTODY_POLICY = PollPolicy(interval=2.0, max_attempts=900, sleep_first=False)
DEFAULT_CHAIN_POLICY = PollPolicy(interval=4.0, max_attempts=450, sleep_first=False)


class FailurePhase(str, Enum):
    """Where monitoring failed."""
    CUSTODY = "custody"
    CHAIN = "chain"


class MonitorError(Exception):
    """Base exception for transaction monitoring."""

    def __init__(self, transaction_id: str, message: str, tx_hash: Optional[str] = None):
        self.transaction_id = transaction_id
        self.tx_hash = tx_hash
        super().__init__(message)


class CustodyFailure(MonitorError):
    """Custody transaction ended failed, rejected, cancelled or blocked."""
    pass


class ChainConfirmationError(MonitorError):
    """Custody succeeded but on-chain confirmation could not be verified."""
    pass


class MonitorTimeout(MonitorError):
    """Monitoring budget or deadline exhausted before a final outcome."""

    def __init__(
        self,
        transaction_id: str,
        message: str,
        tx_hash: Optional[str] = None,
        phase: FailurePhase = FailurePhase.CUSTODY,
    ):
        self.phase = phase
        super().__init__(transaction_id, message, tx_hash)


@dataclass
class MonitorResult:
    """Final outcome of monitoring a transaction.

    Attributes:
        transaction_id: Custody transaction id
        status: Final custody status
        tx_hash: On-chain hash if reported
        block_number: Block the transaction was mined in (phase 2)
        confirmations: Confirmations counted (phase 2)
        error: Failure description
        failure: Phase that failed, None on success
        sub_status: Custody sub-status
    """
    transaction_id: str
    status: str
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    confirmations: Optional[int] = None
    error: Optional[str] = None
    failure: Optional[FailurePhase] = None
    sub_status: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None and self.status == TransactionStatus.COMPLETED.value

    @property
    def custody_failed(self) -> bool:
        return self.failure == FailurePhase.CUSTODY

    @property
    def chain_unverified(self) -> bool:
        return self.failure == FailurePhase.CHAIN

    def raise_for_failure(self) -> "MonitorResult":
        """Raise the typed error matching the failure phase, if any."""
        if self.failure == FailurePhase.CUSTODY:
            raise CustodyFailure(self.transaction_id, self.error or self.status, self.tx_hash)
        if self.failure == FailurePhase.CHAIN:
            raise ChainConfirmationError(self.transaction_id, self.error or "", self.tx_hash)
        return self


@dataclass
class _Progress:
    """State observed so far, kept across deadline cancellation."""
    status: Optional[str] = None
    tx_hash: Optional[str] = None
    sub_status: Optional[str] = None
    block_number: Optional[int] = None
    confirmations: Optional[int] = None
    phase: FailurePhase = FailurePhase.CUSTODY


class TransactionMonitor:
    """Follows custody transactions to a final outcome."""

    def __init__(
        self,
        client: CustodyClient,
        chain: Optional[ChainQuery] = None,
        poll_policy: Optional[PollPolicy] = None,
        chain_poll_policy: Optional[PollPolicy] = None,
    ):
        """Initialize transaction monitor.

        Args:
            client: Custody API client (may be shared)
            chain: Chain query for confirmation tracking (optional)
            poll_policy: Custody status polling schedule
            chain_poll_policy: Receipt polling schedule
        """
        self.client = client
        self.chain = chain
        self.poll_policy = poll_policy or DEFAULT_CUSTODY_POLICY
        self.chain_poll_policy = chain_poll_policy or DEFAULT_CHAIN_POLICY

    async def monitor(
        self,
        transaction_id: str,
        *,
        poll_interval: Optional[float] = None,
        required_confirmations: int = 1,
        chain: Optional[ChainQuery] = None,
        deadline: Optional[float] = None,
    ) -> MonitorResult:
        """Monitor a transaction until it reaches a final outcome.

        Args:
            transaction_id: Custody transaction id
            poll_interval: Override of the custody poll interval (seconds)
            required_confirmations: On-chain confirmations to wait for
            chain: Chain query overriding the monitor default
            deadline: Optional overall timeout in seconds

        Returns:
            MonitorResult; check ``failure`` or call ``raise_for_failure()``

        Raises:
            MonitorTimeout: Poll budget or deadline exhausted
        """
        if required_confirmations < 1:
            raise ValueError(f"required_confirmations must be >= 1, got {required_confirmations}")

        progress = _Progress()
        try:
            return await run_with_deadline(
                self._run(transaction_id, progress, poll_interval, required_confirmations, chain),
                deadline,
            )
        except asyncio.TimeoutError:
            raise MonitorTimeout(
                transaction_id,
                f"Monitoring {transaction_id} exceeded deadline of {deadline:g} seconds "
                f"during {progress.phase.value} phase (last status: {progress.status})",
                progress.tx_hash,
                progress.phase,
            ) from None

    async def _run(
        self,
        transaction_id: str,
        progress: _Progress,
        poll_interval: Optional[float],
        required_confirmations: int,
        chain: Optional[ChainQuery],
    ) -> MonitorResult:
        final = await self._wait_for_custody(transaction_id, progress, poll_interval)

        if final.is_failed:
            logger.warning(f"Transaction {transaction_id} {final.status.lower()}: {final.diagnostics}")
            return MonitorResult(
                transaction_id=transaction_id,
                status=final.status,
                tx_hash=progress.tx_hash,
                error=f"Transaction {final.status.lower()}: {final.diagnostics}",
                failure=FailurePhase.CUSTODY,
                sub_status=final.sub_status,
            )

        chain = chain or self.chain
        if chain is None or not progress.tx_hash:
            return MonitorResult(
                transaction_id=transaction_id,
                status=final.status,
                tx_hash=progress.tx_hash,
                sub_status=final.sub_status,
            )

        progress.phase = FailurePhase.CHAIN
        return await self._wait_for_confirmations(
            transaction_id, final, progress, chain, required_confirmations
        )

    async def _wait_for_custody(
        self,
        transaction_id: str,
        progress: _Progress,
        poll_interval: Optional[float],
    ) -> CustodyTransaction:
        """Phase 1: poll custody status until terminal."""
        policy = self.poll_policy.with_interval(poll_interval)

        def interpret(tx: CustodyTransaction) -> Optional[CustodyTransaction]:
            if tx.status != progress.status:
                logger.info(f"Transaction {transaction_id} status: {tx.status}")
            progress.status = tx.status
            progress.sub_status = tx.sub_status

            if tx.tx_hash and not progress.tx_hash:
                progress.tx_hash = tx.tx_hash
                logger.info(f"Transaction {transaction_id} hash: {tx.tx_hash}")

            return tx if tx.is_terminal else None

        try:
            return await poll(
                lambda: self.client.get_transaction(transaction_id),
                interpret,
                policy,
                label=f"Transaction {transaction_id}",
                transient=(CustodyUnavailableError,),
            )
        except PollTimeoutError as e:
            raise MonitorTimeout(
                transaction_id,
                f"{e} (last status: {progress.status})",
                progress.tx_hash,
                FailurePhase.CUSTODY,
            ) from e

    async def _wait_for_confirmations(
        self,
        transaction_id: str,
        final: CustodyTransaction,
        progress: _Progress,
        chain: ChainQuery,
        required_confirmations: int,
    ) -> MonitorResult:
        """Phase 2: poll the chain until the transaction is confirmed."""
        tx_hash = progress.tx_hash

        async def fetch():
            receipt = await chain.get_receipt(tx_hash)
            if receipt is None:
                return None, None
            return receipt, await chain.get_block_height()

        def interpret(response) -> Optional[ChainReceipt]:
            receipt, height = response
            if receipt is None:
                logger.debug(f"Transaction {tx_hash} not mined yet")
                return None

            if receipt.succeeded is False:
                raise ChainConfirmationError(
                    transaction_id,
                    f"Transaction {tx_hash} reverted in block {receipt.block_number}",
                    tx_hash,
                )

            progress.block_number = receipt.block_number
            progress.confirmations = max(0, height - receipt.block_number + 1)
            if progress.confirmations >= required_confirmations:
                return receipt

            logger.debug(
                f"Transaction {tx_hash} has {progress.confirmations}/{required_confirmations} confirmations"
            )
            return None

        try:
            await poll(
                fetch,
                interpret,
                self.chain_poll_policy,
                label=f"Receipt {tx_hash}",
                transient=(ChainQueryError,),
            )
        except PollTimeoutError as e:
            error = ChainConfirmationError(
                transaction_id, self._describe_chain_timeout(e, progress, required_confirmations), tx_hash
            )
        except ChainConfirmationError as e:
            error = e
        else:
            logger.info(
                f"Transaction {transaction_id} confirmed in block {progress.block_number} "
                f"({progress.confirmations} confirmations)"
            )
            return MonitorResult(
                transaction_id=transaction_id,
                status=final.status,
                tx_hash=tx_hash,
                block_number=progress.block_number,
                confirmations=progress.confirmations,
                sub_status=final.sub_status,
            )

        logger.warning(f"On-chain monitoring of {transaction_id} failed: {error}")
        return MonitorResult(
            transaction_id=transaction_id,
            status=final.status,
            tx_hash=tx_hash,
            block_number=progress.block_number,
            confirmations=progress.confirmations,
            error=f"On-chain monitoring failed: {error}",
            failure=FailurePhase.CHAIN,
            sub_status=final.sub_status,
        )

    @staticmethod
    def _describe_chain_timeout(
        error: PollTimeoutError, progress: _Progress, required_confirmations: int
    ) -> str:
        attempts = error.policy.max_attempts
        if error.all_attempts_failed:
            return f"chain query failed {attempts} times (last: {error.last_error})"
        if progress.block_number is None:
            return f"transaction receipt not found after {attempts} attempts"
        return (
            f"only {progress.confirmations} of {required_confirmations} confirmations "
            f"after {attempts} attempts"
        )
