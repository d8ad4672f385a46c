"""Base interface for the remote custody service.

The custody service holds the key material. Everything this package does
with it goes through four operations:

1. List the addresses of a vault account asset
2. Create a signing job (TYPED_MESSAGE transaction)
3. Fetch a signing job by id
4. Fetch a transaction by id
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class TransactionStatus(str, Enum):
    """Custody-side transaction states."""
    SUBMITTED = "SUBMITTED"
    PENDING_AML_SCREENING = "PENDING_AML_SCREENING"
    PENDING_ENRICHMENT = "PENDING_ENRICHMENT"
    PENDING_AUTHORIZATION = "PENDING_AUTHORIZATION"
    QUEUED = "QUEUED"
    PENDING_SIGNATURE = "PENDING_SIGNATURE"
    PENDING_3RD_PARTY_MANUAL_APPROVAL = "PENDING_3RD_PARTY_MANUAL_APPROVAL"
    PENDING_3RD_PARTY = "PENDING_3RD_PARTY"
    BROADCASTING = "BROADCASTING"
    CONFIRMING = "CONFIRMING"
    CANCELLING = "CANCELLING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    BLOCKED = "BLOCKED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


FAILURE_STATES = frozenset({
    TransactionStatus.FAILED.value,
    TransactionStatus.REJECTED.value,
    TransactionStatus.CANCELLED.value,
    TransactionStatus.BLOCKED.value,
})

TERMINAL_STATES = FAILURE_STATES | {TransactionStatus.COMPLETED.value}


@dataclass
class VaultAddress:
    """An address of a vault account asset."""
    address: str
    tag: Optional[str] = None
    address_format: Optional[str] = None


@dataclass
class CustodyTransaction:
    """Custody view of a signing job or transfer.

    Attributes:
        id: Custody transaction id
        status: Raw status string (see TransactionStatus)
        sub_status: Custody sub-status, usually set on failure
        tx_hash: On-chain hash once broadcast
        signed_messages: Signed message entries of a completed signing job
        system_messages: Diagnostic messages attached by the custody service
    """
    id: str
    status: str
    sub_status: Optional[str] = None
    tx_hash: Optional[str] = None
    signed_messages: list[dict[str, Any]] = field(default_factory=list)
    system_messages: list[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED.value

    @property
    def is_failed(self) -> bool:
        return self.status in FAILURE_STATES

    @property
    def diagnostics(self) -> str:
        """Sub-status plus system messages, for error reporting."""
        text = self.sub_status or "No subStatus"
        if self.system_messages:
            text += f" | systemMessages: {'; '.join(self.system_messages)}"
        return text


class CustodyClient(ABC):
    """Abstract custody API.

    Implementations are expected to be safe to share between concurrent
    tasks: they hold connection state only, never per-call state.
    """

    @abstractmethod
    async def list_addresses(self, vault_account_id: str, asset_id: str) -> list[VaultAddress]:
        """List addresses of a vault account asset."""
        pass

    @abstractmethod
    async def create_signing_job(
        self,
        vault_account_id: str,
        asset_id: str,
        payload: dict[str, Any],
        note: str = "",
    ) -> str:
        """Submit an EIP-712 payload for signing.

        Args:
            vault_account_id: Source vault account
            asset_id: Asset whose key signs (ETH for EVM typed data)
            payload: EIP-712 object with types, domain, primaryType and message
            note: Human-readable label shown to approvers

        Returns:
            Custody job id
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> CustodyTransaction:
        """Fetch the current state of a signing job."""
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> CustodyTransaction:
        """Fetch the current state of a custody transaction."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class CustodyError(Exception):
    """Exception raised when the custody API cannot serve a request."""
    pass


class CustodyAPIError(CustodyError):
    """Custody API answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CustodyUnavailableError(CustodyAPIError):
    """Transient failure: network error, rate limit or server error."""
    pass
