"""Base interfaces for custody-backed signing.

Signing flow:
1. Resolve the signer address from the custody vault (once)
2. Build the EIP-712 envelope (domain, types, primaryType, message)
3. Submit a signing job to the custody service
4. Poll the job until approvers sign, reject or it times out
5. Normalize the returned signature to 65 bytes (r || s || v)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountIdentity:
    """Address bound to a custody vault account asset.

    Attributes:
        vault_account_id: Custody vault account id
        asset_id: Asset the address belongs to (ETH for EVM typed data)
        address: Chain address (0x... format)
    """
    vault_account_id: str
    asset_id: str
    address: str


@dataclass
class SigningRequest:
    """EIP-712 structured data to sign.

    Attributes:
        domain: Populated domain fields (name, version, chainId,
            verifyingContract, salt)
        types: Type schema, always including EIP712Domain
        primary_type: Root type of the message
        message: Message values (treated as opaque)
    """
    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    primary_type: str
    message: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready EIP-712 object sent to the custody service."""
        from custodysign.signing.typed_data import to_jsonable

        return {
            "types": to_jsonable(self.types),
            "domain": to_jsonable(self.domain),
            "primaryType": self.primary_type,
            "message": to_jsonable(self.message),
        }


class Signer(ABC):
    """Structured-data signing capability.

    Implementations NEVER hold private keys. They return signatures only.
    """

    @abstractmethod
    async def get_identity(self) -> AccountIdentity:
        """Get the identity that signs for this signer."""
        pass

    @abstractmethod
    async def sign_typed_data(
        self,
        domain: Mapping[str, Any],
        types: Mapping[str, list],
        message: Mapping[str, Any],
        primary_type: Optional[str] = None,
        *,
        deadline: Optional[float] = None,
    ) -> str:
        """Sign EIP-712 typed data.

        Args:
            domain: EIP-712 domain (e.g. {"name": "Exchange", "chainId": 1337})
            types: EIP-712 types, with or without EIP712Domain
            message: The message to sign
            primary_type: Root type; inferred from types when omitted
            deadline: Optional overall timeout in seconds

        Returns:
            65-byte signature as 0x-prefixed hex
        """
        pass

    async def get_address(self) -> str:
        """Get the signer address."""
        identity = await self.get_identity()
        return identity.address

    async def health_check(self) -> bool:
        """Check if the signer can resolve its identity.

        Returns:
            True if the backend is ready to sign
        """
        try:
            await self.get_identity()
            return True
        except SigningError as e:
            logger.warning(f"Signer health check failed: {e}")
            return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass


class ResolutionError(SigningError):
    """Exception raised when the signer address cannot be resolved."""
    pass


class SubmissionError(SigningError):
    """Exception raised when the signing job cannot be created."""
    pass


class SigningRejected(SigningError):
    """Signing job reached a failed, rejected, cancelled or blocked state."""

    def __init__(
        self,
        job_id: str,
        status: str,
        sub_status: Optional[str] = None,
        system_messages: Optional[list[str]] = None,
    ):
        self.job_id = job_id
        self.status = status
        self.sub_status = sub_status
        self.system_messages = list(system_messages or [])

        message = f"Signing job {job_id} {status.lower()}: {sub_status or 'No subStatus'}"
        if self.system_messages:
            message += f" | systemMessages: {'; '.join(self.system_messages)}"
        super().__init__(message)


class SigningTimeout(SigningError):
    """Signing job did not reach a terminal state in time."""

    def __init__(self, job_id: str, seconds: float, attempts: Optional[int] = None):
        self.job_id = job_id
        self.seconds = seconds
        self.attempts = attempts

        message = f"Signature polling timeout for job {job_id} after {seconds:g} seconds"
        if attempts is not None:
            message += f" ({attempts} attempts)"
        super().__init__(message)


class SignatureFormatError(SigningError):
    """Signature returned by custody cannot be normalized to 65 bytes."""

    def __init__(
        self,
        message: str,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
        fields: Optional[list[str]] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.fields = list(fields or [])

        if expected is not None and actual is not None:
            message += f" (expected {expected} bytes, got {actual})"
        if self.fields:
            message += f" [available fields: {', '.join(self.fields)}]"
        super().__init__(message)


class UnsupportedOperation(SigningError):
    """Exception raised for capabilities a signing-only identity does not have."""

    def __init__(self, operation: str, reason: str = "use sign_typed_data"):
        self.operation = operation
        super().__init__(f"{operation} not supported - {reason}")
