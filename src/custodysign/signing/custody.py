"""Custody-backed EIP-712 signer.

Routes structured-data signing through custody TYPED_MESSAGE transactions.
The custody service holds the key; signing may wait minutes for human
approval, so every call submits one job and polls it to a terminal state.

The underlying identity can sign typed data only. Transaction signing,
message signing and every provider-bound operation raise
UnsupportedOperation immediately.
"""

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from custodysign.custody.base import (
    CustodyClient,
    CustodyError,
    CustodyTransaction,
    CustodyUnavailableError,
)
from custodysign.signing.annotator import describe_request
from custodysign.signing.base import (
    AccountIdentity,
    SignatureFormatError,
    Signer,
    SigningRejected,
    SigningRequest,
    SigningTimeout,
    SubmissionError,
    UnsupportedOperation,
)
from custodysign.signing.identity import AddressResolver
from custodysign.signing.normalizer import normalize_signature
from custodysign.signing.typed_data import build_request
from custodysign.utils.polling import PollPolicy, PollTimeoutError, poll, run_with_deadline

logger = logging.getLogger(__name__)

DEFAULT_POLL_POLICY = PollPolicy(interval=5.0, max_attempts=120)


class CustodySigner(Signer):
    """EIP-712 signer backed by a remote custody vault.

    Example:
        async with FireblocksClient(api_key, secret_key) as client:
            signer = CustodySigner(client, vault_account_id="0")
            signature = await signer.sign_typed_data(domain, types, message)
    """

    def __init__(
        self,
        client: CustodyClient,
        vault_account_id: str,
        asset_id: str = "ETH",
        poll_policy: Optional[PollPolicy] = None,
        annotator: Callable[[SigningRequest], str] = describe_request,
    ):
        """Initialize custody signer.

        Args:
            client: Custody API client (may be shared)
            vault_account_id: Vault account holding the signing key
            asset_id: Asset whose key signs (ETH for all EVM chains)
            poll_policy: Job polling schedule (default 5s x 120 = 10 minutes)
            annotator: Builds the note shown to approvers
        """
        self.client = client
        self.vault_account_id = str(vault_account_id)
        self.asset_id = asset_id
        self.poll_policy = poll_policy or DEFAULT_POLL_POLICY
        self._annotate = annotator
        self._resolver = AddressResolver(client, self.vault_account_id, asset_id)

    @property
    def identity(self) -> Optional[AccountIdentity]:
        """Cached identity, or None before the first resolve."""
        return self._resolver.identity

    async def get_identity(self) -> AccountIdentity:
        return await self._resolver.resolve()

    async def sign_typed_data(
        self,
        domain: Mapping[str, Any],
        types: Mapping[str, list],
        message: Mapping[str, Any],
        primary_type: Optional[str] = None,
        *,
        deadline: Optional[float] = None,
    ) -> str:
        """Sign EIP-712 typed data through the custody service.

        Raises:
            ResolutionError: Signer address cannot be resolved
            SubmissionError: Signing job cannot be created
            SigningRejected: Job failed, was rejected, cancelled or blocked
            SigningTimeout: Job did not finish within the poll budget or deadline
            SignatureFormatError: Returned signature cannot be normalized
        """
        identity = await self.get_identity()
        request = build_request(domain, types, message, primary_type)
        note = self._annotate(request)

        try:
            job_id = await self.client.create_signing_job(
                identity.vault_account_id,
                identity.asset_id,
                request.to_payload(),
                note,
            )
        except CustodyError as e:
            raise SubmissionError(f"Failed to create signing job: {e}") from e

        logger.info(f"Submitted signing job {job_id} ({note}) for {identity.address}")

        try:
            return await run_with_deadline(self._wait_for_signature(job_id), deadline)
        except asyncio.TimeoutError:
            raise SigningTimeout(job_id, deadline) from None

    async def _wait_for_signature(self, job_id: str) -> str:
        """Poll a signing job until it completes."""
        try:
            return await poll(
                lambda: self.client.get_job(job_id),
                self._interpret_job,
                self.poll_policy,
                label=f"Signing job {job_id}",
                transient=(CustodyUnavailableError,),
            )
        except PollTimeoutError as e:
            raise SigningTimeout(job_id, self.poll_policy.ceiling, self.poll_policy.max_attempts) from e

    def _interpret_job(self, job: CustodyTransaction) -> Optional[str]:
        if job.is_completed:
            signature = self._extract_signature(job)
            logger.info(f"Signing job {job.id} completed")
            return signature

        if job.is_failed:
            logger.warning(f"Signing job {job.id} {job.status.lower()}: {job.diagnostics}")
            raise SigningRejected(job.id, job.status, job.sub_status, job.system_messages)

        # SUBMITTED, PENDING_AUTHORIZATION, PENDING_SIGNATURE, ...
        logger.debug(f"Signing job {job.id} status: {job.status}")
        return None

    @staticmethod
    def _extract_signature(job: CustodyTransaction) -> str:
        if not job.signed_messages:
            raise SignatureFormatError(f"Signing job {job.id} completed but no signed messages found")

        entry = job.signed_messages[0]
        signature = entry.get("signature") if isinstance(entry, Mapping) else None
        if signature is None:
            fields = list(entry.keys()) if isinstance(entry, Mapping) else []
            raise SignatureFormatError(
                f"Signing job {job.id} completed without a signature", fields=fields
            )

        return normalize_signature(signature)

    # Operations a signing-only custody identity cannot perform

    async def sign_transaction(self, transaction: Mapping[str, Any]) -> str:
        raise UnsupportedOperation("sign_transaction")

    async def sign_message(self, message: Any) -> str:
        raise UnsupportedOperation("sign_message")

    async def send_transaction(self, transaction: Mapping[str, Any]) -> Any:
        raise UnsupportedOperation("send_transaction", "signer has no provider")

    async def populate_transaction(self, transaction: Mapping[str, Any]) -> Any:
        raise UnsupportedOperation("populate_transaction", "signer has no provider")

    async def estimate_gas(self, transaction: Mapping[str, Any]) -> int:
        raise UnsupportedOperation("estimate_gas", "signer has no provider")

    async def get_nonce(self, block_tag: Optional[str] = None) -> int:
        raise UnsupportedOperation("get_nonce", "nonces are managed by the caller")

    async def call(self, transaction: Mapping[str, Any]) -> Any:
        raise UnsupportedOperation("call", "signer has no provider")

    async def resolve_name(self, name: str) -> Optional[str]:
        raise UnsupportedOperation("resolve_name", "signer has no provider")

    async def populate_call(self, transaction: Mapping[str, Any]) -> Any:
        raise UnsupportedOperation("populate_call", "signer has no provider")

    async def populate_authorization(self, authorization: Mapping[str, Any]) -> Any:
        raise UnsupportedOperation("populate_authorization")

    async def authorize(self, authorization: Mapping[str, Any]) -> Any:
        raise UnsupportedOperation("authorize", "EIP-7702 authorizations are not supported")

    def connect(self, provider: Any) -> "CustodySigner":
        raise UnsupportedOperation("connect", "custody signer is provider-less")

    def __repr__(self) -> str:
        return f"CustodySigner(vault={self.vault_account_id}, asset={self.asset_id})"
