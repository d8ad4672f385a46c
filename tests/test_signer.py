"""Tests for the custody-backed signer and address resolution."""

import asyncio
import time

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from custodysign.custody.base import CustodyAPIError, CustodyUnavailableError, VaultAddress
from custodysign.signing.base import (
    ResolutionError,
    SignatureFormatError,
    SigningRejected,
    SigningTimeout,
    SubmissionError,
    UnsupportedOperation,
)
from custodysign.signing.custody import CustodySigner
from custodysign.signing.identity import AddressResolver
from custodysign.signing.verify import recover_typed_data_signer, verify_typed_data_signature
from custodysign.utils.polling import PollPolicy

from conftest import (
    R_HEX,
    S_HEX,
    SIGNER_ADDRESS,
    TEST_PRIVATE_KEY,
    FakeCustodyClient,
    completed_job,
    job,
)

DOMAIN = {"name": "Test", "version": "1", "chainId": 42161}
TYPES = {
    "TestMessage": [
        {"name": "from", "type": "address"},
        {"name": "contents", "type": "string"},
        {"name": "value", "type": "uint256"},
    ],
}
MESSAGE = {"from": SIGNER_ADDRESS, "contents": "Hello", "value": 12345}

SIGNATURE = {"r": "0x" + R_HEX, "s": "0x" + S_HEX, "v": 1}
EXPECTED = "0x" + R_HEX + S_HEX + "1c"


class TestAddressResolver:
    """Tests for identity resolution and caching."""

    @pytest.mark.asyncio
    async def test_resolves_first_address(self):
        client = FakeCustodyClient(addresses=[VaultAddress("0xAAA"), VaultAddress("0xBBB")])
        resolver = AddressResolver(client, "7")

        identity = await resolver.resolve()

        assert identity.address == "0xAAA"
        assert identity.vault_account_id == "7"
        assert identity.asset_id == "ETH"

    @pytest.mark.asyncio
    async def test_cached_after_first_call(self):
        client = FakeCustodyClient()
        resolver = AddressResolver(client, "0")

        first = await resolver.resolve()
        second = await resolver.resolve()

        assert first is second
        assert client.list_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_query_once(self):
        """N concurrent callers see one query and one identity."""
        client = FakeCustodyClient(address_delay=0.05)
        resolver = AddressResolver(client, "0")

        identities = await asyncio.gather(*(resolver.resolve() for _ in range(20)))

        assert client.list_calls == 1
        assert {identity.address for identity in identities} == {SIGNER_ADDRESS}
        assert all(identity is identities[0] for identity in identities)

    @pytest.mark.asyncio
    async def test_no_addresses(self):
        resolver = AddressResolver(FakeCustodyClient(addresses=[]), "3")

        with pytest.raises(ResolutionError, match="No ETH addresses found for vault account 3"):
            await resolver.resolve()
        assert resolver.identity is None

    @pytest.mark.asyncio
    async def test_empty_address(self):
        resolver = AddressResolver(FakeCustodyClient(addresses=[VaultAddress("")]), "3")

        with pytest.raises(ResolutionError, match="has no value"):
            await resolver.resolve()

    @pytest.mark.asyncio
    async def test_custody_error_is_wrapped(self):
        client = FakeCustodyClient(addresses=CustodyAPIError("Unauthorized", status_code=401))
        resolver = AddressResolver(client, "0")

        with pytest.raises(ResolutionError, match="Unauthorized") as exc_info:
            await resolver.resolve()
        assert isinstance(exc_info.value.__cause__, CustodyAPIError)

    @pytest.mark.asyncio
    async def test_failed_resolution_is_not_cached(self):
        client = FakeCustodyClient(addresses=[])
        resolver = AddressResolver(client, "0")

        with pytest.raises(ResolutionError):
            await resolver.resolve()

        client.addresses = [VaultAddress("0xAAA")]
        identity = await resolver.resolve()
        assert identity.address == "0xAAA"
        assert client.list_calls == 2


class TestSignTypedData:
    """Tests for CustodySigner.sign_typed_data."""

    def make_signer(self, client, policy=None) -> CustodySigner:
        return CustodySigner(client, "0", poll_policy=policy or PollPolicy(interval=0, max_attempts=10))

    @pytest.mark.asyncio
    async def test_pending_then_completed(self):
        """Three pending polls, then a completed job with v=1."""
        client = FakeCustodyClient(job_responses=[
            job("SUBMITTED"),
            job("PENDING_AUTHORIZATION"),
            job("PENDING_SIGNATURE"),
            completed_job(SIGNATURE),
        ])
        signer = self.make_signer(client)

        signature = await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)

        assert signature == EXPECTED
        assert client.get_job_calls == 4
        assert len(client.created_jobs) == 1

    @pytest.mark.asyncio
    async def test_submitted_payload(self):
        client = FakeCustodyClient(job_responses=[completed_job(SIGNATURE)])
        signer = self.make_signer(client)

        await signer.sign_typed_data({"name": "Exchange", "chainId": 1337}, TYPES, MESSAGE)

        submitted = client.created_jobs[0]
        payload = submitted["payload"]
        assert submitted["vault_account_id"] == "0"
        assert submitted["asset_id"] == "ETH"
        assert submitted["note"] == "EIP-712 signature: Exchange"
        assert payload["primaryType"] == "TestMessage"
        assert payload["domain"] == {"name": "Exchange", "chainId": 1337}
        assert payload["types"]["EIP712Domain"] == [
            {"name": "name", "type": "string"},
            {"name": "chainId", "type": "uint256"},
        ]
        assert payload["message"] == MESSAGE

    @pytest.mark.asyncio
    async def test_blocked_by_policy(self):
        client = FakeCustodyClient(job_responses=[
            job("PENDING_AUTHORIZATION"),
            job("BLOCKED", sub_status="POLICY_DENIED", system_messages=["BLOCK: TAP rule 3"]),
        ])
        signer = self.make_signer(client)

        with pytest.raises(SigningRejected) as exc_info:
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)

        error = exc_info.value
        assert "POLICY_DENIED" in str(error)
        assert error.status == "BLOCKED"
        assert error.sub_status == "POLICY_DENIED"
        assert error.system_messages == ["BLOCK: TAP rule 3"]
        assert "TAP rule 3" in str(error)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["FAILED", "REJECTED", "CANCELLED", "BLOCKED"])
    async def test_failure_states(self, status):
        client = FakeCustodyClient(job_responses=[job(status, sub_status="REJECTED_BY_USER")])
        signer = self.make_signer(client)

        with pytest.raises(SigningRejected, match=status.lower()):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)
        assert client.get_job_calls == 1

    @pytest.mark.asyncio
    async def test_timeout_is_bounded(self):
        """Never-terminal jobs fail with SigningTimeout within attempts x interval."""
        client = FakeCustodyClient(job_responses=[job("PENDING_SIGNATURE")])
        policy = PollPolicy(interval=0.02, max_attempts=5)
        signer = self.make_signer(client, policy)

        started = time.monotonic()
        with pytest.raises(SigningTimeout) as exc_info:
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)
        elapsed = time.monotonic() - started

        assert elapsed < policy.ceiling + 0.5
        assert client.get_job_calls == 5
        assert exc_info.value.attempts == 5
        assert "0.1 seconds" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        client = FakeCustodyClient(job_responses=[
            job("PENDING_SIGNATURE"),
            CustodyUnavailableError("connection reset"),
            CustodyUnavailableError("503", status_code=503),
            completed_job(SIGNATURE),
        ])
        signer = self.make_signer(client)

        assert await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE) == EXPECTED
        assert client.get_job_calls == 4

    @pytest.mark.asyncio
    async def test_transient_errors_share_budget(self):
        client = FakeCustodyClient(job_responses=[CustodyUnavailableError("down")])
        signer = self.make_signer(client, PollPolicy(interval=0, max_attempts=3))

        with pytest.raises(SigningTimeout):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)
        assert client.get_job_calls == 3

    @pytest.mark.asyncio
    async def test_non_transient_error_propagates(self):
        client = FakeCustodyClient(job_responses=[CustodyAPIError("Not found", status_code=404)])
        signer = self.make_signer(client)

        with pytest.raises(CustodyAPIError):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)
        assert client.get_job_calls == 1

    @pytest.mark.asyncio
    async def test_completed_without_signed_messages(self):
        client = FakeCustodyClient(job_responses=[job("COMPLETED")])
        signer = self.make_signer(client)

        with pytest.raises(SignatureFormatError, match="no signed messages"):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)
        assert client.get_job_calls == 1

    @pytest.mark.asyncio
    async def test_completed_with_malformed_signature(self):
        client = FakeCustodyClient(job_responses=[completed_job({"fullSig": "abcd", "v": 0})])
        signer = self.make_signer(client)

        with pytest.raises(SignatureFormatError):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)

    @pytest.mark.asyncio
    async def test_deadline(self):
        client = FakeCustodyClient(job_responses=[job("PENDING_SIGNATURE")])
        signer = self.make_signer(client, PollPolicy(interval=0.05, max_attempts=1000))

        started = time.monotonic()
        with pytest.raises(SigningTimeout, match="0.2 seconds"):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE, deadline=0.2)
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_submission_failure(self):
        client = FakeCustodyClient()
        client.create_error = CustodyAPIError("Invalid request", status_code=400)
        signer = self.make_signer(client)

        with pytest.raises(SubmissionError, match="Invalid request"):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)

    @pytest.mark.asyncio
    async def test_resolution_failure_skips_submission(self):
        client = FakeCustodyClient(addresses=[])
        signer = self.make_signer(client)

        with pytest.raises(ResolutionError):
            await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)
        assert client.created_jobs == []

    @pytest.mark.asyncio
    async def test_concurrent_signing_share_identity(self):
        client = FakeCustodyClient(
            job_responses=[completed_job(SIGNATURE)], address_delay=0.02
        )
        signer = self.make_signer(client)

        signatures = await asyncio.gather(
            *(signer.sign_typed_data(DOMAIN, TYPES, MESSAGE) for _ in range(5))
        )

        assert signatures == [EXPECTED] * 5
        assert client.list_calls == 1
        assert len(client.created_jobs) == 5

    @pytest.mark.asyncio
    async def test_real_signature_recovers_vault_address(self):
        """A signature produced over the submitted payload verifies."""
        client = FakeCustodyClient()
        signer = self.make_signer(client)

        original_create = client.create_signing_job

        async def sign_and_create(vault_account_id, asset_id, payload, note=""):
            signed = Account.sign_message(encode_typed_data(full_message=payload), TEST_PRIVATE_KEY)
            client.job_responses = [completed_job({
                "r": hex(signed.r),
                "s": hex(signed.s),
                "v": signed.v - 27,
            })]
            return await original_create(vault_account_id, asset_id, payload, note)

        client.create_signing_job = sign_and_create

        signature = await signer.sign_typed_data(DOMAIN, TYPES, MESSAGE)
        payload = client.created_jobs[0]["payload"]

        assert recover_typed_data_signer(payload, signature) == SIGNER_ADDRESS
        assert verify_typed_data_signature(payload, signature, SIGNER_ADDRESS.lower())


class TestUnsupportedOperations:
    """Operations a signing-only identity must refuse."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation,args",
        [
            ("sign_transaction", ({"to": "0x0"},)),
            ("sign_message", ("hello",)),
            ("send_transaction", ({},)),
            ("populate_transaction", ({},)),
            ("estimate_gas", ({},)),
            ("get_nonce", ()),
            ("call", ({},)),
            ("resolve_name", ("vitalik.eth",)),
            ("populate_call", ({},)),
            ("populate_authorization", ({"address": "0x0"},)),
            ("authorize", ({"address": "0x0"},)),
        ],
    )
    async def test_async_operations(self, operation, args):
        client = FakeCustodyClient()
        signer = CustodySigner(client, "0")

        with pytest.raises(UnsupportedOperation) as exc_info:
            await getattr(signer, operation)(*args)

        assert exc_info.value.operation == operation
        assert operation in str(exc_info.value)
        assert client.list_calls == 0
        assert client.created_jobs == []

    def test_connect(self):
        signer = CustodySigner(FakeCustodyClient(), "0")

        with pytest.raises(UnsupportedOperation, match="connect"):
            signer.connect(object())


class TestSignerHelpers:
    """Identity helpers on the signer."""

    @pytest.mark.asyncio
    async def test_get_address(self, custody):
        signer = CustodySigner(custody, "0")

        assert signer.identity is None
        assert await signer.get_address() == SIGNER_ADDRESS
        assert signer.identity.address == SIGNER_ADDRESS

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert await CustodySigner(FakeCustodyClient(), "0").health_check() is True
        assert await CustodySigner(FakeCustodyClient(addresses=[]), "0").health_check() is False
