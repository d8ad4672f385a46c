"""Pytest configuration and fixtures."""

import asyncio
import os
from typing import Optional

import pytest
from eth_account import Account

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["FIREBLOCKS_API_KEY"] = ""

from custodysign.chain.base import ChainQuery, ChainQueryError, ChainReceipt
from custodysign.custody.base import CustodyClient, CustodyTransaction, VaultAddress
from custodysign.utils.polling import PollPolicy

TEST_PRIVATE_KEY = "0x" + "4c" * 32
TEST_ACCOUNT = Account.from_key(TEST_PRIVATE_KEY)
SIGNER_ADDRESS = TEST_ACCOUNT.address

R_HEX = "11" * 32
S_HEX = "22" * 32


def job(status: str, job_id: str = "job-1", **kwargs) -> CustodyTransaction:
    """Build a custody transaction response."""
    return CustodyTransaction(id=job_id, status=status, **kwargs)


def completed_job(signature, job_id: str = "job-1") -> CustodyTransaction:
    return job("COMPLETED", job_id, signed_messages=[{"signature": signature}])


class FakeCustodyClient(CustodyClient):
    """Scripted custody client.

    Responses are consumed in order; the last one repeats forever.
    Exceptions in a response list are raised instead of returned.
    """

    def __init__(
        self,
        addresses=None,
        job_responses: Optional[list] = None,
        transaction_responses: Optional[list] = None,
        address_delay: float = 0.0,
    ):
        self.addresses = addresses if addresses is not None else [VaultAddress(address=SIGNER_ADDRESS)]
        self.job_responses = list(job_responses or [])
        self.transaction_responses = list(transaction_responses or [])
        self.address_delay = address_delay
        self.create_error: Optional[Exception] = None

        self.list_calls = 0
        self.get_job_calls = 0
        self.get_transaction_calls = 0
        self.created_jobs: list[dict] = []
        self.closed = False

    @staticmethod
    def _next(responses: list):
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def list_addresses(self, vault_account_id, asset_id):
        self.list_calls += 1
        if self.address_delay:
            await asyncio.sleep(self.address_delay)
        if isinstance(self.addresses, Exception):
            raise self.addresses
        return list(self.addresses)

    async def create_signing_job(self, vault_account_id, asset_id, payload, note=""):
        if self.create_error is not None:
            raise self.create_error
        self.created_jobs.append({
            "vault_account_id": vault_account_id,
            "asset_id": asset_id,
            "payload": payload,
            "note": note,
        })
        return f"job-{len(self.created_jobs)}"

    async def get_job(self, job_id):
        self.get_job_calls += 1
        return self._next(self.job_responses)

    async def get_transaction(self, transaction_id):
        self.get_transaction_calls += 1
        return self._next(self.transaction_responses)

    async def aclose(self):
        self.closed = True


class FakeChain(ChainQuery):
    """Scripted chain query.

    receipts: sequence of ChainReceipt / None / Exception per get_receipt call
    heights: sequence of block heights per get_block_height call
    """

    def __init__(self, receipts: list, heights: Optional[list] = None):
        self.receipts = list(receipts)
        self.heights = list(heights or [0])
        self.receipt_calls = 0
        self.height_calls = 0

    async def get_receipt(self, tx_hash):
        self.receipt_calls += 1
        return FakeCustodyClient._next(self.receipts)

    async def get_block_height(self):
        self.height_calls += 1
        return FakeCustodyClient._next(self.heights)


def receipt(block_number: int, status: Optional[int] = 1, tx_hash: str = "0xabc") -> ChainReceipt:
    return ChainReceipt(tx_hash=tx_hash, block_number=block_number, status=status)


def chain_error(message: str = "rpc down") -> ChainQueryError:
    return ChainQueryError(message)


@pytest.fixture
def fast_policy() -> PollPolicy:
    """Polling policy that does not slow tests down."""
    return PollPolicy(interval=0, max_attempts=10)


@pytest.fixture
def custody() -> FakeCustodyClient:
    return FakeCustodyClient()
