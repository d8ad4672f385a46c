"""EVM JSON-RPC chain query.

Only two calls are needed to count confirmations:
eth_getTransactionReceipt and eth_blockNumber.
"""

import itertools
import logging
from typing import Any, Optional

import httpx

from custodysign.chain.base import ChainQuery, ChainQueryError, ChainReceipt

logger = logging.getLogger(__name__)


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(str(value), 16)


class EvmRpcChain(ChainQuery):
    """Chain query over an EVM JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize RPC chain query.

        Args:
            rpc_url: JSON-RPC endpoint URL
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.rpc_url = rpc_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list) -> Any:
        """Perform one JSON-RPC call and return its result."""
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = await self._client.post(self.rpc_url, json=request)
        except httpx.TransportError as e:
            raise ChainQueryError(f"{method} failed: {e}") from e

        if response.status_code != 200:
            raise ChainQueryError(f"{method} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ChainQueryError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ChainQueryError(f"{method} returned malformed response")

        if data.get("error"):
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ChainQueryError(f"{method} error: {message}")

        return data.get("result")

    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        """Get a transaction receipt, or None while it is pending."""
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None
        if not isinstance(result, dict):
            raise ChainQueryError(f"eth_getTransactionReceipt returned malformed result for {tx_hash}")
        if result.get("blockNumber") is None:
            return None

        try:
            status = result.get("status")
            return ChainReceipt(
                tx_hash=result.get("transactionHash") or tx_hash,
                block_number=_hex_to_int(result["blockNumber"]),
                status=_hex_to_int(status) if status is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise ChainQueryError(f"Malformed receipt for {tx_hash}: {e}") from e

    async def get_block_height(self) -> int:
        """Get the latest block number."""
        result = await self._call("eth_blockNumber", [])
        try:
            return _hex_to_int(result)
        except (TypeError, ValueError) as e:
            raise ChainQueryError(f"Malformed block number: {result!r}") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"EvmRpcChain(rpc_url={self.rpc_url})"
