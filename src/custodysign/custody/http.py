"""Fireblocks REST API client.

Every request carries an RS256 JWT signed with the API user's secret key.
The token binds the request path and a SHA-256 hash of the body, and is only
valid for a few seconds.

API Docs: https://developers.fireblocks.com/reference/signing-a-request-jwt-structure
"""

import hashlib
import json
import logging
import time
import uuid
from typing import Any, Optional

import httpx
import jwt

from custodysign.custody.base import (
    CustodyAPIError,
    CustodyClient,
    CustodyTransaction,
    CustodyUnavailableError,
    VaultAddress,
)

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox-api.fireblocks.io"
PRODUCTION_BASE_URL = "https://api.fireblocks.io"

BASE_URLS = {
    "sandbox": SANDBOX_BASE_URL,
    "production": PRODUCTION_BASE_URL,
    "us": PRODUCTION_BASE_URL,
}

# Tokens are rejected by the API if exp - iat exceeds 30 seconds
TOKEN_LIFETIME = 29


def resolve_base_url(base_url: str) -> str:
    """Map a named environment (sandbox, production) to its API URL."""
    return BASE_URLS.get(base_url.strip().lower(), base_url).rstrip("/")


class FireblocksClient(CustodyClient):
    """Custody client for the Fireblocks API.

    Uses one pooled httpx.AsyncClient for all requests, so a single instance
    can be shared by concurrent signing jobs and monitors.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = "sandbox",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Fireblocks client.

        Args:
            api_key: API user key
            secret_key: PEM-encoded RSA private key of the API user
            base_url: "sandbox", "production" or an explicit API URL
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self._secret_key = secret_key
        self.base_url = resolve_base_url(base_url)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    def _sign_request(self, path: str, body: bytes) -> str:
        """Create the per-request JWT."""
        now = int(time.time())
        claims = {
            "uri": path,
            "nonce": uuid.uuid4().hex,
            "iat": now,
            "exp": now + TOKEN_LIFETIME,
            "sub": self.api_key,
            "bodyHash": hashlib.sha256(body).hexdigest(),
        }
        return jwt.encode(claims, self._secret_key, algorithm="RS256")

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        """Send an authenticated request and decode the JSON response.

        Raises:
            CustodyUnavailableError: Network failure, 429 or 5xx
            CustodyAPIError: Any other non-2xx response or invalid JSON
        """
        body = b""
        headers = {
            "X-API-Key": self.api_key,
        }
        if payload is not None:
            body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
            headers["Content-Type"] = "application/json"
        headers["Authorization"] = f"Bearer {self._sign_request(path, body)}"

        try:
            response = await self._client.request(
                method,
                path,
                content=body if payload is not None else None,
                headers=headers,
            )
        except httpx.TransportError as e:
            raise CustodyUnavailableError(f"{method} {path} failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise CustodyUnavailableError(
                f"{method} {path} returned {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            raise CustodyAPIError(
                f"{method} {path} returned {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise CustodyAPIError(
                f"{method} {path} returned invalid JSON", status_code=response.status_code
            ) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the API error message, falling back to the raw body."""
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] or "(empty body)"
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
            code = data.get("code")
            if message and code is not None:
                return f"{message} (code {code})"
            if message:
                return str(message)
        return str(data)[:200]

    async def list_addresses(self, vault_account_id: str, asset_id: str) -> list[VaultAddress]:
        """List addresses of a vault account asset."""
        path = f"/v1/vault/accounts/{vault_account_id}/{asset_id}/addresses_paginated"
        data = await self._request("GET", path)

        addresses = []
        for entry in (data or {}).get("addresses") or []:
            addresses.append(
                VaultAddress(
                    address=entry.get("address") or "",
                    tag=entry.get("tag"),
                    address_format=entry.get("addressFormat"),
                )
            )
        return addresses

    async def create_signing_job(
        self,
        vault_account_id: str,
        asset_id: str,
        payload: dict[str, Any],
        note: str = "",
    ) -> str:
        """Create a TYPED_MESSAGE transaction for an EIP-712 payload."""
        request = {
            "operation": "TYPED_MESSAGE",
            "assetId": asset_id,
            "source": {
                "type": "VAULT_ACCOUNT",
                "id": str(vault_account_id),
            },
            "note": note,
            "extraParameters": {
                "rawMessageData": {
                    "messages": [
                        {
                            "content": payload,
                            "type": "EIP712",
                        }
                    ],
                },
            },
        }

        data = await self._request("POST", "/v1/transactions", request)
        job_id = (data or {}).get("id")
        if not job_id:
            raise CustodyAPIError(f"Transaction created without an id: {data}")

        logger.debug(f"Created TYPED_MESSAGE transaction {job_id} (status: {data.get('status')})")
        return str(job_id)

    async def get_job(self, job_id: str) -> CustodyTransaction:
        """Fetch a signing job (a TYPED_MESSAGE transaction)."""
        return await self.get_transaction(job_id)

    async def get_transaction(self, transaction_id: str) -> CustodyTransaction:
        """Fetch a transaction by id."""
        data = await self._request("GET", f"/v1/transactions/{transaction_id}")
        return self._parse_transaction(data, transaction_id)

    def _parse_transaction(self, data: Any, transaction_id: str) -> CustodyTransaction:
        """Parse a transaction response."""
        if not isinstance(data, dict) or not data.get("status"):
            raise CustodyAPIError(f"Malformed transaction response for {transaction_id}: {data}")

        return CustodyTransaction(
            id=str(data.get("id") or transaction_id),
            status=str(data["status"]),
            sub_status=data.get("subStatus") or None,
            tx_hash=data.get("txHash") or None,
            signed_messages=list(data.get("signedMessages") or []),
            system_messages=self._parse_system_messages(data.get("systemMessages")),
        )

    @staticmethod
    def _parse_system_messages(raw: Any) -> list[str]:
        """systemMessages is documented as an object but also seen as a list."""
        if not raw:
            return []
        if isinstance(raw, dict):
            raw = [raw]
        if isinstance(raw, str):
            raw = [raw]

        messages = []
        for entry in raw:
            if isinstance(entry, dict):
                text = entry.get("text") or entry.get("message")
                kind = entry.get("type")
                if text:
                    messages.append(f"{kind}: {text}" if kind else str(text))
            elif entry:
                messages.append(str(entry))
        return messages

    async def aclose(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"FireblocksClient(base_url={self.base_url})"
