"""Signer address resolution.

The address of a vault account never changes, so it is fetched from the
custody service once and cached for the lifetime of the resolver.
"""

import asyncio
import logging
from typing import Optional

from custodysign.custody.base import CustodyClient, CustodyError
from custodysign.signing.base import AccountIdentity, ResolutionError

logger = logging.getLogger(__name__)


class AddressResolver:
    """Resolves and memoizes the identity of a vault account asset.

    Concurrent first calls wait on a single lock, so only one address query
    is ever issued and every caller sees the same cached identity.
    """

    def __init__(self, client: CustodyClient, vault_account_id: str, asset_id: str = "ETH"):
        self.client = client
        self.vault_account_id = str(vault_account_id)
        self.asset_id = asset_id
        self._identity: Optional[AccountIdentity] = None
        self._lock = asyncio.Lock()

    @property
    def identity(self) -> Optional[AccountIdentity]:
        """Cached identity, or None before the first successful resolve."""
        return self._identity

    async def resolve(self) -> AccountIdentity:
        """Get the identity, querying the custody service on first use.

        Raises:
            ResolutionError: If the vault asset has no usable address
        """
        if self._identity is not None:
            return self._identity

        async with self._lock:
            if self._identity is None:
                self._identity = await self._query()
                logger.info(
                    f"Resolved {self.asset_id} address for vault {self.vault_account_id}: "
                    f"{self._identity.address}"
                )
            return self._identity

    async def _query(self) -> AccountIdentity:
        try:
            addresses = await self.client.list_addresses(self.vault_account_id, self.asset_id)
        except CustodyError as e:
            raise ResolutionError(
                f"Failed to derive address for vault account {self.vault_account_id}: {e}"
            ) from e

        if not addresses:
            raise ResolutionError(
                f"No {self.asset_id} addresses found for vault account {self.vault_account_id}. "
                f"Ensure {self.asset_id} asset is activated in the vault."
            )

        address = addresses[0].address
        if not address:
            raise ResolutionError(
                f"{self.asset_id} address exists but has no value for vault {self.vault_account_id}"
            )

        return AccountIdentity(
            vault_account_id=self.vault_account_id,
            asset_id=self.asset_id,
            address=address,
        )
