"""Signer factory.

Builds the custody client and signer from settings. This is the only place
in the signing package that reads configuration; the signer itself receives
everything through its constructor.
"""

import logging
from typing import Optional

from custodysign.config import Settings, get_settings
from custodysign.custody.base import CustodyClient
from custodysign.custody.http import FireblocksClient
from custodysign.signing.custody import CustodySigner
from custodysign.utils.polling import PollPolicy

logger = logging.getLogger(__name__)


def create_custody_client(settings: Optional[Settings] = None) -> CustodyClient:
    """Create a custody API client.

    Raises:
        ValueError: If the API key is not configured
        OSError: If the secret key file cannot be read
    """
    settings = settings or get_settings()
    if not settings.fireblocks_api_key:
        raise ValueError("FIREBLOCKS_API_KEY is not set")

    return FireblocksClient(
        api_key=settings.fireblocks_api_key,
        secret_key=settings.read_secret_key(),
        base_url=settings.fireblocks_base_url,
        timeout=settings.http_timeout,
    )


def create_signer(client: CustodyClient, settings: Optional[Settings] = None) -> CustodySigner:
    """Create a custody signer around an existing client."""
    settings = settings or get_settings()
    return CustodySigner(
        client,
        vault_account_id=settings.vault_account_id,
        asset_id=settings.signing_asset_id,
        poll_policy=PollPolicy(
            interval=settings.signing_poll_interval,
            max_attempts=settings.signing_max_attempts,
        ),
    )


_signer_instance: Optional[CustodySigner] = None


def get_signer(settings: Optional[Settings] = None) -> CustodySigner:
    """Get the configured signer instance.

    Returns singleton instance so that the resolved address and the HTTP
    connection pool are shared.
    """
    global _signer_instance

    if _signer_instance is not None:
        return _signer_instance

    settings = settings or get_settings()
    logger.info(
        f"Initializing custody signer for vault {settings.vault_account_id} "
        f"({settings.signing_asset_id})"
    )
    _signer_instance = create_signer(create_custody_client(settings), settings)
    return _signer_instance


def reset_signer():
    """Reset the signer instance (for testing)."""
    global _signer_instance
    _signer_instance = None
    get_settings.cache_clear()


async def get_signer_info() -> dict:
    """Get information about the current signer configuration.

    Returns:
        Dict with signer class, vault, address and health status
    """
    signer = get_signer()
    health = await signer.health_check()
    identity = signer.identity

    return {
        "class": signer.__class__.__name__,
        "vault_account_id": signer.vault_account_id,
        "asset_id": signer.asset_id,
        "address": identity.address if identity else None,
        "healthy": health,
    }
