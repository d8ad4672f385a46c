"""Transaction monitor factory."""

import logging
from typing import Optional

from custodysign.chain.base import ChainQuery
from custodysign.chain.rpc import EvmRpcChain
from custodysign.config import Settings, get_settings
from custodysign.custody.base import CustodyClient
from custodysign.monitor.lifecycle import TransactionMonitor
from custodysign.utils.polling import PollPolicy

logger = logging.getLogger(__name__)


def get_chain(settings: Optional[Settings] = None, rpc_url: Optional[str] = None) -> Optional[ChainQuery]:
    """Create a chain query from an explicit URL or ETH_RPC_URL, if any."""
    settings = settings or get_settings()
    rpc_url = rpc_url or settings.eth_rpc_url
    if not rpc_url:
        return None
    return EvmRpcChain(rpc_url, timeout=settings.http_timeout)


def get_monitor(
    client: CustodyClient,
    settings: Optional[Settings] = None,
    chain: Optional[ChainQuery] = None,
) -> TransactionMonitor:
    """Create a transaction monitor from settings.

    Args:
        client: Custody API client
        settings: Settings (defaults to environment)
        chain: Chain query; built from ETH_RPC_URL when omitted
    """
    settings = settings or get_settings()
    if chain is None:
        chain = get_chain(settings)
    if chain is None:
        logger.info("No RPC URL configured, on-chain confirmation disabled")

    return TransactionMonitor(
        client,
        chain=chain,
        poll_policy=PollPolicy(
            interval=settings.monitor_poll_interval,
            max_attempts=settings.monitor_max_attempts,
            sleep_first=False,
        ),
        chain_poll_policy=PollPolicy(
            interval=settings.chain_poll_interval,
            max_attempts=settings.chain_max_attempts,
            sleep_first=False,
        ),
    )
