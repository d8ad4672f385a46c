"""On-chain confirmation queries."""

from custodysign.chain.base import ChainQuery, ChainQueryError, ChainReceipt
from custodysign.chain.rpc import EvmRpcChain

__all__ = ["ChainQuery", "ChainQueryError", "ChainReceipt", "EvmRpcChain"]
