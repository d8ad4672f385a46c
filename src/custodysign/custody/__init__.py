"""Custody service clients."""

from custodysign.custody.base import (
    CustodyAPIError,
    CustodyClient,
    CustodyError,
    CustodyTransaction,
    CustodyUnavailableError,
    TransactionStatus,
    VaultAddress,
)
from custodysign.custody.http import FireblocksClient

__all__ = [
    "CustodyAPIError",
    "CustodyClient",
    "CustodyError",
    "CustodyTransaction",
    "CustodyUnavailableError",
    "FireblocksClient",
    "TransactionStatus",
    "VaultAddress",
]
