"""Base interface for on-chain confirmation queries."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class ChainReceipt:
    """Inclusion receipt of a mined transaction."""

    tx_hash: str
    block_number: int
    status: Optional[int] = None  # 1 = success, 0 = reverted, None = unknown

    @property
    def succeeded(self) -> Optional[bool]:
        if self.status is None:
            return None
        return self.status == 1


class ChainQuery(ABC):
    """Read-only view of a chain, used to count confirmations."""

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        """Get the receipt of a transaction.

        Returns:
            Receipt, or None if the transaction is not mined yet
        """
        pass

    @abstractmethod
    async def get_block_height(self) -> int:
        """Get the current chain height."""
        pass

    async def aclose(self) -> None:
        return None


class ChainQueryError(Exception):
    """Exception raised when the chain cannot be queried."""
    pass
