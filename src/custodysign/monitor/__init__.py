"""Custody transaction lifecycle monitoring."""

from custodysign.monitor.factory import get_monitor
from custodysign.monitor.lifecycle import (
    ChainConfirmationError,
    CustodyFailure,
    FailurePhase,
    MonitorError,
    MonitorResult,
    MonitorTimeout,
    TransactionMonitor,
)

__all__ = [
    "ChainConfirmationError",
    "CustodyFailure",
    "FailurePhase",
    "MonitorError",
    "MonitorResult",
    "MonitorTimeout",
    "TransactionMonitor",
    "get_monitor",
]
