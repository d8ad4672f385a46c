"""Human-readable notes for signing jobs.

The note is shown to approvers and kept in the custody audit trail. It is
best effort only: an unrecognized message gets a generic label, and nothing
here may raise.
"""

import logging
from typing import Any, Mapping, Optional

from custodysign.signing.base import SigningRequest

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 120

_SIDE_FIELDS = ("isBuy", "is_buy", "b", "side")
_SIZE_FIELDS = ("sz", "size", "quantity", "qty", "amount")
_PRICE_FIELDS = ("limitPx", "limit_px", "price", "p")
_ASSET_FIELDS = ("coin", "asset", "symbol", "token", "a")
_DESTINATION_FIELDS = ("destination", "recipient", "to")


def describe_request(request: SigningRequest) -> str:
    """Build a short label for a signing request."""
    domain_name = "Unknown"
    label = None
    try:
        domain_name = str(request.domain.get("name") or "Unknown")
        message = request.message
        label = (
            _describe_l1_action(message, domain_name)
            or _describe_order(message)
            or _describe_transfer(message, request.primary_type)
        )
    except Exception as e:
        logger.debug(f"Could not describe signing request: {e}")

    if not label:
        label = f"EIP-712 signature: {domain_name}"

    if len(label) > MAX_NOTE_LENGTH:
        label = label[: MAX_NOTE_LENGTH - 3] + "..."
    return label


def _first(message: Mapping[str, Any], names: tuple) -> Optional[Any]:
    for name in names:
        if message.get(name) is not None:
            return message[name]
    return None


def _short(value: Any, length: int = 10) -> str:
    text = str(value)
    return text if len(text) <= length else f"{text[:length]}..."


def _describe_l1_action(message: Mapping[str, Any], domain_name: str) -> Optional[str]:
    # Hyperliquid hashes L1 actions into connectionId, so the order details
    # are not visible in the signed message.
    connection_id = message.get("connectionId")
    if connection_id is None:
        return None
    if isinstance(connection_id, (bytes, bytearray)):
        connection_id = "0x" + bytes(connection_id).hex()
    return f"L1 action signature ({domain_name}, id: {_short(connection_id)})"


def _describe_order(message: Mapping[str, Any]) -> Optional[str]:
    side = _first(message, _SIDE_FIELDS)
    size = _first(message, _SIZE_FIELDS)
    if side is None or size is None:
        return None

    if isinstance(side, bool):
        side = "BUY" if side else "SELL"
    side = str(side).upper()
    if side in ("B", "BID"):
        side = "BUY"
    elif side in ("A", "S", "ASK"):
        side = "SELL"

    label = f"Order: {side} {size}"
    asset = _first(message, _ASSET_FIELDS)
    if asset is not None:
        label += f" {asset}"
    price = _first(message, _PRICE_FIELDS)
    if price is not None:
        label += f" @ {price}"
    return label


def _describe_transfer(message: Mapping[str, Any], primary_type: str) -> Optional[str]:
    amount = message.get("amount")
    destination = _first(message, _DESTINATION_FIELDS)
    if amount is None or destination is None:
        return None

    kind = "Withdrawal" if "withdraw" in primary_type.lower() else primary_type
    asset = _first(message, _ASSET_FIELDS)
    amount_text = f"{amount} {asset}" if asset is not None else str(amount)
    return f"{kind}: {amount_text} to {_short(destination)}"
