"""Signature normalization.

Custody services and signing libraries return ECDSA signatures in several
wire shapes:

- hex string of 65 bytes (r || s || v) or 64 bytes (r || s, no v)
- object with a combined 64-byte field plus a separate recovery id,
  e.g. {"fullSig": "...", "v": 0}
- object with explicit components, e.g. {"r": "0x..", "s": "0x..", "v": 1}

All of them are reduced to one canonical form: 0x + 130 hex chars,
r (32 bytes) || s (32 bytes) || v (1 byte) with v in {27, 28}.
"""

from typing import Any, Mapping, Optional, Union

from custodysign.signing.base import SignatureFormatError

SIGNATURE_LENGTH = 65
COMPONENT_LENGTH = 32
DEFAULT_V = 27

COMBINED_FIELDS = ("fullSig", "full_sig")

RawSignature = Union[str, bytes, Mapping[str, Any]]


def normalize_signature(raw: RawSignature) -> str:
    """Normalize a signature to 0x-prefixed 65-byte hex.

    Args:
        raw: Signature in any supported wire shape

    Returns:
        Canonical signature string

    Raises:
        SignatureFormatError: If the input cannot be reduced to 65 bytes
    """
    if isinstance(raw, (bytes, bytearray)):
        return _finish(_from_flat(bytes(raw)), [])

    if isinstance(raw, str):
        return _finish(_from_flat(_to_bytes(raw, "signature")), [])

    if isinstance(raw, Mapping):
        fields = [str(key) for key in raw.keys()]

        if raw.get("r") is not None and raw.get("s") is not None:
            r = _component(raw["r"], "r", fields).rjust(COMPONENT_LENGTH, b"\x00")
            s = _component(raw["s"], "s", fields).rjust(COMPONENT_LENGTH, b"\x00")
            v = _canonical_v(_parse_v(raw.get("v")), fields)
            return _finish(r + s + bytes([v]), fields)

        for name in COMBINED_FIELDS:
            if raw.get(name) is not None:
                combined = _component(raw[name], name, fields)
                if len(combined) == SIGNATURE_LENGTH - 1:
                    v = _canonical_v(_parse_v(raw.get("v")), fields)
                    return _finish(combined + bytes([v]), fields)
                return _finish(_from_flat(combined, fields), fields)

        raise SignatureFormatError("Signature object has neither r/s nor a combined field", fields=fields)

    raise SignatureFormatError(f"Unsupported signature type: {type(raw).__name__}")


def _from_flat(data: bytes, fields: Optional[list[str]] = None) -> bytes:
    """Handle a flat r || s [|| v] byte string."""
    if len(data) == SIGNATURE_LENGTH - 1:
        return data + bytes([DEFAULT_V])

    if len(data) == SIGNATURE_LENGTH:
        return data[:-1] + bytes([_canonical_v(data[-1], fields)])

    raise SignatureFormatError(
        "Invalid signature length", expected=SIGNATURE_LENGTH, actual=len(data), fields=fields
    )


def _finish(signature: bytes, fields: list[str]) -> str:
    if len(signature) != SIGNATURE_LENGTH:
        raise SignatureFormatError(
            "Invalid signature length",
            expected=SIGNATURE_LENGTH,
            actual=len(signature),
            fields=fields,
        )
    return "0x" + signature.hex()


def _component(value: Any, name: str, fields: list[str]) -> bytes:
    """Decode a signature field, rejecting empty values."""
    data = _to_bytes(value, name, fields)
    if not data:
        raise SignatureFormatError(f"Empty {name} component", fields=fields)
    return data


def _to_bytes(value: Any, name: str, fields: Optional[list[str]] = None) -> bytes:
    """Decode a hex string, int or bytes component."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)

    if isinstance(value, bool):
        raise SignatureFormatError(f"Invalid {name} component: {value!r}", fields=fields)

    if isinstance(value, int):
        if value < 0:
            raise SignatureFormatError(f"Negative {name} component", fields=fields)
        return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")

    if isinstance(value, str):
        text = value.strip()
        if text[:2].lower() == "0x":
            text = text[2:]
        if len(text) % 2:
            text = "0" + text
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise SignatureFormatError(f"Invalid hex in {name} component", fields=fields) from None

    raise SignatureFormatError(
        f"Unsupported {name} component type: {type(value).__name__}", fields=fields
    )


def _parse_v(value: Any) -> Optional[int]:
    """Parse a recovery id. Returns None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value

    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big") if value else None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            if text[:2].lower() == "0x":
                return int(text, 16)
            if text.isdigit():
                return int(text, 10)
            return int(text, 16)
        except ValueError:
            return None

    return None


def _canonical_v(v: Optional[int], fields: Optional[list[str]] = None) -> int:
    """Map a recovery id to the {27, 28} convention."""
    if v is None:
        return DEFAULT_V
    if v in (0, 1):
        return v + 27
    if v in (27, 28):
        return v
    if v >= 35:
        # EIP-155: v = chain_id * 2 + 35 + recovery_id
        return 27 + (v - 35) % 2
    raise SignatureFormatError(f"Unsupported recovery id v={v}", fields=fields)
