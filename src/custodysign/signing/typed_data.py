"""EIP-712 envelope construction.

Callers usually pass the domain and their own types only (as ethers and
eth_account allow). The custody API needs the full object, so the
EIP712Domain type and the primary type are filled in here.
"""

import logging
import re
from typing import Any, Mapping, Optional

from custodysign.signing.base import SigningRequest

logger = logging.getLogger(__name__)

DOMAIN_TYPE = "EIP712Domain"

# Canonical domain field order and types
DOMAIN_FIELDS = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)

_ARRAY_SUFFIX = re.compile(r"(\[\d*\])+$")


def populated_domain(domain: Mapping[str, Any]) -> dict[str, Any]:
    """Keep the known domain fields that have a value."""
    return {name: domain[name] for name, _ in DOMAIN_FIELDS if domain.get(name) is not None}


def domain_type_for(domain: Mapping[str, Any]) -> list[dict[str, str]]:
    """Build the EIP712Domain descriptor from populated domain fields only."""
    return [
        {"name": name, "type": type_name}
        for name, type_name in DOMAIN_FIELDS
        if domain.get(name) is not None
    ]


def _base_type(type_name: str) -> str:
    return _ARRAY_SUFFIX.sub("", type_name)


def select_primary_type(types: Mapping[str, list], primary_type: Optional[str] = None) -> str:
    """Pick the primary type of a schema.

    Rules, in order:
    1. An explicit primary_type (must be declared in types)
    2. The only non-domain type
    3. The only non-domain type not referenced by another type's fields
    4. The first declared of several unreferenced types (logged)
    5. EIP712Domain when the schema declares nothing else
    """
    if primary_type is not None:
        if primary_type not in types:
            raise ValueError(f"Primary type {primary_type!r} is not declared in types")
        return primary_type

    candidates = [name for name in types if name != DOMAIN_TYPE]
    if not candidates:
        return DOMAIN_TYPE
    if len(candidates) == 1:
        return candidates[0]

    referenced = set()
    for name in candidates:
        for entry in types[name] or []:
            field_type = _base_type(str(entry.get("type", "")))
            if field_type != name:
                referenced.add(field_type)

    roots = [name for name in candidates if name not in referenced]
    if len(roots) == 1:
        return roots[0]

    chosen = (roots or candidates)[0]
    logger.warning(
        f"Ambiguous primary type among {roots or candidates}, using first declared: {chosen}"
    )
    return chosen


def build_request(
    domain: Mapping[str, Any],
    types: Mapping[str, list],
    message: Mapping[str, Any],
    primary_type: Optional[str] = None,
) -> SigningRequest:
    """Build the full EIP-712 envelope for a signing call."""
    full_types = {name: [dict(entry) for entry in fields] for name, fields in types.items()}
    if DOMAIN_TYPE not in full_types:
        full_types[DOMAIN_TYPE] = domain_type_for(domain)

    return SigningRequest(
        domain=populated_domain(domain),
        types=full_types,
        primary_type=select_primary_type(full_types, primary_type),
        message=dict(message),
    )


def to_jsonable(value: Any) -> Any:
    """Convert bytes and tuples so the payload survives JSON encoding."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value
