"""Signature verification for EIP-712 payloads.

Recovers the signer from a canonical signature by re-deriving the EIP-712
digest locally with eth_account.
"""

from typing import Any, Mapping

from eth_account import Account
from eth_account.messages import encode_typed_data


def recover_typed_data_signer(payload: Mapping[str, Any], signature: str) -> str:
    """Recover the address that signed an EIP-712 payload.

    Args:
        payload: Full EIP-712 object (types incl. EIP712Domain, domain,
            primaryType, message), e.g. SigningRequest.to_payload()
        signature: 65-byte hex signature

    Returns:
        Checksummed signer address
    """
    signable = encode_typed_data(full_message=dict(payload))
    return Account.recover_message(signable, signature=signature)


def verify_typed_data_signature(payload: Mapping[str, Any], signature: str, address: str) -> bool:
    """Check that ``signature`` over ``payload`` was produced by ``address``."""
    return recover_typed_data_signer(payload, signature).lower() == address.lower()
