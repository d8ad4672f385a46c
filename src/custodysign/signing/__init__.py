"""Custody-backed structured-data signing.

- CustodySigner: EIP-712 signing through a remote custody vault
- normalize_signature: canonical 65-byte signature encoding
- describe_request: approver-facing note for a signing job
"""

from custodysign.signing.annotator import describe_request
from custodysign.signing.base import (
    AccountIdentity,
    ResolutionError,
    SignatureFormatError,
    Signer,
    SigningError,
    SigningRejected,
    SigningRequest,
    SigningTimeout,
    SubmissionError,
    UnsupportedOperation,
)
from custodysign.signing.custody import CustodySigner
from custodysign.signing.factory import get_signer
from custodysign.signing.identity import AddressResolver
from custodysign.signing.normalizer import normalize_signature

__all__ = [
    "AccountIdentity",
    "AddressResolver",
    "CustodySigner",
    "ResolutionError",
    "SignatureFormatError",
    "Signer",
    "SigningError",
    "SigningRejected",
    "SigningRequest",
    "SigningTimeout",
    "SubmissionError",
    "UnsupportedOperation",
    "describe_request",
    "get_signer",
    "normalize_signature",
]
