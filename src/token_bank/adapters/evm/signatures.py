"""
EVM Typed-Data Payloads and Signature Handling

Builds the EIP-712 payloads for the two supported permit standards, splits a
returned signature into its (r, s, v) components, and signs typed data
in-process for local-key accounts.

Exported helpers
----------------
build_eip2612_typed_data
    Deterministic EIP-2612 ``Permit`` payload from fully-known inputs.

fetch_eip2612_typed_data
    Reads the token's ``nonces(owner)`` and ``name()`` and builds the payload.

build_permit2_typed_data
    Permit2 ``PermitTransferFrom`` payload (domain without ``version``).

signature_to_bytes
    Strictly parse a 65-byte hex signature into raw bytes.

decompose_signature
    Split a 65-byte hex signature into ``EVMECDSASignature`` (r, s, v).

sign_typed_data_locally
    Sign any payload with a private key via ``eth_account``.
"""

import re
import secrets
import time
from typing import Any, Callable, Dict, Optional

from eth_account import Account

from ...engine.exceptions import SignatureFormatError, ValidationError
from ..bases import ChainReader
from .constants import EIP2612_DOMAIN_VERSION, PERMIT2_NONCE_UPPER_BOUND, DEFAULT_DEADLINE_WINDOW
from .schemas import EVMECDSASignature
from .standards import EIP712Domain, PermitMessage, EIP2612TypedData, Permit2TypedData

#: "0x" + 65 bytes * 2 hex characters.
SIGNATURE_HEX_LENGTH: int = 132

_SIGNATURE_PATTERN = re.compile(r"0[xX][0-9a-fA-F]{130}")


def _require_account(owner: Optional[str]) -> str:
    if not owner:
        raise ValidationError("No connected account; connect a wallet before signing")
    return owner


# ---------------------------------------------------------------------------
# Nonce and deadline helpers
# ---------------------------------------------------------------------------

def generate_permit2_nonce() -> int:
    """
    Draw a random Permit2 nonce in ``[0, PERMIT2_NONCE_UPPER_BOUND)``.

    Uniqueness is not tracked client-side; the Permit2 contract's nonce
    bitmap rejects a reused value.
    """
    return secrets.randbelow(PERMIT2_NONCE_UPPER_BOUND)


def compute_deadline(
    window: int = DEFAULT_DEADLINE_WINDOW,
    clock: Callable[[], float] = time.time,
) -> int:
    """Return ``now + window`` as integer unix seconds."""
    return int(clock()) + window


# ---------------------------------------------------------------------------
# EIP-2612 payload
# ---------------------------------------------------------------------------

def build_eip2612_typed_data(
    *,
    owner: Optional[str],
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
    token_name: str,
    chain_id: int,
    token_address: str,
) -> EIP2612TypedData:
    """
    Build the EIP-2612 ``Permit`` payload.

    The output depends only on the arguments, so identical inputs produce
    identical payloads.

    Args:
        owner:         Token owner (the connected account).
        spender:       Address being permitted (the bank).
        value:         Amount in the token's smallest unit.
        nonce:         The owner's current ``nonces(owner)`` value.
        deadline:      Unix timestamp after which the permit is invalid.
        token_name:    The token's on-chain ``name()``. Must match exactly or
                       the contract will reject the signature.
        chain_id:      EVM network ID.
        token_address: Token contract, the EIP-712 ``verifyingContract``.

    Returns:
        ``EIP2612TypedData`` whose ``to_dict()`` is ready for signing.

    Raises:
        ValidationError: If no owner account is available.
    """
    owner = _require_account(owner)
    domain = EIP712Domain(
        name=token_name,
        version=EIP2612_DOMAIN_VERSION,
        chainId=chain_id,
        verifyingContract=token_address,
    )
    message = PermitMessage(
        owner=owner,
        spender=spender,
        value=value,
        nonce=nonce,
        deadline=deadline,
    )
    return EIP2612TypedData(domain=domain, message=message)


async def fetch_eip2612_typed_data(
    reader: ChainReader,
    *,
    owner: Optional[str],
    spender: str,
    value: int,
    deadline: int,
    chain_id: int,
    token_address: str,
) -> EIP2612TypedData:
    """
    Read the owner's permit nonce and the token name, then build the payload.

    Both values are read fresh on every call so a retried deposit never
    reuses a consumed nonce.
    """
    owner = _require_account(owner)
    nonce = await reader.read_contract(token_address, "nonces", (owner,))
    token_name = await reader.read_contract(token_address, "name", ())
    return build_eip2612_typed_data(
        owner=owner,
        spender=spender,
        value=value,
        nonce=int(nonce),
        deadline=deadline,
        token_name=str(token_name),
        chain_id=chain_id,
        token_address=token_address,
    )


# ---------------------------------------------------------------------------
# Permit2 payload
# ---------------------------------------------------------------------------

def build_permit2_typed_data(
    *,
    owner: Optional[str],
    spender: str,
    token: str,
    amount: int,
    nonce: int,
    deadline: int,
    chain_id: int,
    permit2_address: str,
) -> Permit2TypedData:
    """
    Build the Permit2 ``PermitTransferFrom`` payload.

    The domain is ``{name: "Permit2", chainId, verifyingContract}`` with no
    ``version`` field. The owner does not appear in the message (Permit2
    recovers it from the signature) but must be present to sign at all.

    Raises:
        ValidationError: If no owner account is available.
    """
    _require_account(owner)
    return Permit2TypedData(
        chain_id=chain_id,
        verifying_contract=permit2_address,
        spender=spender,
        token=token,
        amount=amount,
        nonce=nonce,
        deadline=deadline,
    )


# ---------------------------------------------------------------------------
# Signature decoding
# ---------------------------------------------------------------------------

def signature_to_bytes(signature: Optional[str]) -> bytes:
    """
    Raw bytes of a ``0x``-prefixed 65-byte hex signature.

    The whole string must be hex digits; ``bytes.fromhex`` alone would skip
    embedded whitespace and accept a short signature padded with spaces.

    Raises:
        SignatureFormatError: If the input is missing, not a string, lacks the
            ``0x`` prefix, has the wrong length or contains non-hex characters.
    """
    if not signature or not isinstance(signature, str):
        raise SignatureFormatError("Signature is missing")
    if not signature.startswith(("0x", "0X")):
        raise SignatureFormatError("Signature must be 0x-prefixed")
    if len(signature) != SIGNATURE_HEX_LENGTH:
        raise SignatureFormatError(
            f"Signature must be {SIGNATURE_HEX_LENGTH} characters including 0x, got {len(signature)}"
        )
    if _SIGNATURE_PATTERN.fullmatch(signature) is None:
        raise SignatureFormatError("Signature is not valid hexadecimal")
    return bytes.fromhex(signature[2:])


def decompose_signature(signature: Optional[str]) -> EVMECDSASignature:
    """
    Split a 65-byte hex signature into r, s and v.

    Layout: r = bytes [0, 32), s = bytes [32, 64), v = byte 64 as an
    unsigned 8-bit integer. ``v`` is returned exactly as encoded.

    Args:
        signature: ``0x``-prefixed 132-character hex string.

    Returns:
        EVMECDSASignature with ``r``/``s`` as 0x-prefixed 64-char hex strings.

    Raises:
        SignatureFormatError: If the input is missing, not a string, lacks the
            ``0x`` prefix, has the wrong length or contains non-hex characters.
    """
    raw = signature_to_bytes(signature)
    body = signature[2:]
    return EVMECDSASignature(
        r="0x" + body[0:64],
        s="0x" + body[64:128],
        v=raw[64],
    )


# ---------------------------------------------------------------------------
# Local signer
# ---------------------------------------------------------------------------

def sign_typed_data_locally(private_key: str, full_message: Dict[str, Any]) -> str:
    """
    Sign an EIP-712 payload in-process and return the packed signature.

    Args:
        private_key:  Hex-encoded secp256k1 private key (with or without ``0x``).
        full_message: ``{types, primaryType, domain, message}`` dict, e.g.
                      ``EIP2612TypedData.to_dict()``.

    Returns:
        0x-prefixed 132-character ``r || s || v`` hex string.
    """
    signed = Account.sign_typed_data(private_key, full_message=full_message)
    return "0x" + bytes(signed.signature).hex()
