"""
EIP-712 typed-data envelopes for the two permit standards.

Each envelope renders to the ``{types, primaryType, domain, message}`` layout
that ``Account.sign_typed_data(full_message=...)`` and ``eth_signTypedData_v4``
both accept. Integers stay Python ints in ``to_dict()``; the wallet forms
carry them as decimal strings.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass
class EIP712Domain:
    """
    Domain binding a signature to one contract on one chain.

    ``version`` is optional because some standards (Permit2) omit the field
    entirely; an omitted version is left out of both the domain dict and the
    ``EIP712Domain`` type list rather than sent as an empty string.
    """
    name: str
    chainId: int
    verifyingContract: str
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        domain: Dict[str, Any] = {"name": self.name}
        if self.version is not None:
            domain["version"] = self.version
        domain["chainId"] = self.chainId
        domain["verifyingContract"] = self.verifyingContract
        return domain

    def type_fields(self) -> List[Dict[str, str]]:
        fields = [{"name": "name", "type": "string"}]
        if self.version is not None:
            fields.append({"name": "version", "type": "string"})
        fields.append({"name": "chainId", "type": "uint256"})
        fields.append({"name": "verifyingContract", "type": "address"})
        return fields


def _stringify_uints(value: Any, schema: Dict[str, List[Dict[str, str]]], type_name: str) -> Any:
    """Render every uint field of ``value`` as a decimal string, following ``schema``."""
    if type_name in schema:
        return {
            f["name"]: _stringify_uints(value[f["name"]], schema, f["type"])
            for f in schema[type_name]
            if f["name"] in value
        }
    if type_name.startswith("uint") or type_name.startswith("int"):
        return str(value)
    return value


def to_wallet_typed_data(full_message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Copy of a ``{types, primaryType, domain, message}`` payload with every
    integer field rendered as a decimal string.

    Wallets parse ``eth_signTypedData_v4`` payloads as JSON in a JavaScript
    runtime where integers above 2**53 lose precision; decimal strings are
    encoded canonically as uint256 by every wallet.
    """
    types = full_message["types"]
    return {
        "types": types,
        "primaryType": full_message["primaryType"],
        "domain": _stringify_uints(full_message["domain"], types, "EIP712Domain"),
        "message": _stringify_uints(full_message["message"], types, full_message["primaryType"]),
    }


class _TypedDataMixin:
    """Shared serialisation for typed-data envelopes."""

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_wallet_dict(self) -> Dict[str, Any]:
        """Same structure as ``to_dict()`` with integers as decimal strings."""
        return to_wallet_typed_data(self.to_dict())

    def to_wallet_json(self) -> str:
        """JSON string accepted by ``eth_signTypedData_v4``."""
        return json.dumps(self.to_wallet_dict(), separators=(",", ":"))


@dataclass
class PermitMessage:
    """The EIP-2612 ``Permit(owner, spender, value, nonce, deadline)`` struct."""
    owner: str
    spender: str
    value: int
    nonce: int
    deadline: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "spender": self.spender,
            "value": self.value,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


@dataclass
class EIP2612TypedData(_TypedDataMixin):
    """
    EIP-712 typed data for an EIP-2612 ``Permit``.

    ``to_dict()`` produces ``{types, primaryType, domain, message}`` directly
    consumable by ``eth_account.Account.sign_typed_data(full_message=...)``.

    Attributes:
        domain: EIP712Domain carrying the token's on-chain ``name()``,
            version ``"1"``, the chain id and the token address.
        message: PermitMessage carrying owner, spender, value, nonce, deadline.
        primary_type: The primary EIP-712 type (always "Permit").
    """
    domain: EIP712Domain
    message: PermitMessage

    primary_type: str = "Permit"

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "Permit": [
                {"name": "owner", "type": "address"},
                {"name": "spender", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "nonce", "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
            ],
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": {"EIP712Domain": self.domain.type_fields(), **self.types},
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }


@dataclass
class Permit2TypedData(_TypedDataMixin):
    """
    EIP-712 typed-data container for a Permit2 ``PermitTransferFrom`` authorization.

    The domain follows the canonical Permit2 convention: ``name="Permit2"``
    with no ``version`` field. Types embed both ``PermitTransferFrom`` and its
    nested ``TokenPermissions`` sub-struct.

    Attributes:
        chain_id:            EVM network ID.
        verifying_contract:  Address of the deployed Permit2 contract.
        spender:             Address allowed to pull the tokens (the bank).
        token:               Token the bank may pull.
        amount:              Maximum the bank may pull, in smallest units.
        nonce:               Client-chosen Permit2 nonce; consumed on first use.
        deadline:            Last unix second at which the signature is usable.
    """

    chain_id: int
    verifying_contract: str
    spender: str
    token: str
    amount: int
    nonce: int
    deadline: int

    primary_type: str = "PermitTransferFrom"

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "PermitTransferFrom": [
                {"name": "permitted", "type": "TokenPermissions"},
                {"name": "spender",   "type": "address"},
                {"name": "nonce",     "type": "uint256"},
                {"name": "deadline",  "type": "uint256"},
            ],
            "TokenPermissions": [
                {"name": "token",  "type": "address"},
                {"name": "amount", "type": "uint256"},
            ],
        }
    )

    @property
    def domain(self) -> EIP712Domain:
        return EIP712Domain(
            name="Permit2",
            chainId=self.chain_id,
            verifyingContract=self.verifying_contract,
        )

    def to_dict(self) -> Dict[str, Any]:
        """The owner is not part of the message; Permit2 recovers it from the signature."""
        domain = self.domain
        return {
            "types": {"EIP712Domain": domain.type_fields(), **self.types},
            "primaryType": self.primary_type,
            "domain": domain.to_dict(),
            "message": {
                "permitted": {
                    "token": self.token,
                    "amount": self.amount,
                },
                "spender": self.spender,
                "nonce": self.nonce,
                "deadline": self.deadline,
            },
        }
