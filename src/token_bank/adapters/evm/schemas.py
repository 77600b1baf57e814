"""
Pydantic models for values exchanged between the orchestrator and the chain
capabilities. All classes inherit from the base schema hierarchy in
``schemas.bases``.

Signature classes:
    - EVMECDSASignature: Decomposed (r, s, v) signature as consumed by the
      bank's ``permitDeposit`` entry point.

Permit classes:
    - Permit2TransferPermit: The ``PermitTransferFrom`` struct submitted to
      ``depositWithPermit2`` alongside the raw signature bytes.

Result classes:
    - EVMTransactionConfirmation: Receipt summary of a mined transaction.
    - BalanceSnapshot: Wallet balance, symbol and bank deposit of an account.
"""

from decimal import Decimal
from typing import Optional, Tuple, Literal

from pydantic import Field

from ...schemas.bases import BaseTransactionConfirmation, CanonicalModel
from .constants import value_to_amount


class EVMECDSASignature(CanonicalModel):
    """
    Decomposed EVM ECDSA signature (r, s, v).

    ``v`` is the raw recovery byte exactly as it appeared in the 65-byte
    signature; no 0/1 <-> 27/28 normalisation is applied.

    Attributes:
        r: r component, 0x-prefixed 64-char hex string (bytes [0, 32)).
        s: s component, 0x-prefixed 64-char hex string (bytes [32, 64)).
        v: Recovery byte (byte 64) as an unsigned 8-bit integer.

    Example::

        sig = EVMECDSASignature(r="0x" + "a" * 64, s="0x" + "b" * 64, v=27)
        sig.to_packed_hex()  # "0x" + "a" * 64 + "b" * 64 + "1b"
    """

    r: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$", description="Signature r component (32 bytes)")
    s: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$", description="Signature s component (32 bytes)")
    v: int = Field(..., ge=0, le=255, description="Recovery byte")

    def to_packed_hex(self) -> str:
        """
        Encode r/s/v back into a packed 65-byte hex string (``r || s || v``).

        Returns:
            0x-prefixed 132-character hex string.
        """
        return "0x" + self.r[2:] + self.s[2:] + format(self.v, "02x")

    def to_contract_args(self) -> Tuple[int, bytes, bytes]:
        """Return ``(v, r, s)`` in the order ``permitDeposit`` expects them, r/s as raw bytes32."""
        return self.v, bytes.fromhex(self.r[2:]), bytes.fromhex(self.s[2:])


class Permit2TransferPermit(CanonicalModel):
    """
    Permit2 ``PermitTransferFrom`` struct as passed to ``depositWithPermit2``.

    Attributes:
        permit_type: Always ``"Permit2"``.
        token: ERC-20 token contract address.
        amount: Permitted amount in the token's smallest unit.
        nonce: Client-chosen Permit2 nonce.
        deadline: Unix timestamp after which the permit is invalid.
    """

    permit_type: Literal["Permit2"] = Field(default="Permit2", description="Authorization type identifier")
    token: str = Field(..., description="ERC-20 token contract address")
    amount: int = Field(..., ge=0, description="Permitted amount in the token's smallest unit")
    nonce: int = Field(..., ge=0, description="Permit2 nonce (replay protection)")
    deadline: int = Field(..., ge=0, description="Unix timestamp after which this permit is invalid")

    def to_contract_args(self) -> Tuple[Tuple[str, int], int, int]:
        """Return the ABI tuple ``((token, amount), nonce, deadline)``."""
        return (self.token, self.amount), self.nonce, self.deadline


class EVMTransactionConfirmation(BaseTransactionConfirmation):
    """
    Receipt summary returned by ``wait_for_confirmation()``.

    Receipt fields a node omits stay None; ``transaction_fee`` is
    ``gasUsed * effectiveGasPrice`` in wei.
    """

    confirmation_type: Literal["evm"] = "evm"
    tx_hash: str = Field(..., description="0x-prefixed transaction hash")
    block_number: Optional[int] = Field(None, ge=0)
    gas_used: Optional[int] = Field(None, ge=0)
    transaction_fee: Optional[int] = Field(None, ge=0, description="Fee paid, in wei")
    from_address: Optional[str] = Field(None, description="Receipt ``from``")
    to_address: Optional[str] = Field(None, description="Receipt ``to`` (the called contract)")


class BalanceSnapshot(CanonicalModel):
    """
    Balances of one account, always fetched together.

    Attributes:
        account: Owner address the balances belong to.
        token_balance: Wallet balance in smallest units.
        token_symbol: Token ``symbol()``.
        deposit_balance: Amount held by the bank for the account, smallest units.
        decimals: Token decimals used for display conversion.
    """

    account: str
    token_balance: int = Field(..., ge=0)
    token_symbol: str
    deposit_balance: int = Field(..., ge=0)
    decimals: int = Field(..., ge=0)

    @property
    def token_amount(self) -> Decimal:
        return value_to_amount(value=self.token_balance, decimals=self.decimals)

    @property
    def deposit_amount(self) -> Decimal:
        return value_to_amount(value=self.deposit_balance, decimals=self.decimals)
