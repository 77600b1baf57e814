"""
Deployment settings and amount conversion for the EVM token bank

Holds the single pre-configured deployment (chain, RPC endpoint, token, bank
and Permit2 addresses), protocol constants, environment loading and the
canonical conversion between decimal amount strings and smallest-unit
integers.
"""

import os
from decimal import Decimal, DecimalException, Inexact, InvalidOperation, localcontext
from pathlib import Path
from typing import Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator
from web3 import Web3

from ...engine.exceptions import ConfigurationError

dotenv.load_dotenv()

#: Canonical Uniswap Permit2 singleton address (same on all EVM networks).
PERMIT2_ADDRESS: str = "0x000000000022D473030F116dDEE9F6B43aC78BA3"

#: Maximum uint256, used as the unbounded one-time Permit2 approval.
MAX_UINT256: int = 2**256 - 1

#: Permit2 nonces are drawn uniformly from [0, PERMIT2_NONCE_UPPER_BOUND).
PERMIT2_NONCE_UPPER_BOUND: int = 10**9

#: Validity window for signed permits, in seconds.
DEFAULT_DEADLINE_WINDOW: int = 3600

#: EIP-2612 domain version used by the deployed token.
EIP2612_DOMAIN_VERSION: str = "1"

SEPOLIA_CHAIN_ID: int = 11155111
SEPOLIA_PUBLIC_RPC_URL: str = "https://ethereum-sepolia-rpc.publicnode.com"
DEFAULT_TOKEN_ADDRESS: str = "0xDE784e5EEbdA4cBCe967eA51CF8815f248C9A6C5"
DEFAULT_BANK_ADDRESS: str = "0xd3AA7Bda2f03DA385Befb7ab8EaAECE4B3d6b8A3"
DEFAULT_TOKEN_DECIMALS: int = 18
DEFAULT_SESSION_PATH: str = str(Path.home() / ".token_bank" / "session.json")

# Enough significant digits for any uint256 value.
_DECIMAL_PRECISION = 100


class TokenBankSettings(BaseModel):
    """
    Deployment configuration for the token bank client.

    Every address is validated and normalised to checksum form. Defaults
    describe the Sepolia deployment.

    Attributes:
        chain_id: EVM network ID used in every EIP-712 domain.
        rpc_url: JSON-RPC endpoint for reads and receipts.
        token_address: ERC-20 (EIP-2612 capable) token contract.
        bank_address: Custodial bank contract receiving deposits.
        permit2_address: Permit2 singleton contract.
        token_decimals: Fractional digits of the token.
        deadline_window: Seconds a signed permit stays valid.
        confirmation_timeout: Seconds to wait for a receipt before reporting
            the transaction as still pending.
        poll_latency: Seconds between receipt polls.
        request_timeout: HTTP timeout for RPC requests.
        session_path: File holding the last connected account.
    """

    chain_id: int = Field(default=SEPOLIA_CHAIN_ID, ge=1)
    rpc_url: str = Field(default=SEPOLIA_PUBLIC_RPC_URL)
    token_address: str = Field(default=DEFAULT_TOKEN_ADDRESS)
    bank_address: str = Field(default=DEFAULT_BANK_ADDRESS)
    permit2_address: str = Field(default=PERMIT2_ADDRESS)
    token_decimals: int = Field(default=DEFAULT_TOKEN_DECIMALS, ge=0, le=77)
    deadline_window: int = Field(default=DEFAULT_DEADLINE_WINDOW, gt=0)
    confirmation_timeout: float = Field(default=120.0, gt=0)
    poll_latency: float = Field(default=2.0, gt=0)
    request_timeout: int = Field(default=60, gt=0)
    session_path: str = Field(default=DEFAULT_SESSION_PATH)

    @field_validator("token_address", "bank_address", "permit2_address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"not a valid EVM address: {value!r}")
        return Web3.to_checksum_address(value)

    @classmethod
    def build(cls, **values) -> "TokenBankSettings":
        """
        Construct settings, raising ``ConfigurationError`` instead of
        pydantic's ``ValidationError``.
        """
        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid token bank configuration: {e}") from e

    @classmethod
    def from_env(cls) -> "TokenBankSettings":
        """
        Build settings from ``TOKEN_BANK_*`` environment variables.

        Unset variables keep their defaults. A ``.env`` file in the working
        directory is loaded on import.

        Example:
            # .env
            TOKEN_BANK_RPC_URL=https://sepolia.infura.io/v3/<key>
            TOKEN_BANK_CONFIRMATION_TIMEOUT=300
        """
        env_map = {
            "chain_id": "TOKEN_BANK_CHAIN_ID",
            "rpc_url": "TOKEN_BANK_RPC_URL",
            "token_address": "TOKEN_BANK_TOKEN_ADDRESS",
            "bank_address": "TOKEN_BANK_BANK_ADDRESS",
            "permit2_address": "TOKEN_BANK_PERMIT2_ADDRESS",
            "token_decimals": "TOKEN_BANK_TOKEN_DECIMALS",
            "deadline_window": "TOKEN_BANK_DEADLINE_WINDOW",
            "confirmation_timeout": "TOKEN_BANK_CONFIRMATION_TIMEOUT",
            "poll_latency": "TOKEN_BANK_POLL_LATENCY",
            "session_path": "TOKEN_BANK_SESSION_PATH",
        }
        values = {}
        for field_name, env_name in env_map.items():
            raw = os.getenv(env_name)
            if raw is not None and raw.strip() != "":
                values[field_name] = raw.strip()
        return cls.build(**values)


def get_private_key_from_env() -> Optional[str]:
    """
    Load the signing key from the ``EVM_PRIVATE_KEY`` environment variable.

    Returns:
        str: Private key from environment, or None if not configured
    """
    return os.getenv("EVM_PRIVATE_KEY")


def _as_decimal(raw: int | str | Decimal, label: str) -> Decimal:
    if isinstance(raw, float):
        raise ValueError(f"{label} must not be a float")
    try:
        parsed = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"{label} {raw!r} is not a decimal number") from e
    if not parsed.is_finite() or parsed < 0:
        raise ValueError(f"{label} {raw!r} must be a finite, non-negative number")
    return parsed


def _check_decimals(decimals: int) -> None:
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError(f"token decimals must be a non-negative int, got {decimals!r}")


def amount_to_value(*, amount: int | str | Decimal, decimals: int) -> int:
    """Scale a human-readable ``amount`` (e.g. ``"1.5"``) to smallest units.

    Floats are rejected: an amount must arrive as a decimal string, an int or
    a ``Decimal`` so no binary rounding can creep into a transfer. Amounts
    finer than one smallest unit, or too large for a uint256, raise
    ``ValueError`` instead of rounding or overflowing.
    """
    _check_decimals(decimals)
    parsed = _as_decimal(amount, "amount")

    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        ctx.traps[Inexact] = True
        try:
            scaled = parsed.scaleb(decimals)
        except DecimalException as e:
            raise ValueError(f"amount {amount!r} cannot be scaled to {decimals} decimals") from e
        if scaled != scaled.to_integral_value():
            raise ValueError(f"amount {amount!r} has more than {decimals} fractional digits")
        if scaled > MAX_UINT256:
            raise ValueError(f"amount {amount!r} does not fit in a uint256")
        return int(scaled)


def value_to_amount(*, value: int | str | Decimal, decimals: int) -> Decimal:
    """Smallest-unit ``value`` back to a display ``Decimal`` with no trailing zeros."""
    _check_decimals(decimals)
    parsed = _as_decimal(value, "value")
    if parsed != parsed.to_integral_value():
        raise ValueError(f"value {value!r} is not a whole number of smallest units")

    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        amount = parsed.scaleb(-decimals)
        if amount == amount.to_integral_value():
            return amount.quantize(Decimal(1))
        return amount.normalize()
