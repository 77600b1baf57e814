"""
Deposit strategies.

Each strategy is a small variant object describing how its deposit is
authorized: which spender (if any) must hold an allowance, what to approve
when it does not, which typed data to sign, whether the signature has to be
split into (v, r, s), and how the final bank call is assembled. The
orchestrator walks the same state machine for all three and only asks the
strategy for these answers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from ..adapters.evm.constants import MAX_UINT256, TokenBankSettings
from ..adapters.evm.schemas import EVMECDSASignature, Permit2TransferPermit
from ..adapters.evm.signatures import (
    build_permit2_typed_data,
    compute_deadline,
    fetch_eip2612_typed_data,
    signature_to_bytes,
)
from ..adapters.evm.standards import EIP2612TypedData, Permit2TypedData
from .events import Dependencies, StrategyKind


@dataclass(frozen=True)
class ContractCall:
    """A state-changing call ready for ``TransactionSender.send_transaction``."""
    address: str
    function_name: str
    args: Tuple[Any, ...]


@dataclass(frozen=True)
class Authorization:
    """Typed data to sign plus the values the deposit call must repeat."""
    typed_data: Union[EIP2612TypedData, Permit2TypedData]
    deadline: int
    nonce: int

    def to_dict(self) -> Dict[str, Any]:
        return self.typed_data.to_dict()


class DepositStrategy(ABC):
    """
    Per-variant answers for one deposit path.

    Class attributes:
        kind: Tag identifying the variant.
        requires_signature: Whether a typed-data signature is requested.
        decodes_signature: Whether the signature is split into (v, r, s)
            before submission (EIP-2612) or forwarded as raw bytes (Permit2).
    """

    kind: ClassVar[StrategyKind]
    requires_signature: ClassVar[bool] = False
    decodes_signature: ClassVar[bool] = False

    def allowance_spender(self, settings: TokenBankSettings) -> Optional[str]:
        """Spender whose allowance gates the deposit, or None when no allowance check applies."""
        return None

    def approval_amount(self, value: int) -> int:
        """Amount to approve when the allowance is insufficient."""
        return value

    async def build_authorization(self, deps: Dependencies, owner: str, value: int) -> Optional[Authorization]:
        return None

    @abstractmethod
    def build_deposit_call(
        self,
        settings: TokenBankSettings,
        owner: str,
        value: int,
        authorization: Optional[Authorization] = None,
        signature: Optional[str] = None,
        decoded: Optional[EVMECDSASignature] = None,
    ) -> ContractCall:
        pass


class ApproveThenDeposit(DepositStrategy):
    """Classic path: ``approve(bank, value)`` when needed, then ``deposit(value)``."""

    kind = StrategyKind.APPROVE_THEN_DEPOSIT

    def allowance_spender(self, settings: TokenBankSettings) -> Optional[str]:
        return settings.bank_address

    def build_deposit_call(self, settings, owner, value, authorization=None, signature=None, decoded=None):
        return ContractCall(settings.bank_address, "deposit", (value,))


class Eip2612PermitDeposit(DepositStrategy):
    """
    Token-native permit: sign ``Permit(owner, bank, value, nonce, deadline)``
    and call ``permitDeposit(owner, value, deadline, v, r, s)``.

    The nonce and token name are read fresh for every attempt; no approval is
    ever sent.
    """

    kind = StrategyKind.EIP2612_PERMIT_DEPOSIT
    requires_signature = True
    decodes_signature = True

    async def build_authorization(self, deps: Dependencies, owner: str, value: int) -> Authorization:
        settings = deps.settings
        deadline = compute_deadline(settings.deadline_window, deps.clock)
        typed_data = await fetch_eip2612_typed_data(
            deps.reader,
            owner=owner,
            spender=settings.bank_address,
            value=value,
            deadline=deadline,
            chain_id=settings.chain_id,
            token_address=settings.token_address,
        )
        return Authorization(typed_data=typed_data, deadline=deadline, nonce=typed_data.message.nonce)

    def build_deposit_call(self, settings, owner, value, authorization=None, signature=None, decoded=None):
        if authorization is None or decoded is None:
            raise ValueError("permitDeposit requires a signed authorization and its decoded signature")
        v, r, s = decoded.to_contract_args()
        return ContractCall(
            settings.bank_address,
            "permitDeposit",
            (owner, value, authorization.deadline, v, r, s),
        )


class Permit2PermitDeposit(DepositStrategy):
    """
    Permit2 path: one-time unbounded ``approve(Permit2, MAX_UINT256)`` when the
    Permit2 allowance is short, then sign ``PermitTransferFrom`` and call
    ``depositWithPermit2(permit, signature, owner)`` with the raw signature.
    """

    kind = StrategyKind.PERMIT2_PERMIT_DEPOSIT
    requires_signature = True

    def allowance_spender(self, settings: TokenBankSettings) -> Optional[str]:
        return settings.permit2_address

    def approval_amount(self, value: int) -> int:
        return MAX_UINT256

    async def build_authorization(self, deps: Dependencies, owner: str, value: int) -> Authorization:
        settings = deps.settings
        deadline = compute_deadline(settings.deadline_window, deps.clock)
        nonce = deps.nonce_factory()
        typed_data = build_permit2_typed_data(
            owner=owner,
            spender=settings.bank_address,
            token=settings.token_address,
            amount=value,
            nonce=nonce,
            deadline=deadline,
            chain_id=settings.chain_id,
            permit2_address=settings.permit2_address,
        )
        return Authorization(typed_data=typed_data, deadline=deadline, nonce=nonce)

    def build_deposit_call(self, settings, owner, value, authorization=None, signature=None, decoded=None):
        if authorization is None or signature is None:
            raise ValueError("depositWithPermit2 requires a signed authorization")
        signature_bytes = signature_to_bytes(signature)
        permit = Permit2TransferPermit(
            token=settings.token_address,
            amount=value,
            nonce=authorization.nonce,
            deadline=authorization.deadline,
        )
        return ContractCall(
            settings.bank_address,
            "depositWithPermit2",
            (permit.to_contract_args(), signature_bytes, owner),
        )


_STRATEGIES: Dict[StrategyKind, DepositStrategy] = {
    StrategyKind.APPROVE_THEN_DEPOSIT: ApproveThenDeposit(),
    StrategyKind.EIP2612_PERMIT_DEPOSIT: Eip2612PermitDeposit(),
    StrategyKind.PERMIT2_PERMIT_DEPOSIT: Permit2PermitDeposit(),
}


def get_strategy(strategy: Union[DepositStrategy, StrategyKind, str]) -> DepositStrategy:
    """
    Resolve a strategy instance from an instance, a ``StrategyKind`` or its value.

    Raises:
        ValueError: If the name is unknown.
    """
    if isinstance(strategy, DepositStrategy):
        return strategy
    return _STRATEGIES[StrategyKind(strategy)]
