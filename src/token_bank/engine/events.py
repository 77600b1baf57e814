"""
Event-driven notification with typed events and an explicit state table.

Orchestrator runs publish a ``StateChangedEvent`` for every transition and
presentation code publishes ``NotificationEvent`` for user-facing messages.
Dependencies are injected separately from event data.
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Callable, Optional, List, Awaitable, FrozenSet

from pydantic import BaseModel

from ..adapters.bases import ChainReader, TransactionSender, TypedDataSigner
from ..adapters.evm.constants import TokenBankSettings
from ..adapters.evm.schemas import BalanceSnapshot
from ..adapters.evm.signatures import generate_permit2_nonce
from .exceptions import FailureKind, InvalidTransition

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    VALIDATING_INPUT = "validating_input"
    CHECKING_ALLOWANCE = "checking_allowance"
    APPROVING = "approving"
    AWAITING_APPROVAL_CONFIRMATION = "awaiting_approval_confirmation"
    REQUESTING_SIGNATURE = "requesting_signature"
    DECODING_SIGNATURE = "decoding_signature"
    SUBMITTING_DEPOSIT = "submitting_deposit"
    AWAITING_DEPOSIT_CONFIRMATION = "awaiting_deposit_confirmation"
    SUBMITTING_WITHDRAWAL = "submitting_withdrawal"
    AWAITING_WITHDRAWAL_CONFIRMATION = "awaiting_withdrawal_confirmation"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


TERMINAL_STATES: FrozenSet[OrchestratorState] = frozenset({
    OrchestratorState.SUCCEEDED,
    OrchestratorState.FAILED,
    OrchestratorState.PENDING,
})

_S = OrchestratorState

#: Allowed forward transitions. FAILED is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: Dict[OrchestratorState, FrozenSet[OrchestratorState]] = {
    _S.IDLE: frozenset({_S.VALIDATING_INPUT}),
    _S.VALIDATING_INPUT: frozenset({
        _S.CHECKING_ALLOWANCE,
        _S.REQUESTING_SIGNATURE,
        _S.SUBMITTING_DEPOSIT,
        _S.SUBMITTING_WITHDRAWAL,
    }),
    _S.CHECKING_ALLOWANCE: frozenset({_S.APPROVING, _S.REQUESTING_SIGNATURE, _S.SUBMITTING_DEPOSIT}),
    _S.APPROVING: frozenset({_S.AWAITING_APPROVAL_CONFIRMATION}),
    _S.AWAITING_APPROVAL_CONFIRMATION: frozenset({
        _S.REQUESTING_SIGNATURE,
        _S.SUBMITTING_DEPOSIT,
        _S.PENDING,
    }),
    _S.REQUESTING_SIGNATURE: frozenset({_S.DECODING_SIGNATURE, _S.SUBMITTING_DEPOSIT}),
    _S.DECODING_SIGNATURE: frozenset({_S.SUBMITTING_DEPOSIT}),
    _S.SUBMITTING_DEPOSIT: frozenset({_S.AWAITING_DEPOSIT_CONFIRMATION}),
    _S.AWAITING_DEPOSIT_CONFIRMATION: frozenset({_S.SUCCEEDED, _S.PENDING}),
    _S.SUBMITTING_WITHDRAWAL: frozenset({_S.AWAITING_WITHDRAWAL_CONFIRMATION}),
    _S.AWAITING_WITHDRAWAL_CONFIRMATION: frozenset({_S.SUCCEEDED, _S.PENDING}),
}


def check_transition(current: OrchestratorState, requested: OrchestratorState) -> None:
    """
    Raise ``InvalidTransition`` unless ``current -> requested`` is allowed.

    Terminal states have no outgoing transitions.
    """
    if current in TERMINAL_STATES:
        raise InvalidTransition(current, requested)
    if requested is OrchestratorState.FAILED:
        return
    if requested not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current, requested)


class OperationKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class StrategyKind(str, Enum):
    """The three ways a deposit can be authorized."""
    APPROVE_THEN_DEPOSIT = "approve_then_deposit"
    EIP2612_PERMIT_DEPOSIT = "eip2612_permit_deposit"
    PERMIT2_PERMIT_DEPOSIT = "permit2_permit_deposit"


class OperationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DECLINED = "declined"
    INVALID = "invalid"
    PENDING = "pending"


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class BaseEvent(ABC):
    """Marker for anything published on an ``EventBus``; subclasses keep a short repr."""

    @abstractmethod
    def __repr__(self) -> str:
        ...


class StateChangedEvent(BaseModel, BaseEvent):
    """An orchestrator run moved from one state to the next."""
    operation_id: str
    operation: OperationKind
    strategy: Optional[StrategyKind] = None
    previous: OrchestratorState
    current: OrchestratorState
    detail: Optional[str] = None

    def __repr__(self) -> str:
        return f"StateChangedEvent({self.operation_id[:8]}: {self.previous.value} -> {self.current.value})"


class NotificationEvent(BaseModel, BaseEvent):
    """User-facing success/error message."""
    level: NotificationLevel
    message: str
    operation_id: Optional[str] = None

    def __repr__(self) -> str:
        return f"NotificationEvent(level={self.level.value}, message={self.message!r})"


class OperationResult(BaseModel):
    """
    Outcome of one orchestrator invocation.

    Attributes:
        operation_id: Identifier shared with the run's ``StateChangedEvent``s.
        operation: Deposit or withdraw.
        strategy: Deposit strategy; None for withdrawals.
        status: Externally visible outcome.
        final_state: Terminal state reached by the run.
        message: User-facing message.
        failure_kind: Classification for failed runs, None otherwise.
        error_detail: Technical detail of the failure (never shown verbatim to users).
        approval_tx_hash: Hash of the approval transaction, if one was sent.
        tx_hash: Hash of the deposit/withdraw transaction, if one was sent.
        value: Parsed amount in smallest units, once validation passed.
        transitions: Every state visited, in order, starting at ``IDLE``.
        balances: Balances refreshed after success; None otherwise or if the refresh failed.
    """
    operation_id: str
    operation: OperationKind
    strategy: Optional[StrategyKind] = None
    status: OperationStatus
    final_state: OrchestratorState
    message: str
    failure_kind: Optional[FailureKind] = None
    error_detail: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    tx_hash: Optional[str] = None
    value: Optional[int] = None
    transitions: List[OrchestratorState] = []
    balances: Optional[BalanceSnapshot] = None

    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED


@dataclass(frozen=True)
class Dependencies:
    """Chain capabilities and ambient services shared by every run.

    ``clock`` and ``nonce_factory`` are injectable so deadlines and Permit2
    nonces are deterministic under test.
    """
    reader: ChainReader
    sender: Optional[TransactionSender] = None
    signer: Optional[TypedDataSigner] = None
    settings: TokenBankSettings = field(default_factory=TokenBankSettings)
    clock: Callable[[], float] = time.time
    nonce_factory: Callable[[], int] = generate_permit2_nonce


# State-change events fan out to every interested party.

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


def _require_coroutine(func: Callable[..., Any]) -> None:
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"expected an async def callable, got {type(func).__name__}")


class EventBus:
    """
    Routes events to async callbacks keyed by the event's exact class.

    Hooks are awaited first and are the only callbacks that may abort the
    publisher (tests use this to inject faults). Subscribers run concurrently
    afterwards; their failures are logged and contained.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[type, List[EventHandlerFunc]] = {}
        self._hooks: Dict[type, List[EventHookFunc]] = {}

    def subscribe(self, event_class: type, handler: EventHandlerFunc) -> None:
        _require_coroutine(handler)
        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type, hook_func: EventHookFunc) -> None:
        _require_coroutine(hook_func)
        self._hooks.setdefault(event_class, []).append(hook_func)

    async def publish(self, event: BaseEvent, deps: Dependencies) -> List[Any]:
        """
        Await the hooks, then run every subscriber concurrently.

        Returns the subscribers' results in subscription order. A subscriber
        that raises is logged and left out of the results; it never reaches
        the publisher.
        """
        for hook_func in self._hooks.get(type(event), []):
            await hook_func(event, deps)

        handlers = list(self._subscribers.get(type(event), []))
        outcomes = await asyncio.gather(*(handler(event, deps) for handler in handlers), return_exceptions=True)

        results = []
        for handler, outcome in zip(handlers, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Subscriber %s failed on %r",
                    getattr(handler, "__qualname__", handler),
                    event,
                    exc_info=outcome,
                )
                continue
            results.append(outcome)
        return results
