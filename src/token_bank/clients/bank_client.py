"""
Token bank client facade.

Binds a wallet session to a ``DepositOrchestrator`` and keeps the state a
front end needs: the connected account, the last balance snapshot and which
actions are currently running. User-facing messages are published as
``NotificationEvent`` on the shared ``EventBus``.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from ..adapters.bases import WalletProvider
from ..adapters.evm.adapter import EVMAdapter
from ..adapters.evm.constants import TokenBankSettings
from ..adapters.evm.schemas import BalanceSnapshot
from ..engine.events import (
    Dependencies,
    EventBus,
    NotificationEvent,
    NotificationLevel,
    OperationResult,
    OperationStatus,
    StrategyKind,
)
from ..engine.exceptions import (
    OperationInProgressError,
    ProviderUnavailableError,
    TokenBankError,
    classify_failure,
    FailureKind,
)
from ..engine.orchestrator import (
    BALANCE_REFRESH_FAILED_MESSAGE,
    DECLINED_MESSAGE,
    DepositOrchestrator,
)
from .session import AccountStore, WalletSession

logger = logging.getLogger(__name__)

_NOTIFICATION_LEVELS = {
    OperationStatus.SUCCEEDED: NotificationLevel.SUCCESS,
    OperationStatus.PENDING: NotificationLevel.INFO,
}


class TokenBankClient:
    """
    Front-end facing entry point for deposits and withdrawals.

    Each action (``deposit``, ``withdraw``, ``permit_deposit``,
    ``permit2_deposit``) may run at most once at a time; invoking it again
    while it is in flight raises ``OperationInProgressError``. Different
    actions may overlap.

    Usage:
        ```python
        client = TokenBankClient.from_adapter(EVMAdapter())
        await client.connect()
        result = await client.permit2_deposit("2.5")
        print(result.message, client.balances)
        ```
    """

    ACTIONS = ("deposit", "withdraw", "permit_deposit", "permit2_deposit")

    def __init__(
        self,
        deps: Dependencies,
        wallet: Optional[WalletProvider] = None,
        store: Optional[AccountStore] = None,
        bus: Optional[EventBus] = None,
    ):
        """
        Args:
            deps: Chain capabilities and settings.
            wallet: Account discovery for ``connect()``/``reconnect()``.
            store: Advisory last-account store.
            bus: Event bus shared with presentation code.

        Raises:
            ProviderUnavailableError: If ``deps`` lacks a transaction sender
                or a typed-data signer.
        """
        if deps.sender is None or deps.signer is None:
            raise ProviderUnavailableError("A transaction sender and a typed-data signer are required")
        self.deps = deps
        self.bus = bus or EventBus()
        self.orchestrator = DepositOrchestrator(deps, self.bus)
        self.session = WalletSession(wallet, store)
        self._balances: Optional[BalanceSnapshot] = None
        self._in_flight: Dict[str, bool] = {action: False for action in self.ACTIONS}

    @classmethod
    def from_adapter(
        cls,
        adapter: EVMAdapter,
        store: Optional[AccountStore] = None,
        bus: Optional[EventBus] = None,
    ) -> "TokenBankClient":
        """Build a client whose every capability is served by one ``EVMAdapter``."""
        settings = adapter.settings
        deps = Dependencies(reader=adapter, sender=adapter, signer=adapter, settings=settings)
        if store is None:
            store = AccountStore(settings.session_path)
        return cls(deps, wallet=adapter, store=store, bus=bus)

    @classmethod
    def from_env(cls, bus: Optional[EventBus] = None) -> "TokenBankClient":
        return cls.from_adapter(EVMAdapter(settings=TokenBankSettings.from_env()), bus=bus)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def account(self) -> Optional[str]:
        return self.session.account

    @property
    def balances(self) -> Optional[BalanceSnapshot]:
        """Last successfully loaded balances; untouched by failed operations."""
        return self._balances

    def is_busy(self, action: str) -> bool:
        return self._in_flight[action]

    # ------------------------------------------------------------------
    # Wallet session
    # ------------------------------------------------------------------

    async def connect(self) -> str:
        try:
            account = await self.session.connect()
        except TokenBankError as e:
            declined = classify_failure(e) is FailureKind.USER_DECLINED
            await self._notify(
                NotificationLevel.ERROR,
                DECLINED_MESSAGE if declined else "Failed to connect wallet",
            )
            raise
        await self.refresh_balances()
        return account

    async def reconnect(self) -> Optional[str]:
        account = await self.session.reconnect()
        if account is not None:
            await self.refresh_balances()
        return account

    def disconnect(self) -> None:
        self.session.disconnect()
        self._balances = None

    async def refresh_balances(self) -> Optional[BalanceSnapshot]:
        """
        Reload all balances for the connected account.

        The snapshot is replaced only when every read succeeds.
        """
        if self.account is None:
            return None
        try:
            self._balances = await self.orchestrator.refresh_balances(self.account)
        except TokenBankError as e:
            logger.error("Balance refresh failed: %s", e)
            await self._notify(NotificationLevel.ERROR, BALANCE_REFRESH_FAILED_MESSAGE)
        return self._balances

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def deposit(self, amount) -> OperationResult:
        """Approve-then-deposit."""
        return await self._run_action(
            "deposit",
            lambda: self.orchestrator.execute(StrategyKind.APPROVE_THEN_DEPOSIT, amount, self.account),
        )

    async def withdraw(self, amount) -> OperationResult:
        return await self._run_action(
            "withdraw",
            lambda: self.orchestrator.withdraw(amount, self.account),
        )

    async def permit_deposit(self, amount) -> OperationResult:
        """EIP-2612 permit deposit."""
        return await self._run_action(
            "permit_deposit",
            lambda: self.orchestrator.execute(StrategyKind.EIP2612_PERMIT_DEPOSIT, amount, self.account),
        )

    async def permit2_deposit(self, amount) -> OperationResult:
        """Permit2 signature-transfer deposit."""
        return await self._run_action(
            "permit2_deposit",
            lambda: self.orchestrator.execute(StrategyKind.PERMIT2_PERMIT_DEPOSIT, amount, self.account),
        )

    async def _run_action(
        self,
        action: str,
        operation: Callable[[], Awaitable[OperationResult]],
    ) -> OperationResult:
        if self._in_flight[action]:
            raise OperationInProgressError(f"{action} is already in progress")
        self._in_flight[action] = True
        try:
            result = await operation()
        finally:
            self._in_flight[action] = False

        if result.balances is not None:
            self._balances = result.balances
        level = _NOTIFICATION_LEVELS.get(result.status, NotificationLevel.ERROR)
        await self._notify(level, result.message, result.operation_id)
        return result

    async def _notify(self, level: NotificationLevel, message: str, operation_id: Optional[str] = None) -> None:
        await self.bus.publish(
            NotificationEvent(level=level, message=message, operation_id=operation_id),
            self.deps,
        )
