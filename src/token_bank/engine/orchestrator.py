"""
Deposit orchestration engine.

``DepositOrchestrator`` runs one state machine per user action. A deposit
walks ValidatingInput -> [CheckingAllowance -> [Approving ->
AwaitingApprovalConfirmation]] -> [RequestingSignature -> [DecodingSignature]]
-> SubmittingDeposit -> AwaitingDepositConfirmation -> Succeeded, with the
optional segments chosen by the strategy. A withdrawal is a single call.
Every run returns an ``OperationResult`` instead of raising, and publishes a
``StateChangedEvent`` for each transition.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, List, Optional, Tuple, Type, Union

from ..adapters.evm.allowances import needs_approval, query_erc20_allowance
from ..adapters.evm.constants import amount_to_value
from ..adapters.evm.schemas import BalanceSnapshot, EVMECDSASignature
from ..adapters.evm.signatures import decompose_signature
from .events import (
    Dependencies,
    EventBus,
    NotificationEvent,
    NotificationLevel,
    OperationKind,
    OperationResult,
    OperationStatus,
    OrchestratorState,
    StateChangedEvent,
    StrategyKind,
    check_transition,
)
from .exceptions import (
    ChainReadError,
    ChainWriteError,
    ConfirmationError,
    ConfirmationTimeoutError,
    FailureKind,
    InvalidTransition,
    PermitExpiredError,
    ProviderUnavailableError,
    SignatureRequestError,
    TokenBankError,
    UserDeclinedError,
    ValidationError,
    classify_failure,
    is_user_rejection,
)
from .strategies import Authorization, DepositStrategy, get_strategy

logger = logging.getLogger(__name__)

INVALID_AMOUNT_MESSAGE = "Please enter a valid amount"
NO_ACCOUNT_MESSAGE = "Please connect a wallet first"
DECLINED_MESSAGE = "Request was declined"
BALANCE_REFRESH_FAILED_MESSAGE = "Failed to load balances"

_LABELS = {
    StrategyKind.APPROVE_THEN_DEPOSIT: "Deposit",
    StrategyKind.EIP2612_PERMIT_DEPOSIT: "EIP-2612 permit deposit",
    StrategyKind.PERMIT2_PERMIT_DEPOSIT: "Permit2 deposit",
    None: "Withdrawal",
}


def parse_amount(amount: Any, decimals: int) -> int:
    """
    Parse a user-entered decimal amount into smallest units.

    Raises:
        ValidationError: If the amount is empty, non-numeric, not finite,
            not strictly positive or finer than ``decimals``.
    """
    if amount is None or isinstance(amount, (bool, float)):
        raise ValidationError(INVALID_AMOUNT_MESSAGE)
    if isinstance(amount, str) and not amount.strip():
        raise ValidationError(INVALID_AMOUNT_MESSAGE)
    try:
        value = amount_to_value(amount=amount, decimals=decimals)
    except ValueError as e:
        raise ValidationError(INVALID_AMOUNT_MESSAGE) from e
    if value <= 0:
        raise ValidationError(INVALID_AMOUNT_MESSAGE)
    return value


class _Run:
    """State of one invocation. Never shared between invocations."""

    def __init__(
        self,
        bus: EventBus,
        deps: Dependencies,
        operation: OperationKind,
        strategy: Optional[StrategyKind] = None,
    ):
        self.bus = bus
        self.deps = deps
        self.operation = operation
        self.strategy = strategy
        self.operation_id = uuid.uuid4().hex
        self.state = OrchestratorState.IDLE
        self.transitions: List[OrchestratorState] = [OrchestratorState.IDLE]
        self.value: Optional[int] = None
        self.approval_tx_hash: Optional[str] = None
        self.tx_hash: Optional[str] = None

    @property
    def label(self) -> str:
        return _LABELS[self.strategy]

    async def advance(self, new_state: OrchestratorState, detail: Optional[str] = None) -> None:
        check_transition(self.state, new_state)
        previous, self.state = self.state, new_state
        self.transitions.append(new_state)
        logger.debug("[%s] %s -> %s", self.operation_id[:8], previous.value, new_state.value)
        await self.bus.publish(
            StateChangedEvent(
                operation_id=self.operation_id,
                operation=self.operation,
                strategy=self.strategy,
                previous=previous,
                current=new_state,
                detail=detail,
            ),
            self.deps,
        )

    def result(
        self,
        status: OperationStatus,
        message: str,
        failure_kind: Optional[FailureKind] = None,
        error_detail: Optional[str] = None,
        balances: Optional[BalanceSnapshot] = None,
    ) -> OperationResult:
        return OperationResult(
            operation_id=self.operation_id,
            operation=self.operation,
            strategy=self.strategy,
            status=status,
            final_state=self.state,
            message=message,
            failure_kind=failure_kind,
            error_detail=error_detail,
            approval_tx_hash=self.approval_tx_hash,
            tx_hash=self.tx_hash,
            value=self.value,
            transitions=list(self.transitions),
            balances=balances,
        )


class DepositOrchestrator:
    """
    Sequences allowance checks, approvals, typed-data signatures and bank
    calls for the three deposit strategies, plus the withdraw path.

    The orchestrator holds no per-operation state; concurrent invocations on
    one instance are independent.

    Example:
        deps = Dependencies(reader=adapter, sender=adapter, signer=adapter, settings=settings)
        orchestrator = DepositOrchestrator(deps)
        result = await orchestrator.execute(StrategyKind.PERMIT2_PERMIT_DEPOSIT, "1.5", account)
        if result.is_success():
            print(result.tx_hash, result.balances.deposit_amount)
    """

    def __init__(self, deps: Dependencies, bus: Optional[EventBus] = None):
        self.deps = deps
        self.bus = bus or EventBus()

    @property
    def settings(self):
        return self.deps.settings

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def execute(
        self,
        strategy: Union[DepositStrategy, StrategyKind, str],
        amount: Any,
        account: Optional[str],
    ) -> OperationResult:
        """
        Run one deposit with the given strategy.

        Args:
            strategy: Strategy instance, ``StrategyKind`` or its string value.
            amount: User-entered decimal amount (string, int or Decimal).
            account: Connected account; None if no wallet is connected.

        Returns:
            OperationResult describing the terminal state. Only programming
            errors (e.g. ``InvalidTransition``) propagate.
        """
        strategy = get_strategy(strategy)
        run = _Run(self.bus, self.deps, OperationKind.DEPOSIT, strategy.kind)
        try:
            await run.advance(OrchestratorState.VALIDATING_INPUT)
            owner, run.value = self._validate(amount, account)
            self._require_capabilities(needs_signer=strategy.requires_signature)
            await self._deposit(run, strategy, owner, run.value)
        except ConfirmationTimeoutError as e:
            return await self._pending(run, e)
        except InvalidTransition:
            self._abort(run)
            raise
        except TokenBankError as e:
            return await self._fail(run, e)
        except Exception:
            self._abort(run)
            raise

        balances = await self._refresh_after_success(run, owner)
        logger.info("%s of %s succeeded (tx %s)", run.label, run.value, run.tx_hash)
        return run.result(OperationStatus.SUCCEEDED, f"{run.label} succeeded", balances=balances)

    async def withdraw(self, amount: Any, account: Optional[str]) -> OperationResult:
        """Withdraw ``amount`` from the bank: a single ``withdraw(value)`` call."""
        run = _Run(self.bus, self.deps, OperationKind.WITHDRAW)
        try:
            await run.advance(OrchestratorState.VALIDATING_INPUT)
            owner, run.value = self._validate(amount, account)
            self._require_capabilities(needs_signer=False)

            await run.advance(OrchestratorState.SUBMITTING_WITHDRAWAL)
            run.tx_hash = await self._submit(self.settings.bank_address, "withdraw", (run.value,), owner)
            await run.advance(OrchestratorState.AWAITING_WITHDRAWAL_CONFIRMATION, run.tx_hash)
            await self._confirm(run.tx_hash)
            await run.advance(OrchestratorState.SUCCEEDED)
        except ConfirmationTimeoutError as e:
            return await self._pending(run, e)
        except InvalidTransition:
            self._abort(run)
            raise
        except TokenBankError as e:
            return await self._fail(run, e)
        except Exception:
            self._abort(run)
            raise

        balances = await self._refresh_after_success(run, owner)
        logger.info("Withdrawal of %s succeeded (tx %s)", run.value, run.tx_hash)
        return run.result(OperationStatus.SUCCEEDED, "Withdrawal succeeded", balances=balances)

    async def refresh_balances(self, owner: str) -> BalanceSnapshot:
        """
        Read wallet balance, token symbol and bank deposit concurrently.

        Raises:
            ChainReadError: If any of the three reads fails.
        """
        settings = self.settings
        reader = self.deps.reader
        token_balance, token_symbol, deposit_balance = await asyncio.gather(
            self._guard(reader.read_contract(settings.token_address, "balanceOf", (owner,)), ChainReadError, "balanceOf read"),
            self._guard(reader.read_contract(settings.token_address, "symbol", ()), ChainReadError, "symbol read"),
            self._guard(reader.read_contract(settings.bank_address, "getDeposit", (owner,)), ChainReadError, "getDeposit read"),
        )
        return BalanceSnapshot(
            account=owner,
            token_balance=int(token_balance),
            token_symbol=str(token_symbol),
            deposit_balance=int(deposit_balance),
            decimals=settings.token_decimals,
        )

    # ------------------------------------------------------------------
    # Deposit stages
    # ------------------------------------------------------------------

    async def _deposit(self, run: _Run, strategy: DepositStrategy, owner: str, value: int) -> None:
        settings = self.settings

        spender = strategy.allowance_spender(settings)
        if spender is not None:
            await run.advance(OrchestratorState.CHECKING_ALLOWANCE, spender)
            current = await self._guard(
                query_erc20_allowance(self.deps.reader, settings.token_address, owner, spender),
                ChainReadError,
                "allowance read",
            )
            if needs_approval(current, value):
                await run.advance(OrchestratorState.APPROVING)
                run.approval_tx_hash = await self._submit(
                    settings.token_address,
                    "approve",
                    (spender, strategy.approval_amount(value)),
                    owner,
                )
                await run.advance(OrchestratorState.AWAITING_APPROVAL_CONFIRMATION, run.approval_tx_hash)
                await self._confirm(run.approval_tx_hash)
            else:
                logger.debug("Allowance %s covers %s; skipping approval", current, value)

        authorization: Optional[Authorization] = None
        signature: Optional[str] = None
        decoded: Optional[EVMECDSASignature] = None
        if strategy.requires_signature:
            await run.advance(OrchestratorState.REQUESTING_SIGNATURE)
            authorization, signature = await self._request_signature(strategy, owner, value)
            if strategy.decodes_signature:
                await run.advance(OrchestratorState.DECODING_SIGNATURE)
                decoded = decompose_signature(signature)
            self._check_deadline(authorization.deadline)

        await run.advance(OrchestratorState.SUBMITTING_DEPOSIT)
        call = strategy.build_deposit_call(settings, owner, value, authorization, signature, decoded)
        run.tx_hash = await self._submit(call.address, call.function_name, call.args, owner)
        await run.advance(OrchestratorState.AWAITING_DEPOSIT_CONFIRMATION, run.tx_hash)
        await self._confirm(run.tx_hash)
        await run.advance(OrchestratorState.SUCCEEDED)

    async def _request_signature(
        self,
        strategy: DepositStrategy,
        owner: str,
        value: int,
    ) -> Tuple[Authorization, str]:
        authorization = await self._guard(
            strategy.build_authorization(self.deps, owner, value),
            ChainReadError,
            "permit data read",
        )
        typed = authorization.to_dict()
        signature = await self._guard(
            self.deps.signer.sign_typed_data(
                owner,
                typed["domain"],
                typed["types"],
                typed["primaryType"],
                typed["message"],
            ),
            SignatureRequestError,
            "signature request",
        )
        if not signature:
            raise SignatureRequestError("Signer returned an empty signature")
        return authorization, signature

    def _check_deadline(self, deadline: int) -> None:
        now = int(self.deps.clock())
        if now > deadline:
            raise PermitExpiredError(deadline, now)

    # ------------------------------------------------------------------
    # Capability wrappers
    # ------------------------------------------------------------------

    @staticmethod
    async def _guard(awaitable: Awaitable, error_cls: Type[TokenBankError], what: str):
        """Await a capability call, mapping foreign exceptions onto the stage's error."""
        try:
            return await awaitable
        except TokenBankError:
            raise
        except Exception as e:
            if is_user_rejection(e):
                raise UserDeclinedError(f"{what} was declined") from e
            raise error_cls(f"{what} failed: {e}") from e

    async def _submit(self, address: str, function_name: str, args: Tuple, owner: str) -> str:
        tx_hash = await self._guard(
            self.deps.sender.send_transaction(address, function_name, args, owner),
            ChainWriteError,
            f"{function_name} submission",
        )
        logger.info("%s transaction submitted: %s", function_name, tx_hash)
        return tx_hash

    async def _confirm(self, tx_hash: str) -> None:
        timeout = self.settings.confirmation_timeout
        try:
            confirmation = await asyncio.wait_for(
                self._guard(
                    self.deps.sender.wait_for_confirmation(tx_hash, timeout=timeout),
                    ConfirmationError,
                    f"confirmation of {tx_hash}",
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConfirmationTimeoutError(
                f"Transaction {tx_hash} not mined within {timeout}s", tx_hash=tx_hash
            ) from e
        if not confirmation.is_success():
            raise ConfirmationError(
                confirmation.error_message or f"Transaction {tx_hash} failed",
                tx_hash=tx_hash,
            )

    # ------------------------------------------------------------------
    # Validation and terminal handling
    # ------------------------------------------------------------------

    def _validate(self, amount: Any, account: Optional[str]) -> Tuple[str, int]:
        if not account:
            raise ValidationError(NO_ACCOUNT_MESSAGE)
        return account, parse_amount(amount, self.settings.token_decimals)

    def _require_capabilities(self, needs_signer: bool) -> None:
        if self.deps.sender is None:
            raise ProviderUnavailableError("No transaction capability available")
        if needs_signer and self.deps.signer is None:
            raise ProviderUnavailableError("No typed-data signing capability available")

    async def _fail(self, run: _Run, error: TokenBankError) -> OperationResult:
        await run.advance(OrchestratorState.FAILED, str(error))
        kind = classify_failure(error)
        if kind is FailureKind.VALIDATION:
            logger.debug("%s rejected: %s", run.label, error)
            return run.result(OperationStatus.INVALID, str(error), kind, str(error))
        if kind is FailureKind.USER_DECLINED:
            logger.warning("%s declined by user: %s", run.label, error)
            return run.result(OperationStatus.DECLINED, DECLINED_MESSAGE, kind, str(error))
        logger.error("%s failed: %s", run.label, error, exc_info=error)
        return run.result(OperationStatus.FAILED, f"{run.label} failed", kind, str(error))

    async def _pending(self, run: _Run, error: ConfirmationTimeoutError) -> OperationResult:
        await run.advance(OrchestratorState.PENDING, error.tx_hash)
        logger.warning("%s still pending: %s", run.label, error)
        return run.result(
            OperationStatus.PENDING,
            f"{run.label} submitted and still awaiting confirmation (tx {error.tx_hash})",
            error_detail=str(error),
        )

    def _abort(self, run: _Run) -> None:
        """Move a run hit by an unexpected exception to FAILED before re-raising."""
        if run.state not in (OrchestratorState.SUCCEEDED, OrchestratorState.FAILED, OrchestratorState.PENDING):
            run.state, previous = OrchestratorState.FAILED, run.state
            run.transitions.append(OrchestratorState.FAILED)
            logger.error("[%s] aborted in state %s", run.operation_id[:8], previous.value)

    async def _refresh_after_success(self, run: _Run, owner: str) -> Optional[BalanceSnapshot]:
        try:
            return await self.refresh_balances(owner)
        except TokenBankError as e:
            logger.error("Balance refresh failed: %s", e)
            await self.bus.publish(
                NotificationEvent(
                    level=NotificationLevel.ERROR,
                    message=BALANCE_REFRESH_FAILED_MESSAGE,
                    operation_id=run.operation_id,
                ),
                self.deps,
            )
            return None
