"""
Token Bank Test Mocks Module

Shared constants and an in-memory chain for testing the orchestrator, the
client facade and the signature helpers without any RPC connectivity.

Key Components:
    - Deterministic test key, owner address and deployment settings
    - FakeChain: implements every capability, simulates token/bank state and
      records each read, submission, confirmation wait and signature request
    - make_deps(): Dependencies wired to a FakeChain with a fixed clock and nonce
    - EventRecorder: collects events published on an EventBus

Usage:
    from mocks import FakeChain, make_deps, OWNER

    chain = FakeChain(allowance=0)
    orchestrator = DepositOrchestrator(make_deps(chain))
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_account import Account

from token_bank.adapters.bases import ChainReader, TransactionSender, TypedDataSigner, WalletProvider
from token_bank.adapters.evm.constants import TokenBankSettings
from token_bank.adapters.evm.schemas import EVMTransactionConfirmation
from token_bank.engine.events import Dependencies, EventBus, NotificationEvent, StateChangedEvent
from token_bank.schemas.bases import TransactionStatus


# ========================================================================
# Constants
# ========================================================================

# Test private key (do not use in production!)
OWNER_PRIVATE_KEY = "0x1234567890123456789012345678901234567890123456789012345678901234"
OWNER = Account.from_key(OWNER_PRIVATE_KEY).address

OTHER_ACCOUNT = "0x1111111111111111111111111111111111111111"

# Zero decimals keeps amounts in tests equal to smallest-unit values.
SETTINGS = TokenBankSettings(token_decimals=0, confirmation_timeout=5.0)
TOKEN = SETTINGS.token_address
BANK = SETTINGS.bank_address
PERMIT2 = SETTINGS.permit2_address

TOKEN_NAME = "MyToken"
TOKEN_SYMBOL = "MTK"

FIXED_NOW = 1_700_000_000
FIXED_DEADLINE = FIXED_NOW + SETTINGS.deadline_window
FIXED_PERMIT2_NONCE = 42

SIG_R = "aa" * 32
SIG_S = "bb" * 32
SIG_V = 27
SIGNATURE = "0x" + SIG_R + SIG_S + format(SIG_V, "02x")
# Right length, but two of the 130 body characters are spaces.
WHITESPACE_PADDED_SIGNATURE = "0x" + "aa" * 32 + " " + "bb" * 31 + " " + "1b"


def tx_hash_for(index: int) -> str:
    return "0x" + format(index, "064x")


# ========================================================================
# In-memory chain
# ========================================================================

class FakeChain(ChainReader, TransactionSender, TypedDataSigner, WalletProvider):
    """
    In-memory token + bank implementing all four capabilities.

    Failure injection:
        read_errors: function name -> exception raised by ``read_contract``.
        send_errors: function name -> exception raised by ``send_transaction``.
        sign_error: exception raised by ``sign_typed_data``.
        confirm_errors: tx hash -> exception raised by ``wait_for_confirmation``.
        failed_receipts: tx hashes confirmed with ``status=FAILED``.
        confirm_gate: when set, confirmations wait for this event.
    """

    def __init__(
        self,
        allowance: int = 0,
        permit2_allowance: int = 0,
        nonce: int = 0,
        balance: int = 1000,
        deposit: int = 0,
        signature: Optional[str] = SIGNATURE,
        accounts: Optional[List[str]] = None,
    ):
        self.allowances: Dict[Tuple[str, str], int] = {
            (OWNER, BANK): allowance,
            (OWNER, PERMIT2): permit2_allowance,
        }
        self.nonces: Dict[str, int] = {OWNER: nonce}
        self.balances: Dict[str, int] = {OWNER: balance}
        self.deposits: Dict[str, int] = {OWNER: deposit}
        self.signature = signature
        self.accounts = [OWNER] if accounts is None else accounts

        self.reads: List[Tuple[str, str, Tuple]] = []
        self.sent: List[Tuple[str, str, Tuple, str]] = []
        self.confirmed: List[str] = []
        self.sign_requests: List[Dict[str, Any]] = []
        self.account_requests = 0

        self.read_errors: Dict[str, Exception] = {}
        self.send_errors: Dict[str, Exception] = {}
        self.sign_error: Optional[Exception] = None
        self.confirm_errors: Dict[str, Exception] = {}
        self.failed_receipts: set = set()
        self.confirm_gate: Optional[asyncio.Event] = None
        self.request_accounts_error: Optional[Exception] = None

    # -- helpers ---------------------------------------------------------

    @property
    def sent_functions(self) -> List[str]:
        return [function_name for _, function_name, _, _ in self.sent]

    # -- ChainReader -----------------------------------------------------

    async def read_contract(self, address: str, function_name: str, args: Sequence[Any] = ()) -> Any:
        self.reads.append((address, function_name, tuple(args)))
        if function_name in self.read_errors:
            raise self.read_errors[function_name]
        if function_name == "allowance":
            owner, spender = args
            return self.allowances.get((owner, spender), 0)
        if function_name == "nonces":
            return self.nonces.get(args[0], 0)
        if function_name == "name":
            return TOKEN_NAME
        if function_name == "symbol":
            return TOKEN_SYMBOL
        if function_name == "balanceOf":
            return self.balances.get(args[0], 0)
        if function_name == "getDeposit":
            return self.deposits.get(args[0], 0)
        raise AssertionError(f"unexpected read {function_name}")

    # -- TransactionSender -----------------------------------------------

    async def send_transaction(self, address: str, function_name: str, args: Sequence[Any], account: str) -> str:
        if function_name in self.send_errors:
            raise self.send_errors[function_name]
        args = tuple(args)
        self.sent.append((address, function_name, args, account))
        self._apply(function_name, args, account)
        return tx_hash_for(len(self.sent))

    def _apply(self, function_name: str, args: Tuple, account: str) -> None:
        if function_name == "approve":
            spender, amount = args
            self.allowances[(account, spender)] = amount
        elif function_name == "deposit":
            self._move_in(account, args[0])
        elif function_name == "permitDeposit":
            owner, value = args[0], args[1]
            self.nonces[owner] = self.nonces.get(owner, 0) + 1
            self._move_in(owner, value)
        elif function_name == "depositWithPermit2":
            (_, amount), _, _ = args[0]
            self._move_in(args[2], amount)
        elif function_name == "withdraw":
            self.deposits[account] -= args[0]
            self.balances[account] += args[0]

    def _move_in(self, owner: str, value: int) -> None:
        self.balances[owner] -= value
        self.deposits[owner] = self.deposits.get(owner, 0) + value

    async def wait_for_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> EVMTransactionConfirmation:
        if self.confirm_gate is not None:
            await self.confirm_gate.wait()
        if tx_hash in self.confirm_errors:
            raise self.confirm_errors[tx_hash]
        self.confirmed.append(tx_hash)
        if tx_hash in self.failed_receipts:
            return EVMTransactionConfirmation(
                status=TransactionStatus.FAILED,
                tx_hash=tx_hash,
                error_message="Transaction reverted on-chain",
            )
        return EVMTransactionConfirmation(status=TransactionStatus.SUCCESS, tx_hash=tx_hash, block_number=1)

    # -- TypedDataSigner -------------------------------------------------

    async def sign_typed_data(self, account, domain, types, primary_type, message) -> str:
        self.sign_requests.append({
            "account": account,
            "domain": domain,
            "types": types,
            "primaryType": primary_type,
            "message": message,
        })
        if self.sign_error is not None:
            raise self.sign_error
        return self.signature

    # -- WalletProvider --------------------------------------------------

    async def request_accounts(self) -> List[str]:
        self.account_requests += 1
        if self.request_accounts_error is not None:
            raise self.request_accounts_error
        return list(self.accounts)

    async def get_accounts(self) -> List[str]:
        return list(self.accounts)


def make_deps(chain: FakeChain, settings: TokenBankSettings = SETTINGS, **overrides) -> Dependencies:
    values = dict(
        reader=chain,
        sender=chain,
        signer=chain,
        settings=settings,
        clock=lambda: FIXED_NOW,
        nonce_factory=lambda: FIXED_PERMIT2_NONCE,
    )
    values.update(overrides)
    return Dependencies(**values)


class EventRecorder:
    """Subscribes to state and notification events and keeps them in order."""

    def __init__(self, bus: EventBus):
        self.states: List[StateChangedEvent] = []
        self.notifications: List[NotificationEvent] = []
        bus.subscribe(StateChangedEvent, self._on_state)
        bus.subscribe(NotificationEvent, self._on_notification)

    async def _on_state(self, event, deps):
        self.states.append(event)

    async def _on_notification(self, event, deps):
        self.notifications.append(event)
