"""
Test suite for TokenBankClient.
Tests: 1) Construction requirements 2) Notifications and balance bookkeeping
3) Per-action in-flight guard 4) Wallet connect/reconnect/disconnect
"""
import asyncio

import pytest

from token_bank.adapters.evm.constants import MAX_UINT256
from token_bank.adapters.evm.adapter import EVMAdapter
from token_bank.clients.bank_client import TokenBankClient
from token_bank.clients.session import AccountStore
from token_bank.engine.events import EventBus, NotificationLevel, OperationStatus
from token_bank.engine.exceptions import (
    OperationInProgressError,
    ProviderUnavailableError,
    UserDeclinedError,
)
from token_bank.engine.orchestrator import BALANCE_REFRESH_FAILED_MESSAGE, DECLINED_MESSAGE

from mocks import OWNER, OWNER_PRIVATE_KEY, SETTINGS, EventRecorder, FakeChain, make_deps


def _client(chain, tmp_path=None, **overrides):
    bus = EventBus()
    recorder = EventRecorder(bus)
    store = AccountStore(tmp_path / "session.json") if tmp_path is not None else None
    client = TokenBankClient(make_deps(chain, **overrides), wallet=chain, store=store, bus=bus)
    return client, recorder


async def _connected(chain, tmp_path=None, **overrides):
    client, recorder = _client(chain, tmp_path, **overrides)
    await client.connect()
    recorder.notifications.clear()
    return client, recorder


class TestConstruction:

    @pytest.mark.parametrize("missing", ["sender", "signer"])
    def test_requires_sender_and_signer(self, missing):
        with pytest.raises(ProviderUnavailableError):
            TokenBankClient(make_deps(FakeChain(), **{missing: None}))

    def test_from_adapter_wires_every_capability(self, tmp_path):
        settings = SETTINGS.model_copy(update={"session_path": str(tmp_path / "session.json")})
        adapter = EVMAdapter(settings=settings, private_key=OWNER_PRIVATE_KEY)

        client = TokenBankClient.from_adapter(adapter)

        assert client.deps.reader is adapter
        assert client.deps.sender is adapter
        assert client.deps.signer is adapter
        assert client.session.provider is adapter
        assert client.session.store.path == tmp_path / "session.json"


class TestActions:

    @pytest.mark.asyncio
    async def test_success_updates_balances_and_notifies(self):
        chain = FakeChain(allowance=0, balance=1000)
        client, recorder = await _connected(chain)

        result = await client.deposit("100")

        assert result.is_success()
        assert client.balances.token_balance == 900
        assert client.balances.deposit_balance == 100
        (notification,) = recorder.notifications
        assert notification.level == NotificationLevel.SUCCESS
        assert notification.message == "Deposit succeeded"
        assert notification.operation_id == result.operation_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action, expected", [
        ("permit_deposit", ["permitDeposit"]),
        ("permit2_deposit", ["approve", "depositWithPermit2"]),
    ])
    async def test_permit_actions(self, action, expected):
        chain = FakeChain()
        client, _ = await _connected(chain)

        result = await getattr(client, action)("10")

        assert result.is_success()
        assert chain.sent_functions == expected

    @pytest.mark.asyncio
    async def test_withdraw(self):
        chain = FakeChain(deposit=50)
        client, _ = await _connected(chain)

        result = await client.withdraw("50")

        assert result.is_success()
        assert client.balances.deposit_balance == 0

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_balances(self):
        chain = FakeChain(allowance=MAX_UINT256)
        client, recorder = await _connected(chain)
        before = client.balances
        chain.send_errors["deposit"] = RuntimeError("execution reverted")

        result = await client.deposit("100")

        assert result.status == OperationStatus.FAILED
        assert client.balances == before
        (notification,) = recorder.notifications
        assert notification.level == NotificationLevel.ERROR
        assert notification.message == "Deposit failed"

    @pytest.mark.asyncio
    async def test_declined_signature(self):
        chain = FakeChain()
        chain.sign_error = UserDeclinedError("User rejected the request.")
        client, recorder = await _connected(chain)

        result = await client.permit_deposit("10")

        assert result.status == OperationStatus.DECLINED
        assert recorder.notifications[-1].message == DECLINED_MESSAGE

    @pytest.mark.asyncio
    async def test_without_connection_is_invalid(self):
        chain = FakeChain()
        client, recorder = _client(chain)

        result = await client.deposit("10")

        assert result.status == OperationStatus.INVALID
        assert recorder.notifications[-1].level == NotificationLevel.ERROR
        assert chain.reads == []

    @pytest.mark.asyncio
    async def test_pending_notifies_info(self):
        chain = FakeChain(allowance=MAX_UINT256)
        chain.confirm_gate = asyncio.Event()
        settings = SETTINGS.model_copy(update={"confirmation_timeout": 0.05})
        client, recorder = _client(chain, settings=settings)
        client.session.account = OWNER

        result = await client.deposit("10")

        assert result.status == OperationStatus.PENDING
        assert recorder.notifications[-1].level == NotificationLevel.INFO


class TestInFlightGuard:

    @pytest.mark.asyncio
    async def test_same_action_is_refused_while_running(self):
        chain = FakeChain(allowance=MAX_UINT256)
        client, _ = await _connected(chain)
        chain.confirm_gate = asyncio.Event()

        first = asyncio.create_task(client.deposit("10"))
        while not chain.sent:
            await asyncio.sleep(0)
        assert client.is_busy("deposit")

        with pytest.raises(OperationInProgressError):
            await client.deposit("10")

        chain.confirm_gate.set()
        assert (await first).is_success()
        assert not client.is_busy("deposit")
        assert chain.sent_functions == ["deposit"]

    @pytest.mark.asyncio
    async def test_different_actions_may_overlap(self):
        chain = FakeChain(allowance=MAX_UINT256, deposit=100)
        client, _ = await _connected(chain)
        chain.confirm_gate = asyncio.Event()

        deposit = asyncio.create_task(client.deposit("10"))
        withdraw = asyncio.create_task(client.withdraw("5"))
        while len(chain.sent) < 2:
            await asyncio.sleep(0)
        assert client.is_busy("deposit") and client.is_busy("withdraw")

        chain.confirm_gate.set()
        results = await asyncio.gather(deposit, withdraw)

        assert all(r.is_success() for r in results)

    @pytest.mark.asyncio
    async def test_flag_cleared_after_unexpected_error(self):
        chain = FakeChain()
        client, _ = await _connected(chain)

        async def boom():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await client._run_action("deposit", boom)
        assert not client.is_busy("deposit")


class TestWallet:

    @pytest.mark.asyncio
    async def test_connect_loads_balances(self, tmp_path):
        chain = FakeChain(balance=77)
        client, _ = _client(chain, tmp_path)

        assert await client.connect() == OWNER
        assert client.account == OWNER
        assert client.balances.token_balance == 77

    @pytest.mark.asyncio
    async def test_connect_declined_notifies(self):
        chain = FakeChain()
        chain.request_accounts_error = UserDeclinedError("User rejected the request.")
        client, recorder = _client(chain)

        with pytest.raises(UserDeclinedError):
            await client.connect()
        assert recorder.notifications[-1].message == DECLINED_MESSAGE
        assert client.account is None

    @pytest.mark.asyncio
    async def test_connect_failure_notifies(self):
        client, recorder = _client(FakeChain(accounts=[]))

        with pytest.raises(ProviderUnavailableError):
            await client.connect()
        assert recorder.notifications[-1].message == "Failed to connect wallet"

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_snapshot(self):
        chain = FakeChain(balance=10)
        client, recorder = await _connected(chain)
        chain.read_errors["symbol"] = OSError("rpc down")

        assert (await client.refresh_balances()).token_balance == 10
        assert recorder.notifications[-1].message == BALANCE_REFRESH_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_reconnect_and_disconnect(self, tmp_path):
        chain = FakeChain(balance=5)
        first, _ = _client(chain, tmp_path)
        await first.connect()

        second, _ = _client(chain, tmp_path)
        assert await second.reconnect() == OWNER
        assert second.balances.token_balance == 5
        assert chain.account_requests == 1

        second.disconnect()
        assert second.account is None
        assert second.balances is None
        assert await second.reconnect() is None
