"""
EVM Chain and Wallet Adapter

Implements the four capabilities the deposit orchestrator consumes
(``ChainReader``, ``TransactionSender``, ``TypedDataSigner``,
``WalletProvider``) on top of ``AsyncWeb3``.

Two account modes are supported:

    - Local key: a private key (argument or ``EVM_PRIVATE_KEY``) signs
      transactions and typed data in-process; transactions are broadcast with
      ``eth_sendRawTransaction``.
    - Node-managed: without a key, the account is whatever the connected node
      or wallet bridge exposes via ``eth_requestAccounts``; transactions go
      through ``eth_sendTransaction`` and typed data through
      ``eth_signTypedData_v4``, so the user is prompted on the other side.

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For local transaction and typed-data signing
"""

import json
import logging
from typing import Optional, Dict, Any, List, Sequence

from web3 import AsyncWeb3, Web3
from eth_account import Account
from web3.exceptions import TimeExhausted

from ...engine.exceptions import (
    ChainReadError,
    ChainWriteError,
    ConfigurationError,
    ConfirmationError,
    ConfirmationTimeoutError,
    ProviderUnavailableError,
    SignatureRequestError,
    UserDeclinedError,
    is_user_rejection,
)
from ...schemas.bases import TransactionStatus
from ..bases import ChainReader, TransactionSender, TypedDataSigner, WalletProvider
from .constants import TokenBankSettings, get_private_key_from_env
from .ERC20_ABI import get_token_abi, get_token_bank_abi
from .schemas import EVMTransactionConfirmation
from .signatures import sign_typed_data_locally
from .standards import to_wallet_typed_data

logger = logging.getLogger(__name__)

#: Gas limit used when estimation fails (e.g. the call would revert on a stale node).
_FALLBACK_GAS_LIMIT: int = 300000

#: Multiplier applied to the node's gas estimate.
_GAS_BUFFER: float = 1.1


class EVMAdapter(ChainReader, TransactionSender, TypedDataSigner, WalletProvider):
    """
    EVM adapter bound to one token bank deployment.

    Contract ABIs are resolved from the configured token and bank addresses,
    so callers only pass an address and a function name.

    Attributes:
        settings: Deployment configuration.
        account: Local ``eth_account`` account, or None in node-managed mode.
        wallet_address: Checksum address of the local account, or None.

    Example:
        adapter = EVMAdapter(settings=TokenBankSettings.from_env())
        balance = await adapter.read_contract(settings.token_address, "balanceOf", (owner,))
    """

    def __init__(
        self,
        settings: Optional[TokenBankSettings] = None,
        private_key: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
        use_env_key: bool = True,
    ):
        """
        Args:
            settings: Deployment configuration; defaults to ``TokenBankSettings.from_env()``.
            private_key: Explicit signing key. Takes precedence over the environment.
            w3: Pre-built ``AsyncWeb3`` instance (tests, custom providers).
            use_env_key: Fall back to ``EVM_PRIVATE_KEY`` when no key is given.
                Pass False to force node-managed mode.

        Raises:
            ConfigurationError: If the private key is malformed.
        """
        self.settings = settings or TokenBankSettings.from_env()

        resolved_pk = private_key or (get_private_key_from_env() if use_env_key else None)
        self._resolved_pk = resolved_pk
        self.account = None
        self.wallet_address: Optional[str] = None
        if resolved_pk:
            try:
                self.account = Account.from_key(resolved_pk)
            except (ValueError, TypeError) as e:
                raise ConfigurationError("EVM private key is malformed") from e
            self.wallet_address = AsyncWeb3.to_checksum_address(self.account.address)

        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            self.settings.rpc_url,
            request_kwargs={"timeout": self.settings.request_timeout},
        ))

        self._abis: Dict[str, List[Dict[str, Any]]] = {
            self.settings.token_address: get_token_abi(),
            self.settings.bank_address: get_token_bank_abi(),
        }

    @property
    def is_local(self) -> bool:
        """True when a private key signs in-process."""
        return self.account is not None

    @property
    def w3(self) -> AsyncWeb3:
        return self._w3

    def _contract(self, address: str):
        checksum = AsyncWeb3.to_checksum_address(address)
        abi = self._abis.get(checksum)
        if abi is None:
            raise ConfigurationError(f"No ABI registered for contract {checksum}")
        return self._w3.eth.contract(address=checksum, abi=abi)

    # ------------------------------------------------------------------
    # ChainReader
    # ------------------------------------------------------------------

    async def read_contract(self, address: str, function_name: str, args: Sequence[Any] = ()) -> Any:
        contract = self._contract(address)
        try:
            return await getattr(contract.functions, function_name)(*args).call()
        except Exception as e:
            raise ChainReadError(f"{function_name}() call on {address} failed: {e}") from e

    # ------------------------------------------------------------------
    # TransactionSender
    # ------------------------------------------------------------------

    async def send_transaction(
        self,
        address: str,
        function_name: str,
        args: Sequence[Any],
        account: str,
    ) -> str:
        contract = self._contract(address)
        sender = AsyncWeb3.to_checksum_address(account)
        try:
            tx_fn = getattr(contract.functions, function_name)(*args)
            if self.is_local:
                tx_hash = await self._send_local(tx_fn, sender)
            else:
                tx_hash = await tx_fn.transact({"from": sender})
        except (ProviderUnavailableError, ChainWriteError):
            raise
        except Exception as e:
            if is_user_rejection(e):
                raise UserDeclinedError(f"{function_name} transaction was rejected") from e
            raise ChainWriteError(f"{function_name} transaction failed: {e}", function_name=function_name) from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info("Submitted %s transaction %s", function_name, tx_hex)
        return tx_hex

    async def _send_local(self, tx_fn, sender: str) -> bytes:
        """Build, sign and broadcast a transaction with the local key."""
        if sender != self.wallet_address:
            raise ProviderUnavailableError(
                f"Local signer controls {self.wallet_address}, not {sender}"
            )

        tx_params: Dict[str, Any] = {
            "chainId": self.settings.chain_id,
            "from": sender,
            "nonce": await self._w3.eth.get_transaction_count(sender, "pending"),
        }

        # Gas estimation with 10% buffer
        try:
            gas_estimate = await tx_fn.estimate_gas({"from": sender})
            tx_params["gas"] = int(gas_estimate * _GAS_BUFFER)
        except Exception as e:
            logger.debug("Gas estimation failed, using fallback limit: %s", e)
            tx_params["gas"] = _FALLBACK_GAS_LIMIT

        # EIP-1559 fees with legacy fallback
        try:
            fee_history = await self._w3.eth.fee_history(1, "latest", [25.0])
            base_fee = fee_history["baseFeePerGas"][-1]
            priority_fee = fee_history["reward"][0][0]
            tx_params["maxPriorityFeePerGas"] = priority_fee
            tx_params["maxFeePerGas"] = (base_fee * 2) + priority_fee
        except Exception:
            tx_params["gasPrice"] = await self._w3.eth.gas_price

        transaction = await tx_fn.build_transaction(tx_params)
        signed_tx = self.account.sign_transaction(transaction)
        return await self._w3.eth.send_raw_transaction(signed_tx.raw_transaction)

    async def wait_for_confirmation(
        self,
        tx_hash: str,
        timeout: Optional[float] = None,
    ) -> EVMTransactionConfirmation:
        wait_timeout = timeout if timeout is not None else self.settings.confirmation_timeout
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=wait_timeout,
                poll_latency=self.settings.poll_latency,
            )
        except TimeExhausted as e:
            raise ConfirmationTimeoutError(
                f"Transaction {tx_hash} not mined within {wait_timeout}s",
                tx_hash=tx_hash,
            ) from e
        except Exception as e:
            raise ConfirmationError(f"Waiting for {tx_hash} failed: {e}", tx_hash=tx_hash) from e

        gas_used = receipt.get("gasUsed")
        transaction_fee = None
        if gas_used is not None:
            transaction_fee = gas_used * receipt.get("effectiveGasPrice", 0)

        if receipt.get("status") != 1:
            raise ConfirmationError(f"Transaction {tx_hash} reverted on-chain", tx_hash=tx_hash)

        return EVMTransactionConfirmation(
            status=TransactionStatus.SUCCESS,
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
            gas_used=gas_used,
            transaction_fee=transaction_fee,
            from_address=receipt.get("from"),
            to_address=receipt.get("to"),
        )

    # ------------------------------------------------------------------
    # TypedDataSigner
    # ------------------------------------------------------------------

    async def sign_typed_data(
        self,
        account: str,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        primary_type: str,
        message: Dict[str, Any],
    ) -> str:
        full_message = {
            "types": types,
            "primaryType": primary_type,
            "domain": domain,
            "message": message,
        }
        signer = AsyncWeb3.to_checksum_address(account)

        if self.is_local:
            if signer != self.wallet_address:
                raise ProviderUnavailableError(
                    f"Local signer controls {self.wallet_address}, not {signer}"
                )
            try:
                return sign_typed_data_locally(self._resolved_pk, full_message)
            except Exception as e:
                raise SignatureRequestError(f"Local typed-data signing failed: {e}") from e

        payload = json.dumps(to_wallet_typed_data(full_message), separators=(",", ":"))
        try:
            response = await self._w3.provider.make_request(
                "eth_signTypedData_v4", [signer, payload]
            )
        except Exception as e:
            if is_user_rejection(e):
                raise UserDeclinedError("Signature request was rejected") from e
            raise SignatureRequestError(f"eth_signTypedData_v4 failed: {e}") from e

        error = response.get("error")
        if error:
            if is_user_rejection(SignatureRequestError(error)):
                raise UserDeclinedError("Signature request was rejected")
            raise SignatureRequestError(f"eth_signTypedData_v4 failed: {error}")
        return response.get("result")

    # ------------------------------------------------------------------
    # WalletProvider
    # ------------------------------------------------------------------

    async def request_accounts(self) -> List[str]:
        if self.is_local:
            return [self.wallet_address]
        try:
            response = await self._w3.provider.make_request("eth_requestAccounts", [])
        except Exception as e:
            if is_user_rejection(e):
                raise UserDeclinedError("Account connection was rejected") from e
            raise ProviderUnavailableError(f"eth_requestAccounts failed: {e}") from e

        error = response.get("error")
        if error:
            if is_user_rejection(ProviderUnavailableError(error)):
                raise UserDeclinedError("Account connection was rejected")
            raise ProviderUnavailableError(f"eth_requestAccounts failed: {error}")
        return [AsyncWeb3.to_checksum_address(a) for a in response.get("result") or []]

    async def get_accounts(self) -> List[str]:
        if self.is_local:
            return [self.wallet_address]
        try:
            accounts = await self._w3.eth.accounts
        except Exception as e:
            raise ProviderUnavailableError(f"eth_accounts failed: {e}") from e
        return [AsyncWeb3.to_checksum_address(a) for a in accounts]
