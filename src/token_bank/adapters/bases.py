"""
Abstract Base Classes for Chain and Wallet Capabilities

Defines the four request/response capabilities the deposit orchestrator
consumes. The orchestrator never talks to an RPC node or a wallet directly;
it is handed implementations of these interfaces, which keeps the state
machine independent of web3.py, browser wallets or test doubles.

Core Classes:
    - ChainReader: Read-only contract calls
    - TransactionSender: State-changing calls and confirmation waits
    - TypedDataSigner: EIP-712 structured-data signatures
    - WalletProvider: Account discovery for the wallet session

``EVMAdapter`` implements all four on top of ``AsyncWeb3``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..schemas.bases import BaseTransactionConfirmation


class ChainReader(ABC):
    """
    Read-only access to contract state.

    Implementations are stateless and safe to call concurrently.
    """

    @abstractmethod
    async def read_contract(self, address: str, function_name: str, args: Sequence[Any] = ()) -> Any:
        """
        Call a view function and return its decoded result.

        Used for ``balanceOf``, ``symbol``, ``name``, ``nonces``,
        ``allowance`` and ``getDeposit``.

        Args:
            address: Contract address.
            function_name: ABI function name.
            args: Positional call arguments.

        Returns:
            The decoded return value (``int`` for uint256, ``str`` for strings).

        Raises:
            ChainReadError: If the node call fails.
        """
        pass


class TransactionSender(ABC):
    """
    Submission of state-changing calls on behalf of the connected account.
    """

    @abstractmethod
    async def send_transaction(
        self,
        address: str,
        function_name: str,
        args: Sequence[Any],
        account: str,
    ) -> str:
        """
        Submit a contract call and return its transaction hash.

        Used for ``approve``, ``deposit``, ``withdraw``, ``permitDeposit``
        and ``depositWithPermit2``.

        Args:
            address: Target contract address.
            function_name: ABI function name.
            args: Positional call arguments.
            account: Sending account.

        Returns:
            str: 0x-prefixed transaction hash.

        Raises:
            UserDeclinedError: If the wallet rejected the transaction prompt.
            ChainWriteError: If submission fails for any other reason.
        """
        pass

    @abstractmethod
    async def wait_for_confirmation(
        self,
        tx_hash: str,
        timeout: Optional[float] = None,
    ) -> BaseTransactionConfirmation:
        """
        Suspend until the transaction is mined.

        Args:
            tx_hash: Transaction hash returned by ``send_transaction``.
            timeout: Maximum seconds to wait; ``None`` uses the implementation default.

        Returns:
            A confirmation with ``status=SUCCESS``.

        Raises:
            ConfirmationTimeoutError: If the wait elapsed before the receipt appeared.
            ConfirmationError: If the transaction reverted or the wait failed.
        """
        pass


class TypedDataSigner(ABC):
    """
    EIP-712 structured-data signing by the connected key.
    """

    @abstractmethod
    async def sign_typed_data(
        self,
        account: str,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        primary_type: str,
        message: Dict[str, Any],
    ) -> str:
        """
        Request a typed-data signature.

        Args:
            account: Signing account.
            domain: EIP-712 domain values.
            types: Type definitions, including ``EIP712Domain``.
            primary_type: Name of the primary type.
            message: Message values.

        Returns:
            str: 0x-prefixed 65-byte signature hex (132 characters).

        Raises:
            UserDeclinedError: If the user rejected the signature prompt.
            SignatureRequestError: If signing failed for any other reason.
        """
        pass


class WalletProvider(ABC):
    """
    Account discovery for the connected wallet.
    """

    @abstractmethod
    async def request_accounts(self) -> List[str]:
        """
        Ask the wallet to expose its accounts (may prompt the user).

        Raises:
            UserDeclinedError: If the user refused the connection.
        """
        pass

    @abstractmethod
    async def get_accounts(self) -> List[str]:
        """Return the accounts currently exposed without prompting."""
        pass
