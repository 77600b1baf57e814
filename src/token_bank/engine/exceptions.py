"""
Exception and Error Definitions Module

Defines the exception hierarchy for deposit authorization, signing and
blockchain interactions. All exceptions inherit from TokenBankError for
unified exception handling.

Exception Hierarchy:
    TokenBankError (root)
    ├── ValidationError
    ├── UserDeclinedError
    ├── ProviderUnavailableError
    ├── ConfigurationError
    ├── OperationInProgressError
    ├── InvalidTransition
    ├── SignatureFormatError
    ├── SignatureRequestError
    ├── PermitExpiredError
    └── BlockchainInteractionError
        ├── ChainReadError
        ├── ChainWriteError
        └── ConfirmationError
            └── ConfirmationTimeoutError
"""

from enum import Enum
from typing import Any, Optional


class TokenBankError(Exception):
    """
    Root exception class for all project-specific exceptions.
    """
    pass


class ValidationError(TokenBankError):
    """
    Raised when user input is malformed or out of range.

    This includes scenarios such as:
    - No connected account
    - Empty or non-numeric amount
    - Amount that is zero, negative, or finer than the token's decimals

    Raised before any chain interaction is attempted.
    """
    pass


class UserDeclinedError(TokenBankError):
    """
    Raised when the connected signer explicitly rejected a prompt.

    Covers signature requests, transaction confirmations and account
    connection requests (EIP-1193 error code 4001).
    """
    pass


class ProviderUnavailableError(TokenBankError):
    """
    Raised when no wallet / signing capability is present.

    Fatal to every chain-dependent operation.
    """
    pass


class ConfigurationError(TokenBankError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Invalid contract addresses
    - Non-positive timeouts or deadline windows
    - Unknown contract passed to the chain reader
    """
    pass


class OperationInProgressError(TokenBankError):
    """
    Raised when an action is invoked while the same action is still running.
    """
    pass


class InvalidTransition(TokenBankError):
    """
    Raised when the orchestrator attempts a state transition that is not
    allowed from its current state.

    Attributes:
        current_state: State the run was in
        requested_state: State the run tried to enter
    """

    def __init__(self, current_state: Any, requested_state: Any):
        self.current_state = current_state
        self.requested_state = requested_state
        super().__init__(f"Invalid transition {current_state} -> {requested_state}")


class SignatureFormatError(TokenBankError):
    """
    Raised when a signature is not a well-formed 65-byte hex string.

    The signer is expected to return well-formed output, so this always
    indicates an integration defect rather than a user-recoverable condition.
    """
    pass


class SignatureRequestError(TokenBankError):
    """
    Raised when a typed-data signature request fails for a reason other than
    the user declining it.
    """
    pass


class PermitExpiredError(TokenBankError):
    """
    Raised when a signed permit's deadline has already passed before the
    deposit transaction could be submitted.

    Attributes:
        deadline: The permit deadline (unix seconds)
        current_time: Clock reading at the time of the check
    """

    def __init__(self, deadline: int, current_time: int):
        self.deadline = deadline
        self.current_time = current_time
        super().__init__(f"Permit deadline {deadline} has passed (now {current_time})")


class BlockchainInteractionError(TokenBankError):
    """
    Raised when blockchain interaction (RPC call) fails.

    This includes scenarios such as:
    - RPC call timeout
    - Network connectivity issues
    - Contract call revert
    """
    pass


class ChainReadError(BlockchainInteractionError):
    """
    Raised when a read-only contract call fails.
    """
    pass


class ChainWriteError(BlockchainInteractionError):
    """
    Raised when a state-changing transaction cannot be submitted.

    Attributes:
        function_name: Contract function that was being called
    """

    def __init__(self, message: str, function_name: Optional[str] = None):
        self.function_name = function_name
        super().__init__(message)


class ConfirmationError(BlockchainInteractionError):
    """
    Raised when waiting for a transaction fails or the transaction reverted.

    Attributes:
        tx_hash: Transaction hash that was being waited on
    """

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class ConfirmationTimeoutError(ConfirmationError):
    """
    Raised when the bounded confirmation wait elapses.

    The transaction may still be mined later; callers treat this as
    "still pending" rather than as a failure.
    """
    pass


class FailureKind(str, Enum):
    """Externally distinguishable failure categories."""
    VALIDATION = "validation"
    USER_DECLINED = "user_declined"
    OPERATION_FAILED = "operation_failed"


_REJECTION_CODE = 4001
_REJECTION_PHRASES = ("user rejected", "user denied", "rejected by user")


def _has_rejection_code(value: Any) -> bool:
    if isinstance(value, dict):
        if value.get("code") == _REJECTION_CODE:
            return True
        return _has_rejection_code(value.get("error"))
    return False


def is_user_rejection(exc: BaseException) -> bool:
    """
    Check whether an exception reports that the user declined a prompt.

    Looks at the exception and its cause/context chain for an EIP-1193
    ``4001`` code (as a ``code`` attribute, an RPC error dict in ``args`` or
    ``rpc_response``) or for a rejection phrase in the message.

    Args:
        exc: Exception raised by a wallet, provider or signer.

    Returns:
        True if the exception is a user rejection.
    """
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, UserDeclinedError):
            return True
        if getattr(current, "code", None) == _REJECTION_CODE:
            return True
        if _has_rejection_code(getattr(current, "rpc_response", None)):
            return True
        if any(_has_rejection_code(arg) for arg in current.args):
            return True
        message = str(current).lower()
        if any(phrase in message for phrase in _REJECTION_PHRASES):
            return True
        current = current.__cause__ or current.__context__
    return False


def classify_failure(exc: BaseException) -> FailureKind:
    """
    Classify an exception for user messaging.

    Args:
        exc: Any exception that terminated an operation.

    Returns:
        FailureKind.VALIDATION for input errors, USER_DECLINED for rejections,
        OPERATION_FAILED for everything else.
    """
    if isinstance(exc, ValidationError):
        return FailureKind.VALIDATION
    if is_user_rejection(exc):
        return FailureKind.USER_DECLINED
    return FailureKind.OPERATION_FAILED
