from .adapter import EVMAdapter
from .constants import (
    TokenBankSettings,
    PERMIT2_ADDRESS,
    MAX_UINT256,
    amount_to_value,
    value_to_amount,
)
from .schemas import (
    EVMECDSASignature,
    Permit2TransferPermit,
    EVMTransactionConfirmation,
    BalanceSnapshot,
)
from .standards import (
    EIP712Domain,
    PermitMessage,
    EIP2612TypedData,
    Permit2TypedData,
)
from .signatures import (
    build_eip2612_typed_data,
    fetch_eip2612_typed_data,
    build_permit2_typed_data,
    decompose_signature,
    signature_to_bytes,
    generate_permit2_nonce,
    compute_deadline,
    sign_typed_data_locally,
)
from .allowances import needs_approval, query_erc20_allowance

__all__ = [
    "EVMAdapter",
    "TokenBankSettings",
    "PERMIT2_ADDRESS",
    "MAX_UINT256",
    "amount_to_value",
    "value_to_amount",
    "EVMECDSASignature",
    "Permit2TransferPermit",
    "EVMTransactionConfirmation",
    "BalanceSnapshot",
    "EIP712Domain",
    "PermitMessage",
    "EIP2612TypedData",
    "Permit2TypedData",
    "build_eip2612_typed_data",
    "fetch_eip2612_typed_data",
    "build_permit2_typed_data",
    "decompose_signature",
    "signature_to_bytes",
    "generate_permit2_nonce",
    "compute_deadline",
    "sign_typed_data_locally",
    "needs_approval",
    "query_erc20_allowance",
]
