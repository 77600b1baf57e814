from .bases import ChainReader, TransactionSender, TypedDataSigner, WalletProvider
from .evm import (
    EVMAdapter,
    TokenBankSettings,
    EVMECDSASignature,
    EVMTransactionConfirmation,
    BalanceSnapshot,
)

__all__ = [
    "ChainReader",
    "TransactionSender",
    "TypedDataSigner",
    "WalletProvider",
    "EVMAdapter",
    "TokenBankSettings",
    "EVMECDSASignature",
    "EVMTransactionConfirmation",
    "BalanceSnapshot",
]
