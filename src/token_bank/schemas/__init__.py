from .bases import (
    CanonicalModel,
    TransactionStatus,
    BaseTransactionConfirmation,
)

__all__ = [
    "CanonicalModel",
    "TransactionStatus",
    "BaseTransactionConfirmation",
]
