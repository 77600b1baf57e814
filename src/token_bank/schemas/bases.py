"""
Shared pydantic bases: canonical JSON and the chain-neutral receipt outcome.
"""

import json
from abc import ABC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    The JSON form has sorted keys and no extra whitespace, so two equal models
    always serialise to byte-identical strings. Large integers (uint256
    amounts, nonces) are kept as JSON integers, never floats.
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert the model to a canonical JSON string.

        Returns:
            str: JSON with sorted keys and compact separators.
        """
        data = self.model_dump(mode="json")
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )


class TransactionStatus(str, Enum):
    """Mined outcome of a transaction. An unmined one has no confirmation yet."""
    SUCCESS = "success"
    FAILED = "failed"


class BaseTransactionConfirmation(CanonicalModel, ABC):
    """
    Outcome of waiting for one submitted transaction.

    Attributes:
        confirmation_type: Chain family tag (e.g. "evm").
        status: SUCCESS once mined without revert; FAILED otherwise.
        error_message: Reason reported for a failed transaction.
    """

    confirmation_type: str = Field(..., description="Chain family tag (e.g. evm)")
    status: TransactionStatus = Field(..., description="Mined outcome")
    error_message: Optional[str] = Field(None, description="Reason for a failed transaction")

    def is_success(self) -> bool:
        return self.status == TransactionStatus.SUCCESS
