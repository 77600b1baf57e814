"""
Client module for token bank deposits.

Provides the wallet session and the front-end facing client facade that
drives the deposit orchestrator.
"""

from .session import AccountStore, WalletSession
from .bank_client import TokenBankClient

__all__ = ["AccountStore", "WalletSession", "TokenBankClient"]
