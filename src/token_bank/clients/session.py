"""
Wallet session bookkeeping.

The only persisted client state is the last connected account address. It is
advisory: on reconnect it is trusted only if the live wallet still exposes
that account.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from ..adapters.bases import WalletProvider
from ..engine.exceptions import ProviderUnavailableError, TokenBankError, UserDeclinedError, is_user_rejection

logger = logging.getLogger(__name__)


class AccountStore:
    """
    JSON file holding ``{"account": "<address>"}``.

    A missing or unreadable file reads as "no account".
    """

    KEY = "account"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def load(self) -> Optional[str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return None
        account = data.get(self.KEY) if isinstance(data, dict) else None
        return account if isinstance(account, str) and account else None

    def save(self, account: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({self.KEY: account}), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class WalletSession:
    """
    Tracks the connected account of one wallet provider.

    Attributes:
        account: Connected account, or None when disconnected.
    """

    def __init__(self, provider: Optional[WalletProvider], store: Optional[AccountStore] = None):
        self.provider = provider
        self.store = store
        self.account: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.account is not None

    def _require_provider(self) -> WalletProvider:
        if self.provider is None:
            raise ProviderUnavailableError("No wallet provider available")
        return self.provider

    async def connect(self) -> str:
        """
        Ask the wallet for accounts and keep the first one.

        Raises:
            UserDeclinedError: If the user refused the connection.
            ProviderUnavailableError: If no provider is present, it exposes no
                account, or the request failed.
        """
        provider = self._require_provider()
        try:
            accounts = await provider.request_accounts()
        except TokenBankError:
            raise
        except Exception as e:
            if is_user_rejection(e):
                raise UserDeclinedError("Wallet connection was declined") from e
            raise ProviderUnavailableError(f"Wallet connection failed: {e}") from e

        if not accounts:
            raise ProviderUnavailableError("Wallet exposed no accounts")

        self.account = accounts[0]
        if self.store is not None:
            self.store.save(self.account)
        logger.info("Connected account %s", self.account)
        return self.account

    async def reconnect(self) -> Optional[str]:
        """
        Restore the stored account if the wallet still exposes it.

        Never prompts the user. A stale stored account is cleared.

        Returns:
            The restored account, or None.
        """
        if self.store is None or self.provider is None:
            return None
        stored = self.store.load()
        if stored is None:
            return None

        try:
            accounts = await self.provider.get_accounts()
        except Exception as e:
            logger.warning("Automatic reconnect failed: %s", e)
            return None

        if stored.lower() in (a.lower() for a in accounts):
            self.account = next(a for a in accounts if a.lower() == stored.lower())
            logger.info("Reconnected account %s", self.account)
            return self.account

        logger.debug("Stored account %s no longer exposed; clearing", stored)
        self.store.clear()
        return None

    def disconnect(self) -> None:
        self.account = None
        if self.store is not None:
            self.store.clear()
