"""
Admin credential resolution and persistence.

The admin health endpoints take an opaque bearer token. ``CredentialProvider``
is the only component that reads or writes the persisted token; everything
else goes through ``resolve()`` and ``invalidate()``.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Union

from rich.prompt import Prompt

from catalog_client.config import settings

logger = logging.getLogger(__name__)

PromptFn = Callable[[], Optional[str]]

CREDENTIAL_KEY = "admin_health_secret"


class CredentialStore:
    """Persists the admin token as JSON in a user-private file."""

    def __init__(self, path: Union[str, Path, None] = None, key: str = CREDENTIAL_KEY):
        self.path = Path(path or settings.credential_file).expanduser()
        self.key = key

    def load(self) -> Optional[str]:
        """Return the stored token or None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read credential file {self.path}: {e}")
            return None
        token = data.get(self.key) if isinstance(data, dict) else None
        return token or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({self.key: token}, f)
        try:
            os.chmod(self.path, 0o600)
        except OSError as e:  # pragma: no cover - platform dependent
            logger.debug(f"Could not restrict permissions on {self.path}: {e}")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def rich_prompt() -> Optional[str]:
    """Ask for the admin secret on the terminal; empty input means 'declined'."""
    value = Prompt.ask("Enter admin health secret", password=True, default="", show_default=False)
    return value.strip() or None


class CredentialProvider:
    """Resolves the admin bearer token: cached, then stored, then prompted."""

    def __init__(self, store: Optional[CredentialStore] = None, prompt: Optional[PromptFn] = None):
        self.store = store if store is not None else CredentialStore()
        self.prompt = prompt or rich_prompt
        self._token: Optional[str] = None

    def resolve(self) -> Optional[str]:
        """Return a token, soliciting and persisting one if none is known.

        Returns None when the user declines to supply one; callers treat that
        as NOT_AUTHENTICATED.
        """
        if self._token:
            return self._token

        token = self.store.load()
        if not token:
            supplied = self.prompt()
            token = supplied.strip() if supplied else None
            if not token:
                logger.info("No admin credential supplied")
                return None
            self.store.save(token)
            logger.info("Admin credential stored")

        self._token = token
        return token

    def invalidate(self) -> None:
        """Forget the token everywhere; the next ``resolve()`` prompts again."""
        self._token = None
        self.store.clear()
        logger.warning("Admin credential invalidated")

    @property
    def has_credential(self) -> bool:
        return bool(self._token) or bool(self.store.load())
