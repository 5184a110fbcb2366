"""
Session token persistence for the RECtify client

Holds at most one opaque bearer token. The token is the only piece of session
state that survives a restart; user data is always re-fetched.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import jwt
from cryptography.fernet import Fernet, InvalidToken

from .exceptions import CredentialStoreError

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "rectify-token"


def token_expired(token: str, now: Optional[datetime] = None) -> bool:
    """Whether a JWT's exp claim has passed.

    The signature is not verified; this only spares a round trip for a token
    the server would reject anyway. Opaque (non-JWT) tokens and JWTs without
    an exp claim are never considered expired here.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return False

    exp = payload.get("exp")
    if exp is None:
        return False

    now = now or datetime.now(timezone.utc)
    return datetime.fromtimestamp(exp, tz=timezone.utc) <= now


class CredentialStore(ABC):
    """A single persisted slot for the session token"""

    @abstractmethod
    def get_token(self) -> Optional[str]:
        """Return the stored token, or None when logged out"""

    @abstractmethod
    def set_token(self, token: str) -> None:
        """Replace the stored token"""

    @abstractmethod
    def clear(self) -> None:
        """Remove the stored token"""

    def has_token(self) -> bool:
        return self.get_token() is not None


class MemoryCredentialStore(CredentialStore):
    """In-process token slot; does not survive a restart"""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileCredentialStore(CredentialStore):
    """Token slot backed by a JSON document on disk.

    The token lives under ``storage_key``. When an encryption key is given the
    value is Fernet-encrypted. Unreadable or undecryptable contents count as
    logged out and are removed.
    """

    def __init__(self, path: str, storage_key: str = DEFAULT_STORAGE_KEY,
                 encryption_key: Optional[str] = None):
        self.path = os.path.expanduser(path)
        self.storage_key = storage_key
        self._fernet = Fernet(encryption_key) if encryption_key else None

    def get_token(self) -> Optional[str]:
        if not os.path.exists(self.path):
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Discarding unreadable credentials file {self.path}: {e}")
            self.clear()
            return None

        value = document.get(self.storage_key) if isinstance(document, dict) else None
        if not isinstance(value, str) or not value:
            return None

        if self._fernet is None:
            return value

        try:
            return self._fernet.decrypt(value.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.warning("Stored session token could not be decrypted; clearing it")
            self.clear()
            return None

    def set_token(self, token: str) -> None:
        value = token
        if self._fernet is not None:
            value = self._fernet.encrypt(token.encode("utf-8")).decode("utf-8")

        self._write({self.storage_key: value})

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CredentialStoreError(f"Failed to clear credentials at {self.path}: {e}")

    def _write(self, document: dict) -> None:
        directory = os.path.dirname(self.path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".credentials-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise CredentialStoreError(f"Failed to write credentials to {self.path}: {e}")
