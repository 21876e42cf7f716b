"""Admin user accounts.

Users live in ``<data_dir>/users.json`` with bcrypt password hashes. The
store is small and read on startup; every write rewrites the whole file.
"""

import json
import os
import re
import threading
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional

import bcrypt
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import utcnow
from auth.errors import AuthError

logger = get_logger(__name__)

USERS_FILE = "users.json"
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,64}$")
# bcrypt only hashes the first 72 bytes.
MAX_PASSWORD_BYTES = 72
_SYMBOLS = re.compile(r"""[!@#$%^&*()_+\-=\[\]{}|;':",.<>?/~`]""")


class UserError(Exception):
    """Account creation failed."""
    pass


class UserExists(UserError):
    pass


class WeakPassword(UserError):
    pass


class Credentials(BaseModel):
    """Username and password as submitted at login."""
    username: str
    password: str = Field(repr=False)


class User(BaseModel):
    username: str
    password_hash: str = Field(repr=False)
    created_at: datetime = Field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None


def validate_password(password: str, confirm_password: Optional[str] = None) -> None:
    """
    Check password strength.

    Accepts a 16+ character passphrase, or 12+ characters using at least
    three of: uppercase, lowercase, digits, symbols.

    Raises:
        WeakPassword: If the password is rejected or does not match the confirmation
    """
    if confirm_password is not None and password != confirm_password:
        raise WeakPassword("passwords do not match")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPassword(f"must be at most {MAX_PASSWORD_BYTES} bytes")
    if len(password) >= 16:
        return
    if len(password) >= 12:
        classes = sum(
            bool(re.search(pattern, password))
            for pattern in (r"[A-Z]", r"[a-z]", r"[0-9]", _SYMBOLS.pattern)
        )
        if classes >= 3:
            return
        raise WeakPassword("must contain at least 3 of: uppercase, lowercase, number, symbol")
    raise WeakPassword("must be 16+ characters, or 12+ with mixed character types")


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> bytes:
    return bcrypt.hashpw(b"openpact-dummy-password", bcrypt.gensalt(rounds))


class UserStore:
    """JSON-file backed user accounts."""

    def __init__(self, data_dir: str | Path, rounds: int = 12) -> None:
        self.path = Path(data_dir) / USERS_FILE
        self.rounds = rounds
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path) as f:
            records = json.load(f)
        self._users = {u.username: u for u in (User(**record) for record in records)}
        logger.debug("Users loaded", count=len(self._users))

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        records = [u.model_dump(mode="json") for u in self._users.values()]
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", opener=lambda p, flags: os.open(p, flags, 0o600)) as f:
            json.dump(records, f, indent=2)
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)

    def has_users(self) -> bool:
        with self._lock:
            return bool(self._users)

    def get(self, username: str) -> Optional[User]:
        with self._lock:
            return self._users.get(username)

    def create(self, username: str, password: str) -> User:
        """
        Create an account.

        Raises:
            UserError: For an invalid username
            UserExists: If the username is taken
            WeakPassword: If the password is too weak
        """
        if not USERNAME_PATTERN.match(username):
            raise UserError("username must be 3-64 characters: letters, digits, '.', '_' or '-'")
        validate_password(password)
        password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(self.rounds))

        with self._lock:
            if username in self._users:
                raise UserExists(f"user already exists: {username}")
            user = User(username=username, password_hash=password_hash.decode("ascii"))
            self._users[username] = user
            self._save()

        logger.info("User created", username=username)
        return user

    def verify(self, credentials: Credentials) -> User:
        """
        Check a username/password pair.

        Raises:
            AuthError: If the user is unknown or the password is wrong
        """
        user = self.get(credentials.username)
        password = credentials.password.encode("utf-8")
        if len(password) > MAX_PASSWORD_BYTES:
            raise AuthError("invalid username or password")
        if user is None:
            # Same cost as a real check.
            bcrypt.checkpw(password, _dummy_hash(self.rounds))
            raise AuthError("invalid username or password")
        if not bcrypt.checkpw(password, user.password_hash.encode("ascii")):
            raise AuthError("invalid username or password")

        with self._lock:
            user = user.model_copy(update={"last_login_at": utcnow()})
            self._users[user.username] = user
            self._save()
        return user
