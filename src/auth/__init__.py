"""Token Authority and single-flight Refresh Coordinator."""

from auth.coordinator import RefreshCoordinator
from auth.errors import AuthError, RefreshFailed
from auth.tokens import TokenAuthority, load_or_create_secret
from auth.users import Credentials, UserStore

__all__ = [
    "AuthError",
    "Credentials",
    "RefreshCoordinator",
    "RefreshFailed",
    "TokenAuthority",
    "UserStore",
    "load_or_create_secret",
]
