"""Token Authority.

Issues and validates HS256 JWTs. Access tokens are short-lived bearer
credentials; refresh tokens only exchange for a new pair and are single
use: a successful refresh revokes the presented token.
"""

import asyncio
import base64
import os
import secrets
import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import ValidationError

from shared.config import ServerConfig
from shared.logging import get_logger
from shared.models import AccessCheck, AccessStatus, TokenClaims, TokenPair, TokenType, utcnow
from auth.coordinator import RefreshCoordinator
from auth.errors import AuthError, RefreshFailed
from auth.users import Credentials, UserStore

logger = get_logger(__name__)

ALGORITHM = "HS256"
ISSUER = "openpact"
JWT_SECRET_FILE = "jwt_secret"


def load_or_create_secret(data_dir: str | Path, configured: Optional[str] = None) -> str:
    """
    Resolve the JWT signing secret.

    A configured secret wins; otherwise ``<data_dir>/jwt_secret`` is read,
    or generated with mode 0600 on first start.
    """
    if configured:
        return configured

    path = Path(data_dir) / JWT_SECRET_FILE
    if path.exists():
        return path.read_text().strip()

    path.parent.mkdir(parents=True, exist_ok=True)
    secret = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(secret)
    logger.info("Generated JWT secret", path=str(path))
    return secret


class TokenAuthority:
    """
    Issues, validates, rotates and revokes OpenPact credentials.

    Owns one ``RefreshCoordinator`` per subject, so concurrent refreshes
    for the same user collapse into a single call.
    """

    def __init__(
        self,
        secret: str,
        access_expiry: timedelta,
        refresh_expiry: timedelta,
        users: Optional[UserStore] = None,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.access_expiry = access_expiry
        self.refresh_expiry = refresh_expiry
        self.users = users

        self._lock = threading.Lock()
        # Revoked refresh jti -> expiry; entries are dropped once expired.
        self._revoked: dict[str, datetime] = {}
        self._coordinators: dict[str, RefreshCoordinator] = {}

    @classmethod
    def from_config(cls, config: ServerConfig, users: Optional[UserStore] = None) -> "TokenAuthority":
        secret = load_or_create_secret(config.data_dir, config.jwt_secret)
        return cls(secret, config.access_expiry, config.refresh_expiry, users)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _encode(self, subject: str, token_type: TokenType, issued: datetime, expires: datetime) -> str:
        payload = {
            "sub": subject,
            "type": token_type.value,
            "jti": uuid.uuid4().hex,
            "iat": issued,
            "exp": expires,
            "iss": ISSUER,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def _decode(self, token: str, verify_exp: bool = True) -> TokenClaims:
        """
        Raises:
            ExpiredSignatureError: Well-signed but expired
            JWTError: Any other signature or claim failure
        """
        payload = jwt.decode(
            token,
            self._secret,
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            options={"verify_exp": verify_exp},
        )
        try:
            return TokenClaims(**payload)
        except ValidationError as e:
            raise JWTError(f"malformed claims: {e.error_count()} error(s)") from e

    def issue_tokens(self, subject: str) -> TokenPair:
        """Issue a fresh access/refresh pair for ``subject``."""
        now = utcnow()
        access_expiry = now + self.access_expiry
        refresh_expiry = now + self.refresh_expiry
        return TokenPair(
            access_token=self._encode(subject, TokenType.ACCESS, now, access_expiry),
            refresh_token=self._encode(subject, TokenType.REFRESH, now, refresh_expiry),
            access_expiry=access_expiry,
            refresh_expiry=refresh_expiry,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def issue_initial_tokens(self, credentials: Credentials) -> TokenPair:
        """
        Log in with username and password.

        Raises:
            AuthError: If the credentials are invalid
        """
        if self.users is None:
            raise AuthError("no user store configured")
        user = self.users.verify(credentials)
        logger.info("Login succeeded", username=user.username)
        return self.issue_tokens(user.username)

    def validate_access(self, token: str) -> AccessCheck:
        """Check an access token without side effects."""
        if not token:
            return AccessCheck(status=AccessStatus.INVALID)

        try:
            claims = self._decode(token)
        except ExpiredSignatureError:
            try:
                expired = self._decode(token, verify_exp=False)
            except JWTError:
                return AccessCheck(status=AccessStatus.INVALID)
            if expired.type != TokenType.ACCESS:
                return AccessCheck(status=AccessStatus.INVALID)
            return AccessCheck(status=AccessStatus.EXPIRED)
        except JWTError:
            return AccessCheck(status=AccessStatus.INVALID)

        if claims.type != TokenType.ACCESS:
            return AccessCheck(status=AccessStatus.INVALID)
        return AccessCheck(status=AccessStatus.VALID, claims=claims)

    def _prune_revoked(self, now: datetime) -> None:
        expired = [jti for jti, exp in self._revoked.items() if exp <= now]
        for jti in expired:
            del self._revoked[jti]

    def _check_refresh(self, refresh_token: str, consume: bool) -> TokenClaims:
        """
        Decode a refresh token and reject it if expired, revoked or of the wrong type.

        With ``consume`` the token's jti is revoked in the same critical
        section, so it can succeed only once.
        """
        try:
            claims = self._decode(refresh_token)
        except ExpiredSignatureError as e:
            raise RefreshFailed("refresh token expired") from e
        except JWTError as e:
            raise RefreshFailed("invalid refresh token") from e

        if claims.type != TokenType.REFRESH:
            raise RefreshFailed("not a refresh token")

        with self._lock:
            self._prune_revoked(utcnow())
            if claims.jti in self._revoked:
                logger.warning("Revoked refresh token presented", subject=claims.sub)
                raise RefreshFailed("refresh token revoked")
            if consume:
                self._revoked[claims.jti] = claims.exp
        return claims

    def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a rotated pair.

        Raises:
            RefreshFailed: If the token is invalid, expired, revoked or not a refresh token
        """
        claims = self._check_refresh(refresh_token, consume=True)
        return self.issue_tokens(claims.sub)

    def revoke(self, refresh_token: str) -> None:
        """Invalidate a refresh token (logout). Unknown or bad tokens are ignored."""
        try:
            claims = self._decode(refresh_token, verify_exp=False)
        except JWTError:
            return
        with self._lock:
            self._revoked[claims.jti] = claims.exp
        logger.info("Refresh token revoked", subject=claims.sub)

    def is_revoked(self, refresh_token: str) -> bool:
        try:
            claims = self._decode(refresh_token, verify_exp=False)
        except JWTError:
            return False
        with self._lock:
            return claims.jti in self._revoked

    # ------------------------------------------------------------------
    # Single-flight refresh
    # ------------------------------------------------------------------

    def coordinator_for(self, subject: str) -> RefreshCoordinator:
        with self._lock:
            coordinator = self._coordinators.get(subject)
            if coordinator is None:
                coordinator = RefreshCoordinator(name=subject)
                self._coordinators[subject] = coordinator
            return coordinator

    def subject_of(self, token: str) -> Optional[str]:
        """Subject of a well-signed token, expired or not."""
        try:
            return self._decode(token, verify_exp=False).sub
        except JWTError:
            return None

    async def refresh_session(self, refresh_token: str) -> TokenPair:
        """
        Refresh through the subject's coordinator.

        Concurrent calls for the same subject share one underlying refresh.
        The presented token is checked before joining, so an expired or
        revoked token never receives a pair issued for someone else's
        valid one.

        Raises:
            RefreshFailed: If the token is rejected or the refresh fails
        """
        claims = self._check_refresh(refresh_token, consume=False)

        async def do_refresh() -> TokenPair:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self.refresh, refresh_token)

        return await self.coordinator_for(claims.sub).refresh(do_refresh)
