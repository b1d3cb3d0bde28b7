"""Bearer token authentication shared by the REST API and the websocket handshake.

Tokens are HS256 JWTs whose ``sub`` claim is the user id. The same
``TokenVerifier`` instance validates REST requests (via the FastAPI
dependencies below) and websocket handshakes (via the Session Registry), so a
credential accepted on one channel is accepted on the other.

Passwords for the account routes are stored as argon2 hashes.

Usage:
    >>> verifier = TokenVerifier(secret="s3cret")
    >>> token = verifier.issue("usr_1a2b3c4d5e6f")
    >>> verifier.verify(token)
    'usr_1a2b3c4d5e6f'
"""

import time
from typing import Annotated

import jwt
import structlog
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from models.database import TaskStore
from models.schemas import UserSummary
from realtime.errors import AuthenticationError

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)
_password_hasher = PasswordHasher()


class TokenVerifier:
    """Issues and validates signed access tokens.

    Attributes:
        algorithm: JWT signing algorithm.
        ttl_seconds: Lifetime of tokens produced by ``issue``.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl_seconds: float = 7 * 24 * 3600,
    ) -> None:
        self._secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds

    def issue(self, user_id: str, *, ttl_seconds: float | None = None) -> str:
        """Create a signed token identifying ``user_id``."""
        now = int(time.time())
        lifetime = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        payload = {"sub": user_id, "iat": now, "exp": now + int(lifetime)}
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str | None) -> str:
        """Validate a token and return the user id it identifies.

        Raises:
            AuthenticationError: If the token is missing, expired, tampered
                with, or carries no subject.
        """
        if not token:
            raise AuthenticationError("Missing credential")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Credential expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid credential") from e

        user_id = claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Credential has no subject")
        return user_id


def hash_password(password: str) -> str:
    """Return an argon2 hash of ``password`` suitable for storage."""
    return _password_hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Check ``password`` against a stored hash.

    Accounts created without a password store an empty hash, which never matches.
    """
    if not password_hash:
        return False
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def bearer_token_from_header(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


# -----------------------------------------------------------------------------
# FastAPI dependencies
# -----------------------------------------------------------------------------


def get_token_verifier(request: Request) -> TokenVerifier:
    """Return the verifier configured on the application."""
    return request.app.state.token_verifier


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> UserSummary:
    """Authenticate the request and resolve the calling user.

    Raises:
        HTTPException: 401 if the credential is invalid or the user no longer exists.
    """
    verifier = get_token_verifier(request)
    token = credentials.credentials if credentials else None
    try:
        user_id = verifier.verify(token)
    except AuthenticationError as e:
        logger.info("rest_auth_failed", path=request.url.path, reason=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    store: TaskStore = request.app.state.store
    user = await store.get_user(user_id)
    if user is None:
        logger.info("rest_auth_unknown_user", user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


CurrentUser = Annotated[UserSummary, Depends(get_current_user)]
