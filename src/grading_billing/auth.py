"""
Authentication utilities and JWT token handling

Tokens carry the account email (`sub`) and the auth session id (`sid`).
The token's own `exp` is the hard refresh deadline; the session row holds
the shorter access expiry, which can be extended until that deadline.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import config
from .db.base import utcnow
from .db.engine import get_db
from .db.models import User, UserSession
from .errors import AuthenticationError, SessionExpiredError
from .services.retry import with_session_refresh

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

http_bearer = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token

    Args:
        data: Claims (must include 'sub' - account email)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "jti": str(uuid.uuid4()),
        "iat": now,
    })
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=ALGORITHM)


def create_session(db: Session, user: User) -> Tuple[str, UserSession]:
    """Open an auth session for a user and issue its token"""
    now = utcnow()
    session = UserSession(
        id=uuid.uuid4().hex,
        user_id=user.id,
        expires_at=now + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_expires_at=now + timedelta(hours=config.SESSION_REFRESH_WINDOW_HOURS),
    )
    db.add(session)
    db.commit()
    token = create_access_token(
        {"sub": user.email, "sid": session.id},
        expires_delta=session.refresh_expires_at - now,
    )
    return token, session


class AuthSessionResolver:
    """Resolves bearer tokens to users through their auth session"""

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock

    def claims(self, token: str) -> dict:
        """
        Verify the token signature and expiry

        Raises:
            AuthenticationError: Bad signature, expired token or missing claims
        """
        try:
            payload = jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
        except JWTError as e:
            logger.warning(f"Token verification failed: {type(e).__name__}")
            raise AuthenticationError("Could not validate credentials") from e
        if not payload.get("sub") or not payload.get("sid"):
            raise AuthenticationError("Token is missing required claims")
        return payload

    def _session(self, payload: dict) -> Optional[UserSession]:
        return self.db.get(UserSession, payload["sid"])

    def lookup(self, token: str) -> User:
        """
        Resolve the user behind a token

        Raises:
            AuthenticationError: Invalid token, revoked session or unknown user
            SessionExpiredError: Session missing or past its access expiry
        """
        payload = self.claims(token)
        session = self._session(payload)
        if session is None:
            raise SessionExpiredError("Session not found")
        if session.revoked_at is not None:
            raise AuthenticationError("Session revoked")
        if session.expires_at <= self.clock():
            raise SessionExpiredError("Session expired")

        user = session.user
        if user is None or not user.is_active or user.email != payload["sub"]:
            raise AuthenticationError("Could not validate credentials")
        return user

    def refresh(self, token: str) -> None:
        """
        Extend an expired session inside its refresh window

        Raises:
            SessionExpiredError: Session missing, revoked, or past its refresh window
        """
        payload = self.claims(token)
        session = self._session(payload)
        now = self.clock()
        if session is None or session.revoked_at is not None or session.refresh_expires_at <= now:
            raise SessionExpiredError("Session cannot be refreshed")

        session.expires_at = min(
            now + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
            session.refresh_expires_at,
        )
        self.db.commit()
        logger.info(f"Refreshed auth session {session.id}")


@dataclass
class Identity:
    """Caller identity; user is None when only the token signature could be verified"""
    email: str
    user: Optional[User]

    @property
    def session_valid(self) -> bool:
        return self.user is not None


def get_auth_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> str:
    """Extract the bearer token, 401 when absent"""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_auth_token),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the current user, refreshing an expired session once

    A session that cannot be refreshed propagates SessionExpiredError (401).
    """
    resolver = AuthSessionResolver(db)
    return with_session_refresh(lambda: resolver.lookup(token), lambda: resolver.refresh(token))


def get_identity(
    token: str = Depends(get_auth_token),
    db: Session = Depends(get_db)
) -> Identity:
    """
    Resolve the caller for read paths that can serve cached data

    Falls back to the signature-verified token subject when the session is
    gone; a bad signature is still rejected.
    """
    resolver = AuthSessionResolver(db)
    try:
        user = with_session_refresh(lambda: resolver.lookup(token), lambda: resolver.refresh(token))
    except SessionExpiredError:
        email = resolver.claims(token)["sub"]
        logger.info("Auth session unavailable, continuing with token identity")
        return Identity(email=email, user=None)
    return Identity(email=user.email, user=user)
