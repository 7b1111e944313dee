"""
Password hashing, session and JWT token management.

Supports:
- bcrypt password hashes for stored user credentials
- Server-side sessions referenced by an HttpOnly cookie
- JWT bearer tokens for API clients
"""

import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import bcrypt
from jose import JWTError, jwt

from .constants import MAX_PASSWORD_BYTES

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """Hash a password with a fresh bcrypt salt."""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plain-text password against a stored bcrypt hash."""
    if len(password.encode('utf-8')) > MAX_PASSWORD_BYTES:
        # Could never have been registered
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        logger.warning("Stored password hash could not be parsed")
        return False


class JWTManager:
    """Signs and checks the bearer tokens handed out at login."""

    algorithm = "HS256"

    def __init__(self, secret: str, expiry_days: int = 30):
        self.secret = secret
        self.expiry_days = expiry_days

    def create_token(self, user_id: str, username: Optional[str] = None) -> str:
        issued = datetime.now(timezone.utc)
        claims: Dict[str, Any] = {
            'sub': user_id,
            'iat': issued,
            'exp': issued + timedelta(days=self.expiry_days),
        }
        if username:
            claims['name'] = username
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Decoded claims of a valid token, None for a bad or expired one."""
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug("Rejected bearer token: %s", e)
            return None


class SessionManager:
    """In-memory session store keyed by the cookie value.

    Request handlers run in a thread pool, so every access goes through a lock.
    Sessions expire `expiry_seconds` after they were opened.
    """

    def __init__(self, expiry_seconds: int = 86400):
        self.expiry_seconds = expiry_seconds
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _expired(self, session: Dict[str, Any], now: datetime) -> bool:
        return now - session['created_at'] > timedelta(seconds=self.expiry_seconds)

    def create_session(self, user_id: str, username: str) -> str:
        session_id = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        with self._lock:
            self._sessions[session_id] = {
                'user_id': user_id,
                'username': username,
                'created_at': now,
                'last_activity': now,
            }
        logger.debug("Session opened for user %s", user_id)
        return session_id

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._expired(session, now):
                del self._sessions[session_id]
                logger.debug("Session of user %s expired", session['user_id'])
                return None
            session['last_activity'] = now
            return session

    def revoke_session(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.debug("Session of user %s revoked", session['user_id'])
        return True

    def cleanup_expired(self) -> int:
        """Drop every expired session and return how many were removed."""
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [sid for sid, session in self._sessions.items() if self._expired(session, now)]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)


class AuthContext:
    """Session store and token manager for one running application.

    Built once in the app lifespan from settings and kept on `app.state`.
    """

    def __init__(self, settings):
        secret = settings.jwt_secret
        if not secret:
            secret = secrets.token_urlsafe(48)
            logger.warning("JWT_SECRET not set; using a random secret, tokens will not survive a restart")
        self.cookie_name = settings.session_cookie_name
        self.cookie_secure = settings.cookie_secure
        self.session_manager = SessionManager(settings.session_expiry_seconds)
        self.jwt_manager = JWTManager(secret, settings.jwt_expiry_days)

    def login(self, user_id: str, username: str) -> Dict[str, str]:
        """Open a session and mint a bearer token for `user_id`."""
        return {
            'session_id': self.session_manager.create_session(user_id, username),
            'token': self.jwt_manager.create_token(user_id, username),
        }

    def resolve(self, session_id: Optional[str], bearer_token: Optional[str]) -> Optional[str]:
        """Return the user id carried by a session cookie or bearer token, if any."""
        if session_id:
            session = self.session_manager.get_session(session_id)
            if session:
                return session['user_id']
        if bearer_token:
            payload = self.jwt_manager.verify_token(bearer_token)
            if payload and payload.get('sub'):
                return str(payload['sub'])
        return None
