"""
Authorization and authentication utilities.

This module provides the FastAPI dependencies endpoints use to learn who is
calling. Identity comes from the session cookie set at login, or from an
`Authorization: Bearer <jwt>` header for API clients.

Usage in endpoints:

    @app.post("/api/clubs")
    def create(body: CreateClubRequest, user_id: str = Depends(require_auth)):
        ...

    @app.get("/api/clubs/{club_id}")
    def fetch(club_id: str, user_id: Optional[str] = Depends(optional_auth)):
        # user_id is None for anonymous callers
        ...
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request

from .db import get_user_by_id
from .db_helpers import session_scope

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get('authorization') or ''
    scheme, _, token = header.partition(' ')
    if scheme.lower() == 'bearer' and token.strip():
        return token.strip()
    return None


def optional_auth(request: Request) -> Optional[str]:
    """Resolve the caller's user id, or None for anonymous requests.

    A session or token that points at a user who no longer exists is
    treated as anonymous and the session is dropped.
    """
    auth = request.app.state.auth
    session_id = request.cookies.get(auth.cookie_name)
    user_id = auth.resolve(session_id, _bearer_token(request))
    if not user_id:
        return None

    with session_scope(request.app.state.engine) as s:
        if get_user_by_id(s, user_id) is None:
            logger.info("Identity refers to unknown user %s; treating request as anonymous", user_id)
            if session_id:
                auth.session_manager.revoke_session(session_id)
            return None
    return user_id


def require_auth(user_id: Optional[str] = Depends(optional_auth)) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


def client_ip(request: Request) -> str:
    """Best-effort source address used to tell anonymous likers apart."""
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
