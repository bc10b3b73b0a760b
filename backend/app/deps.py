# deps.py
from functools import lru_cache
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import auth, config
from .changefeed import ChangeFeed, feed
from .models import UserRole
from .storage import LocalStore, select_store

logger = structlog.get_logger()

security = HTTPBearer(auto_error=False)


@lru_cache()
def get_local_store() -> LocalStore:
    return LocalStore(config.DATA_DIR)


def get_store(local: LocalStore = Depends(get_local_store)):
    """Data tables live in the cloud when configured, else in local files."""
    return select_store(local)


def get_feed() -> ChangeFeed:
    return feed


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    local: LocalStore = Depends(get_local_store),
    store=Depends(get_store),
) -> Dict[str, Any]:
    """FastAPI dependency: resolve the bearer session token to a user row."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not logged in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = auth.session_user(local, store, credentials.credentials)
    if user is None:
        logger.warning("session_invalid")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired, please log in again",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_roles(*allowed_roles: UserRole):
    """
    Dependency factory for role checks; returns the current user.

    Usage:
        @app.post("/api/v1/rfqs")
        def create_rfq(user: dict = Depends(require_roles(UserRole.BUYER))):
    """
    allowed = {r.value for r in allowed_roles}

    def check_role(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user.get('role')}' cannot perform this action",
            )
        return user

    return check_role
