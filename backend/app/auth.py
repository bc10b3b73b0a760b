# auth.py
# Login sessions and the built-in accounts.

import uuid
from typing import Any, Dict, Optional

import structlog

from . import config
from .bidding import now_iso
from .models import UserRole
from .storage import LocalStore

logger = structlog.get_logger()

SEED_USERS = [
    {"id": config.PROTECTED_USER_ID, "name": "System Administrator", "role": UserRole.SYS_ADMIN.value,
     "company": "QuickBid", "password": "admin"},
    {"id": "buyer", "name": "Wang (Procurement)", "role": UserRole.BUYER.value,
     "company": "Demo Procurement Center", "password": "123"},
    {"id": "vendor1", "name": "Li (Supplier)", "role": UserRole.VENDOR.value,
     "company": "Quality Office Supplies Co.", "password": "123"},
]


def ensure_seed_users(store) -> int:
    """Write the built-in accounts when the user table is empty."""
    if store.select("users"):
        return 0
    # an empty read may just be a failed cloud read, so never overwrite rows
    created = 0
    for u in reversed(SEED_USERS):
        if store.insert("users", {**u, "created_at": now_iso()}):
            created += 1
    logger.info("seed_users_created", count=created)
    return created


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k != "password"}


def find_user(store, user_id: str) -> Optional[Dict[str, Any]]:
    rows = store.select("users", id=user_id)
    return rows[0] if rows else None


def authenticate(local: LocalStore, store, user_id: str, password: str) -> Optional[Dict[str, Any]]:
    user = lookup_user(local, store, user_id)
    if user and user.get("password") == password:
        return user
    return None


def open_session(local: LocalStore, user_id: str) -> str:
    token = uuid.uuid4().hex
    local.upsert("sessions", {"id": token, "user_id": user_id, "created_at": now_iso()})
    return token


def close_session(local: LocalStore, token: str) -> int:
    return local.delete("sessions", id=token)


def drop_user_sessions(local: LocalStore, user_id: str) -> int:
    return local.delete("sessions", user_id=user_id)


def lookup_user(local: LocalStore, store, user_id: str) -> Optional[Dict[str, Any]]:
    # accounts in the local file stay valid while the cloud store is active
    user = find_user(store, user_id)
    if user is None and store is not local:
        user = find_user(local, user_id)
    return user


def session_user(local: LocalStore, store, token: str) -> Optional[Dict[str, Any]]:
    rows = local.select("sessions", id=token)
    if not rows:
        return None
    return lookup_user(local, store, rows[0]["user_id"])

