# storage.py
# JSON file storage plus an optional hosted database reached over its REST API.
# Both stores expose select / insert / upsert / delete keyed by row id.

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
import structlog

from . import config

logger = structlog.get_logger()

# one JSON file per key, mirroring the browser storage keys of the web client
TABLE_KEYS = {
    "rfqs": "qb_r",
    "bids": "qb_b",
    "users": "qb_u",
    "sessions": "qb_curr_u",
}
CLOUD_URL_KEY = "qb_cloud_url"
CLOUD_KEY_KEY = "qb_cloud_key"

CLOUD_TABLES = ("rfqs", "bids", "users")


class StorageError(Exception):
    """A write could not be persisted."""


def _matches(row: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(row.get(k) == v for k, v in filters.items())


class LocalStore:
    mode = "local"

    def __init__(self, data_dir: Path = config.DATA_DIR):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        for key in TABLE_KEYS.values():
            p = self._path(key)
            if not p.exists():
                p.write_text("[]")

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def read_json(self, key: str, default: Any = None):
        p = self._path(key)
        try:
            return json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return [] if default is None else default

    def write_json(self, key: str, obj: Any):
        p = self._path(key)
        tmp = p.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(obj, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
            tmp.replace(p)
        except OSError as e:
            raise StorageError(f"could not write {p.name}: {e}") from e

    # --- table interface ---

    def select(self, table: str, **filters) -> List[Dict[str, Any]]:
        rows = self.read_json(TABLE_KEYS[table])
        return [r for r in rows if _matches(r, filters)]

    def upsert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        key = TABLE_KEYS[table]
        with self._lock:
            rows = self.read_json(key)
            idx = next((i for i, r in enumerate(rows) if r.get("id") == row["id"]), None)
            if idx is None:
                rows.insert(0, row)
            else:
                rows[idx] = row
            self.write_json(key, rows)
        return row

    def insert(self, table: str, row: Dict[str, Any]) -> bool:
        """Add ``row`` unless its id is already present."""
        key = TABLE_KEYS[table]
        with self._lock:
            rows = self.read_json(key)
            if any(r.get("id") == row["id"] for r in rows):
                return False
            rows.insert(0, row)
            self.write_json(key, rows)
        return True

    def delete(self, table: str, **filters) -> int:
        if not filters:
            raise ValueError("delete needs at least one filter")
        key = TABLE_KEYS[table]
        with self._lock:
            rows = self.read_json(key)
            kept = [r for r in rows if not _matches(r, filters)]
            self.write_json(key, kept)
        return len(rows) - len(kept)

    # --- scalar keys ---

    def get_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        p = self._path(key)
        if not p.exists():
            return default
        return self.read_json(key, default="")

    def set_value(self, key: str, value: str):
        with self._lock:
            self.write_json(key, value)


class CloudStore:
    """Tables on a hosted Postgres exposed through PostgREST (``/rest/v1``)."""

    mode = "cloud"
    ORDER = {"rfqs": "created_at.desc"}

    def __init__(self, url: str, key: str, session: Optional[requests.Session] = None,
                 timeout: float = config.HTTP_TIMEOUT):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        })

    def _url(self, table: str) -> str:
        if table not in CLOUD_TABLES:
            raise KeyError(table)
        return f"{self.base_url}/{table}"

    @staticmethod
    def _eq(filters: Dict[str, Any]) -> Dict[str, str]:
        return {k: f"eq.{v}" for k, v in filters.items()}

    def select(self, table: str, **filters) -> List[Dict[str, Any]]:
        params = {"select": "*", **self._eq(filters)}
        if table in self.ORDER:
            params["order"] = self.ORDER[table]
        try:
            r = self.session.get(self._url(table), params=params, timeout=self.timeout)
            r.raise_for_status()
            return r.json() or []
        except (requests.RequestException, ValueError) as e:
            # reads degrade to an empty list, the UI just shows nothing
            logger.error("cloud_select_failed", table=table, error=str(e))
            return []

    def upsert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Prefer": "resolution=merge-duplicates,return=minimal"}
        try:
            r = self.session.post(self._url(table), json=row, headers=headers, timeout=self.timeout)
            r.raise_for_status()
        except (requests.RequestException, ValueError) as e:
            logger.error("cloud_upsert_failed", table=table, row_id=row.get("id"), error=str(e))
            raise StorageError(f"upsert into {table} failed") from e
        return row

    def insert(self, table: str, row: Dict[str, Any]) -> bool:
        """Insert-if-absent; existing rows with the same id are left alone."""
        headers = {"Prefer": "resolution=ignore-duplicates,return=representation"}
        try:
            r = self.session.post(self._url(table), json=row, headers=headers, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            logger.error("cloud_insert_failed", table=table, row_id=row.get("id"), error=str(e))
            raise StorageError(f"insert into {table} failed") from e
        try:
            return bool(r.json())
        except ValueError:
            return False

    def delete(self, table: str, **filters) -> int:
        if not filters:
            raise ValueError("delete needs at least one filter")
        headers = {"Prefer": "return=representation"}
        try:
            r = self.session.delete(self._url(table), params=self._eq(filters), headers=headers,
                                    timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            logger.error("cloud_delete_failed", table=table, filters=filters, error=str(e))
            raise StorageError(f"delete from {table} failed") from e
        try:
            return len(r.json() or [])
        except ValueError:
            return 0


# --- cloud configuration (always kept in the local store) ---

def load_cloud_config(local: LocalStore) -> Dict[str, str]:
    return {
        "url": local.get_value(CLOUD_URL_KEY, config.CLOUD_URL) or "",
        "key": local.get_value(CLOUD_KEY_KEY, config.CLOUD_KEY) or "",
    }


def save_cloud_config(local: LocalStore, url: str, key: str) -> Dict[str, str]:
    url = (url or "").strip()
    key = (key or "").strip()
    if url and not url.startswith("http"):
        raise ValueError("Please enter a valid cloud URL")
    local.set_value(CLOUD_URL_KEY, url)
    local.set_value(CLOUD_KEY_KEY, key)
    _cloud_stores.clear()
    logger.info("cloud_config_saved", mode="cloud" if url and key else "local")
    return {"url": url, "key": key}


_cloud_stores: Dict[tuple, CloudStore] = {}


def select_store(local: LocalStore):
    """Cloud store when a URL and key are configured, else the local one."""
    cfg = load_cloud_config(local)
    if not (cfg["url"] and cfg["key"]):
        return local
    ident = (cfg["url"], cfg["key"])
    if ident not in _cloud_stores:
        _cloud_stores[ident] = CloudStore(cfg["url"], cfg["key"])
    return _cloud_stores[ident]
