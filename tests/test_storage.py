import json
from unittest.mock import MagicMock

import pytest
import requests

from backend.app import storage
from backend.app.storage import CloudStore, LocalStore, StorageError


@pytest.fixture
def local(tmp_path):
    return LocalStore(tmp_path)


def test_local_store_creates_key_files(tmp_path):
    LocalStore(tmp_path)
    for key in ("qb_r", "qb_b", "qb_u", "qb_curr_u"):
        assert json.loads((tmp_path / f"{key}.json").read_text()) == []


def test_upsert_prepends_then_replaces(local):
    local.upsert("rfqs", {"id": "r1", "title": "first"})
    local.upsert("rfqs", {"id": "r2", "title": "second"})
    assert [r["id"] for r in local.select("rfqs")] == ["r2", "r1"]

    local.upsert("rfqs", {"id": "r1", "title": "renamed"})
    rows = local.select("rfqs")
    assert [r["id"] for r in rows] == ["r2", "r1"]
    assert rows[1]["title"] == "renamed"


def test_select_and_delete_by_filter(local):
    local.upsert("bids", {"id": "b1", "rfq_id": "r1"})
    local.upsert("bids", {"id": "b2", "rfq_id": "r1"})
    local.upsert("bids", {"id": "b3", "rfq_id": "r2"})
    assert len(local.select("bids", rfq_id="r1")) == 2
    assert local.delete("bids", rfq_id="r1") == 2
    assert [b["id"] for b in local.select("bids")] == ["b3"]


def test_delete_requires_filter(local):
    with pytest.raises(ValueError):
        local.delete("bids")


def test_corrupt_file_reads_as_empty(local, tmp_path):
    (tmp_path / "qb_r.json").write_text("{not json")
    assert local.select("rfqs") == []


def test_scalar_values(local):
    assert local.get_value("qb_cloud_url", "fallback") == "fallback"
    local.set_value("qb_cloud_url", "https://x.example")
    assert local.get_value("qb_cloud_url", "fallback") == "https://x.example"


def test_cloud_config_validation(local):
    with pytest.raises(ValueError, match="valid cloud URL"):
        storage.save_cloud_config(local, "ftp://nope", "key")
    assert storage.load_cloud_config(local) == {"url": "", "key": ""}


def test_select_store_switches_modes(local):
    assert storage.select_store(local) is local
    storage.save_cloud_config(local, "https://xyz.example.co", "anon-key")
    cloud = storage.select_store(local)
    assert isinstance(cloud, CloudStore)
    assert cloud.base_url == "https://xyz.example.co/rest/v1"
    assert storage.select_store(local) is cloud

    storage.save_cloud_config(local, "", "")
    assert storage.select_store(local) is local


def _cloud(response=None, error=None):
    session = MagicMock()
    session.headers = {}
    resp = MagicMock()
    if error is not None:
        resp.raise_for_status.side_effect = error
    resp.json.return_value = response
    session.get.return_value = resp
    session.post.return_value = resp
    session.delete.return_value = resp
    return CloudStore("https://xyz.example.co/", "anon", session=session, timeout=3), session


def test_cloud_store_sets_auth_headers():
    store, session = _cloud([])
    assert session.headers["apikey"] == "anon"
    assert session.headers["Authorization"] == "Bearer anon"


def test_cloud_select_filters_and_orders():
    store, session = _cloud([{"id": "r1"}])
    assert store.select("rfqs", creator_id="buyer") == [{"id": "r1"}]
    url = session.get.call_args.args[0]
    params = session.get.call_args.kwargs["params"]
    assert url == "https://xyz.example.co/rest/v1/rfqs"
    assert params == {"select": "*", "creator_id": "eq.buyer", "order": "created_at.desc"}


def test_cloud_select_failure_returns_empty():
    store, _ = _cloud(error=requests.HTTPError("500"))
    assert store.select("bids", rfq_id="r1") == []


def test_cloud_upsert_merges_duplicates():
    store, session = _cloud()
    row = {"id": "b1", "rfq_id": "r1", "amount": 5.0}
    assert store.upsert("bids", row) == row
    kwargs = session.post.call_args.kwargs
    assert kwargs["json"] == row
    assert "resolution=merge-duplicates" in kwargs["headers"]["Prefer"]


def test_cloud_upsert_failure_raises():
    store, _ = _cloud(error=requests.ConnectionError("down"))
    with pytest.raises(StorageError):
        store.upsert("rfqs", {"id": "r1"})


def test_cloud_delete_counts_rows():
    store, session = _cloud([{"id": "b1"}, {"id": "b2"}])
    assert store.delete("bids", rfq_id="r1") == 2
    assert session.delete.call_args.kwargs["params"] == {"rfq_id": "eq.r1"}


def test_cloud_store_rejects_unknown_table():
    store, _ = _cloud([])
    with pytest.raises(KeyError):
        store.upsert("sessions", {"id": "t"})


def test_cloud_delete_failure_raises():
    store, _ = _cloud(error=requests.HTTPError("503"))
    with pytest.raises(StorageError):
        store.delete("bids", rfq_id="r1")


def test_cloud_insert_ignores_duplicates():
    store, session = _cloud([])
    assert store.insert("users", {"id": "admin"}) is False
    prefer = session.post.call_args.kwargs["headers"]["Prefer"]
    assert "resolution=ignore-duplicates" in prefer


def test_local_insert_keeps_existing_row(local):
    assert local.insert("users", {"id": "u1", "password": "first"}) is True
    assert local.insert("users", {"id": "u1", "password": "second"}) is False
    assert local.select("users", id="u1")[0]["password"] == "first"
