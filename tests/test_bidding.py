import json

import pytest

from backend.app import bidding

RFQ = {
    "id": "RFQ-1",
    "creator_id": "buyer",
    "items": [
        {"id": "a", "name": "Laptop", "quantity": 4, "unit": "pcs"},
        {"id": "b", "name": "Monitor", "quantity": 2, "unit": "pcs"},
    ],
}
BUYER = {"id": "buyer", "role": "buyer", "name": "Wang"}
ADMIN = {"id": "admin", "role": "system_admin", "name": "Admin"}
VENDOR = {"id": "v1", "role": "vendor", "name": "Li", "company": "Acme"}


def _bid(bid_id, vendor_id, amount, rfq_id="RFQ-1"):
    return {"id": bid_id, "rfq_id": rfq_id, "vendor_id": vendor_id, "vendor_name": vendor_id.upper(),
            "amount": amount, "currency": "CNY", "timestamp": "2026-01-01T00:00:00+00:00"}


BIDS = [_bid("b1", "v1", 900.0), _bid("b2", "v2", 750.0), _bid("b3", "v1", 10.0, rfq_id="RFQ-2")]


def test_buyer_sees_every_bid_of_the_rfq():
    assert [b["id"] for b in bidding.visible_bids(BIDS, "RFQ-1", BUYER)] == ["b1", "b2"]
    assert [b["id"] for b in bidding.visible_bids(BIDS, "RFQ-1", ADMIN)] == ["b1", "b2"]


def test_vendor_only_sees_own_bid():
    assert [b["id"] for b in bidding.visible_bids(BIDS, "RFQ-1", VENDOR)] == ["b1"]


def test_lowest_and_ranking():
    rfq_bids = BIDS[:2]
    assert bidding.lowest_bid(rfq_bids)["id"] == "b2"
    assert [b["id"] for b in bidding.rank_bids(rfq_bids)] == ["b2", "b1"]
    assert bidding.lowest_bid([]) is None


def test_bid_total_from_item_quotes():
    quotes = [{"item_id": "a", "unit_price": 100.0}, {"item_id": "b", "unit_price": 25.5}]
    assert bidding.bid_total(RFQ, quotes) == 451.0


def test_bid_total_rejects_unknown_item():
    with pytest.raises(bidding.BidError):
        bidding.bid_total(RFQ, [{"item_id": "zzz", "unit_price": 1.0}])


@pytest.mark.parametrize("amount", [None, 0, -5, float("nan"), float("inf"), float("-inf")])
def test_build_bid_rejects_non_positive_amount(amount):
    with pytest.raises(bidding.BidError, match="valid bid amount"):
        bidding.build_bid(RFQ, VENDOR, amount=amount)


def test_build_bid_rejects_overflowing_item_total():
    quotes = [{"item_id": "a", "unit_price": 1e308}]
    with pytest.raises(bidding.BidError, match="valid bid amount"):
        bidding.build_bid(RFQ, VENDOR, item_quotes=quotes)


@pytest.mark.parametrize("price", [float("inf"), float("nan"), -1.0])
def test_bid_total_rejects_bad_unit_prices(price):
    with pytest.raises(bidding.BidError, match="Unit prices"):
        bidding.bid_total(RFQ, [{"item_id": "a", "unit_price": price}])


def test_bid_total_counts_each_item_once():
    quotes = [{"item_id": "a", "unit_price": 5.0}, {"item_id": "a", "unit_price": 5.0}]
    with pytest.raises(bidding.BidError, match="more than once"):
        bidding.bid_total(RFQ, quotes)


def test_build_bid_uses_company_and_keeps_existing_id():
    bid = bidding.build_bid(RFQ, VENDOR, existing={"id": "BID-OLD"}, amount=120)
    assert bid["id"] == "BID-OLD"
    assert bid["vendor_name"] == "Acme"
    assert bid["amount"] == 120.0
    assert bid["currency"] == "CNY"


def test_build_bid_falls_back_to_name_and_derives_total():
    vendor = {"id": "v3", "role": "vendor", "name": "Solo Trader", "company": None}
    bid = bidding.build_bid(RFQ, vendor, amount=1, item_quotes=[{"item_id": "a", "unit_price": 10}])
    assert bid["vendor_name"] == "Solo Trader"
    assert bid["amount"] == 40.0
    assert bid["id"].startswith("BID-")


def test_find_bid():
    assert bidding.find_bid(BIDS, "RFQ-1", "v2")["id"] == "b2"
    assert bidding.find_bid(BIDS, "RFQ-2", "v2") is None


def test_can_delete_rfq():
    assert bidding.can_delete_rfq(ADMIN, RFQ)
    assert bidding.can_delete_rfq(BUYER, RFQ)
    assert not bidding.can_delete_rfq({"id": "other", "role": "buyer"}, RFQ)
    assert not bidding.can_delete_rfq(VENDOR, RFQ)


def test_csv_export_has_bom_and_marks_lowest():
    out = bidding.bids_to_csv(RFQ, BIDS[:2])
    assert out.startswith("\ufeff")
    lines = out.lstrip("\ufeff").splitlines()
    assert lines[0].split(",") == bidding.CSV_HEADER
    # ranked ascending, lowest flagged
    assert lines[1].startswith("RFQ-1,v2,V2,750.00")
    assert lines[1].endswith(",yes")
    assert not lines[2].endswith(",yes")


def test_csv_export_quotes_commas():
    bid = {**_bid("b9", "v9", 5.0), "notes": "fast, cheap"}
    out = bidding.bids_to_csv(RFQ, [bid])
    assert '"fast, cheap"' in out


def test_json_export():
    doc = json.loads(bidding.bids_to_json(RFQ, BIDS[:2]))
    assert doc["rfq"]["id"] == "RFQ-1"
    assert doc["lowest_bid_id"] == "b2"
    assert [b["id"] for b in doc["bids"]] == ["b2", "b1"]
