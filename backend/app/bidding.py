# bidding.py
# Bid board rules: who sees which bids, ranking, totals and exports.
# Rows are plain dicts as stored by storage.py.

import csv
import io
import json
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import DEFAULT_CURRENCY
from .models import UserRole

BUYER_ROLES = (UserRole.SYS_ADMIN.value, UserRole.BUYER.value)

CSV_BOM = "\ufeff"
CSV_HEADER = ["rfq_id", "vendor_id", "vendor_name", "amount", "currency", "delivery_date", "timestamp", "notes", "lowest"]


class BidError(ValueError):
    pass


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def is_buyer(user: Dict[str, Any]) -> bool:
    return user.get("role") in BUYER_ROLES


def visible_bids(bids: List[Dict[str, Any]], rfq_id: str, user: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Bids of one RFQ as the given user may see them.

    Buyers and the system admin see every vendor's row; a vendor only sees
    its own.
    """
    rfq_bids = [b for b in bids if b.get("rfq_id") == rfq_id]
    if is_buyer(user):
        return rfq_bids
    return [b for b in rfq_bids if b.get("vendor_id") == user.get("id")]


def lowest_bid(bids: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return min(bids, key=lambda b: b["amount"], default=None)


def rank_bids(bids: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(bids, key=lambda b: b["amount"])


def bid_total(rfq: Dict[str, Any], item_quotes: List[Dict[str, Any]]) -> float:
    quantities = {item["id"]: item["quantity"] for item in rfq.get("items", [])}
    total = 0.0
    seen = set()
    for q in item_quotes:
        if q["item_id"] not in quantities:
            raise BidError(f"Unknown item {q['item_id']} for RFQ {rfq['id']}")
        if q["item_id"] in seen:
            raise BidError(f"Item {q['item_id']} is quoted more than once")
        seen.add(q["item_id"])
        if not math.isfinite(q["unit_price"]) or q["unit_price"] < 0:
            raise BidError("Unit prices must be non-negative numbers")
        total += q["unit_price"] * quantities[q["item_id"]]
    return round(total, 2)


def build_bid(
    rfq: Dict[str, Any],
    vendor: Dict[str, Any],
    existing: Optional[Dict[str, Any]] = None,
    amount: Optional[float] = None,
    item_quotes: Optional[List[Dict[str, Any]]] = None,
    currency: str = DEFAULT_CURRENCY,
    delivery_date: Optional[str] = None,
    notes: str = "",
) -> Dict[str, Any]:
    item_quotes = item_quotes or []
    if item_quotes:
        amount = bid_total(rfq, item_quotes)
    if amount is None or not math.isfinite(amount) or amount <= 0:
        raise BidError("Please enter a valid bid amount")
    return {
        "id": existing["id"] if existing else new_id("BID"),
        "rfq_id": rfq["id"],
        "vendor_id": vendor["id"],
        "vendor_name": vendor.get("company") or vendor["name"],
        "amount": float(amount),
        "currency": currency or DEFAULT_CURRENCY,
        "delivery_date": delivery_date,
        "notes": notes,
        "timestamp": now_iso(),
        "item_quotes": item_quotes,
    }


def find_bid(bids: List[Dict[str, Any]], rfq_id: str, vendor_id: str) -> Optional[Dict[str, Any]]:
    return next((b for b in bids if b.get("rfq_id") == rfq_id and b.get("vendor_id") == vendor_id), None)


def can_delete_rfq(user: Dict[str, Any], rfq: Dict[str, Any]) -> bool:
    if user.get("role") == UserRole.SYS_ADMIN.value:
        return True
    return user.get("role") == UserRole.BUYER.value and rfq.get("creator_id") == user.get("id")


def bids_to_csv(rfq: Dict[str, Any], bids: List[Dict[str, Any]]) -> str:
    best = lowest_bid(bids)
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADER)
    for b in rank_bids(bids):
        writer.writerow([
            rfq["id"],
            b["vendor_id"],
            b["vendor_name"],
            f"{b['amount']:.2f}",
            b.get("currency") or DEFAULT_CURRENCY,
            b.get("delivery_date") or "",
            b.get("timestamp", ""),
            b.get("notes", ""),
            "yes" if best is not None and b["id"] == best["id"] else "",
        ])
    # Excel expects the BOM for UTF-8
    return CSV_BOM + buf.getvalue()


def bids_to_json(rfq: Dict[str, Any], bids: List[Dict[str, Any]]) -> str:
    best = lowest_bid(bids)
    doc = {
        "rfq": rfq,
        "bids": rank_bids(bids),
        "lowest_bid_id": best["id"] if best else None,
        "exported_at": now_iso(),
    }
    return json.dumps(doc, indent=2, ensure_ascii=False, default=str)
