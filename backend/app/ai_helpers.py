# ai_helpers.py
# Bid analysis prompt + optional OpenAI wrapper, with an offline summary
import json
from typing import Any, Dict, List

import structlog

from . import config

logger = structlog.get_logger()

UNAVAILABLE = "AI analysis is temporarily unavailable, please review the bids manually."


def build_prompt(rfq_title: str, bids: List[Dict[str, Any]]) -> str:
    rows = [
        {
            "vendor": b.get("vendor_name"),
            "amount": b.get("amount"),
            "currency": b.get("currency"),
            "delivery_date": b.get("delivery_date"),
            "notes": b.get("notes"),
        }
        for b in bids
    ]
    return (
        f'As a procurement expert, analyse the bidding on the request for quote "{rfq_title}".\n'
        f"Bid data: {json.dumps(rows, ensure_ascii=False)}\n\n"
        "Give a short professional summary covering:\n"
        "1. Which bid is the most competitive, judged on price and delivery date.\n"
        "2. Any risks or anomalies (for example an abnormally low price or a long delivery time).\n"
        "3. A clear award recommendation.\n"
    )


def analyze_bids_mock(rfq_title: str, bids: List[Dict[str, Any]]) -> str:
    if not bids:
        return f'No bids have been received for "{rfq_title}" yet.'
    ranked = sorted(bids, key=lambda b: b["amount"])
    best = ranked[0]
    avg = sum(b["amount"] for b in ranked) / len(ranked)
    lines = [
        f'{len(ranked)} bid(s) received for "{rfq_title}".',
        f"Lowest bid: {best['vendor_name']} at {best['amount']:.2f} {best.get('currency', '')}.".rstrip(),
        f"Average bid: {avg:.2f}.",
    ]
    # flag anything more than 30% under the average
    low = [b for b in ranked if len(ranked) > 1 and b["amount"] < avg * 0.7]
    for b in low:
        lines.append(f"Risk: {b['vendor_name']} is far below the average, confirm scope and quality.")
    missing = [b["vendor_name"] for b in ranked if not b.get("delivery_date")]
    if missing:
        lines.append("No delivery date given by: " + ", ".join(missing) + ".")
    lines.append(f"Recommendation: award to {best['vendor_name']} subject to manual review.")
    return "\n".join(lines)


def call_openai_text(prompt: str) -> str:
    if not config.OPENAI_KEY:
        raise RuntimeError("OpenAI key not set")
    import openai
    openai.api_key = config.OPENAI_KEY
    resp = openai.chat.completions.create(
        model=config.OPENAI_MODEL,
        messages=[{"role": "user", "content": prompt}],
        temperature=0.2,
        max_tokens=800,
    )
    return resp.choices[0].message.content or ""


def analyze_bids(rfq_title: str, bids: List[Dict[str, Any]]) -> str:
    if not config.OPENAI_KEY:
        return analyze_bids_mock(rfq_title, bids)
    try:
        return call_openai_text(build_prompt(rfq_title, bids)) or UNAVAILABLE
    except Exception as e:
        logger.error("ai_analysis_failed", rfq_title=rfq_title, error=str(e))
        return UNAVAILABLE
