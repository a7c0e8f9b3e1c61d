# notifier/services/mappers.py
from __future__ import annotations
from typing import Any

# Display labels
BUY = "خرید"
SELL = "فروش"
APPROVED = "تایید"
REJECTED = "رد"
PENDING = "در انتظار"
GOLD = "طلا"
SILVER = "نقره"
TETHER = "تتر"
GRAM = "گرم"
UNIT = "واحد"
OFFLINE_DEPOSIT = "واریز دستی"
DEPOSIT = "واریز"
WITHDRAWAL = "برداشت"

_APPROVED_CODES = {
    "accepted", "accept", "approved", "success", "successful",
    "done", "completed", "complete", "confirmed",
}
_REJECTED_CODES = {"rejected", "reject", "failed", "failure", "canceled", "cancelled", "declined"}
_PENDING_CODES = {"pending", "waiting", "inprogress", "in_progress", "processing"}


def _clean(value: Any) -> str:
    return str(value or "").strip()


def map_trade_type(trade_type: Any) -> str:
    t = _clean(trade_type).lower()
    if t in ("buy", "purchase"):
        return BUY
    if t == "sell":
        return SELL
    return _clean(trade_type) or "-"


def map_status(status: Any) -> str:
    """Status code -> label. Unknown codes are returned as-is."""
    s = _clean(status).lower()
    if not s:
        return "-"
    if s in _APPROVED_CODES:
        return APPROVED
    if s in _REJECTED_CODES:
        return REJECTED
    if s in _PENDING_CODES:
        return PENDING
    return _clean(status)


def status_phrase(status: Any) -> str:
    label = map_status(status)
    if label == APPROVED:
        return "تایید شد"
    if label == REJECTED:
        return "رد شد"
    if label == PENDING:
        return "در انتظار است"
    if not label or label == "-":
        return ""
    return f"{label} است"


def map_tradeable_label(tradeable: Any) -> str:
    raw = _clean(tradeable)
    t = raw.lower()
    if not t:
        return "-"
    if "usdt" in t or "tether" in t or TETHER in raw:
        return TETHER
    if "gold" in t or "xau" in t or GOLD in raw:
        return GOLD
    if "silver" in t or "xag" in t or SILVER in raw:
        return SILVER
    return raw


def map_tradeable_unit(label: str) -> str:
    # Metals are traded by weight
    if label in (GOLD, SILVER):
        return GRAM
    return UNIT


def map_balance_tx_type(tx_type: Any) -> str:
    raw = _clean(tx_type)
    t = raw.lower()
    if not t:
        return "-"
    if "offlinedeposit" in t or "offline_deposit" in t or OFFLINE_DEPOSIT in raw:
        return OFFLINE_DEPOSIT
    if "onlinedeposit" in t or "online_deposit" in t or "iddeposit" in t:
        return DEPOSIT
    if "withdraw" in t:
        return WITHDRAWAL
    return raw
