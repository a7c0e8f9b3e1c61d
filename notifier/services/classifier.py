# notifier/services/classifier.py
"""
Maps change events to notification kinds. Pure functions, no I/O.

Updates are only considered when a field that matters was part of the
update; anything else is inert (it still gets checkpointed by the watcher).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from notifier.models import ChangeEvent, NotificationKind

DEPOSIT_APPROVED_STATUSES = {"accepted", "approved", "confirmed"}
DEPOSIT_REJECTED_STATUSES = {"rejected", "declined"}
TRADE_SUCCESS_STATUSES = {"accepted", "approved", "confirmed", "successful"}

KYC_APPROVED_STATUSES = {"FirstLevelVerified", "SecondLevelVerified"}
KYC_REJECTED_STATUSES = {"FirstLevelRejected", "SecondLevelRejected"}

STATUS_FIELD = "status"
VERIFICATION_CODE_FIELD = "verificationCode"
FIRST_LOGIN_FIELD = "isFirstLoginDone"
VERIFICATION_STATUS_FIELD = "verificationStatus"
PASSWORD_FIELD = "password"
WELCOME_MARKER_FIELD = "welcomeSmsSentAt"


def _lower(value: Any) -> str:
    return str(value or "").strip().lower()


def is_deposit(record: Dict[str, Any]) -> bool:
    t = _lower(record.get("type"))
    return "deposit" in t or "واریز" in t


def is_withdrawal(record: Dict[str, Any]) -> bool:
    t = _lower(record.get("type"))
    return "withdraw" in t or "برداشت" in t


def status_changed(event: ChangeEvent) -> bool:
    return STATUS_FIELD in event.updated_field_names


# ---------- balance transactions ----------

def is_relevant_balance_event(event: ChangeEvent) -> bool:
    return event.operation_type == "insert" or status_changed(event)


def classify_balance_transaction(event: ChangeEvent) -> Optional[NotificationKind]:
    """User-facing kind for a balance-transaction event, or None."""
    record = event.full_document
    if event.operation_type == "insert":
        if is_deposit(record):
            return NotificationKind.DEPOSIT_REQUESTED
        if is_withdrawal(record):
            return NotificationKind.WITHDRAWAL_REQUESTED
        return None

    if not status_changed(event):
        return None

    status = _lower(record.get("status"))
    if is_deposit(record):
        if status in DEPOSIT_APPROVED_STATUSES:
            return NotificationKind.DEPOSIT_APPROVED
        if status in DEPOSIT_REJECTED_STATUSES:
            return NotificationKind.DEPOSIT_REJECTED
    elif is_withdrawal(record) and status in DEPOSIT_APPROVED_STATUSES:
        return NotificationKind.WITHDRAWAL_APPROVED
    return None


# ---------- trading transactions ----------

def is_relevant_trade_event(event: ChangeEvent) -> bool:
    return event.operation_type == "insert" or status_changed(event)


def classify_trade(event: ChangeEvent) -> Optional[NotificationKind]:
    if not is_relevant_trade_event(event):
        return None
    record = event.full_document
    if _lower(record.get("status")) not in TRADE_SUCCESS_STATUSES:
        return None
    t = _lower(record.get("type"))
    if t in ("buy", "purchase"):
        return NotificationKind.BUY_COMPLETED
    if t == "sell":
        return NotificationKind.SELL_COMPLETED
    return None


# ---------- users ----------

def is_welcome_transition(event: ChangeEvent) -> bool:
    """
    True when one update both clears the OTP code and flips the first-login flag.

    The code alone is cleared on every OTP login, so it cannot trigger the
    welcome by itself. The WelcomeSentMarker check happens in the handler.
    """
    if event.operation_type != "update":
        return False

    updated = event.updated_fields
    if VERIFICATION_CODE_FIELD in event.removed_fields:
        code_cleared = True
    elif VERIFICATION_CODE_FIELD in updated:
        code_cleared = updated[VERIFICATION_CODE_FIELD] in (None, "")
    else:
        code_cleared = False

    first_login_done = updated.get(FIRST_LOGIN_FIELD) is True
    return code_cleared and first_login_done


def classify_user_update(event: ChangeEvent) -> List[NotificationKind]:
    """Kinds for a users update, in send order. Welcome is still subject to the marker."""
    if event.operation_type != "update":
        return []

    kinds: List[NotificationKind] = []
    if is_welcome_transition(event):
        kinds.append(NotificationKind.USER_REGISTRATION_WELCOME)

    if VERIFICATION_STATUS_FIELD in event.updated_fields:
        new_status = event.updated_fields[VERIFICATION_STATUS_FIELD]
        if new_status in KYC_APPROVED_STATUSES:
            kinds.append(NotificationKind.KYC_APPROVED)
        elif new_status in KYC_REJECTED_STATUSES:
            kinds.append(NotificationKind.KYC_REJECTED)

    if PASSWORD_FIELD in event.updated_fields:
        kinds.append(NotificationKind.PASSWORD_CHANGED)
    return kinds
