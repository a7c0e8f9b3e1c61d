# notifier/services/messages.py
"""
Text layouts for every notification kind.

Each kind has a first-person layout for the account holder and, for monetary
kinds, a third-person audit layout for admins. Both read their values through
the same extraction helpers so the two never disagree on an amount.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

from notifier.models import Account, NotificationKind
from notifier.mongo_collections import STREAM_BALANCE_TX, STREAM_TRANSACTIONS, STREAM_USERS
from notifier.services.formatting import (
    PLACEHOLDER,
    format_jalali_parts,
    format_jalali_timestamp,
    format_thousands,
    pick_first_present,
    squash_spaces,
    unwrap_number,
)
from notifier.services.mappers import (
    OFFLINE_DEPOSIT,
    SELL,
    BUY,
    map_balance_tx_type,
    map_tradeable_label,
    map_tradeable_unit,
    map_trade_type,
    status_phrase,
)

# Field aliases, first non-empty wins
BALANCE_AMOUNT_KEYS = ("amount", "total", "value", "Amount", "Total")
TRADE_QUANTITY_KEYS = ("amount", "tradeableAmount", "quantity", "qty", "Amount")
TRADE_TOTAL_KEYS = ("total", "price", "value", "Total", "Payable", "payable")

UNKNOWN = "نامشخص"
TOMAN = "تومان"

_TRADE_KINDS = {NotificationKind.BUY_COMPLETED, NotificationKind.SELL_COMPLETED}
_BALANCE_KINDS = {
    NotificationKind.DEPOSIT_REQUESTED,
    NotificationKind.DEPOSIT_APPROVED,
    NotificationKind.DEPOSIT_REJECTED,
    NotificationKind.WITHDRAWAL_REQUESTED,
    NotificationKind.WITHDRAWAL_APPROVED,
}


def _balance(value: Any, missing: str) -> str:
    value = unwrap_number(value)
    return missing if value is None else format_thousands(value)


def _instrument(record: Dict[str, Any]) -> Tuple[str, str]:
    raw = record.get("tradeableName")
    if raw is None:
        raw = record.get("tradeable")
    label = map_tradeable_label(raw if raw is not None else PLACEHOLDER)
    return label, map_tradeable_unit(label)


def _is_trade_record(record: Dict[str, Any]) -> bool:
    return "tradeableName" in record or "tradeable" in record


class MessageBuilder:
    def __init__(self, brand: str, support_phone: str, tz: str = "Asia/Tehran"):
        self.brand = brand
        self.support_phone = support_phone
        self.tz = tz
        self._user_layouts: Dict[NotificationKind, Callable[[Dict[str, Any], Account], str]] = {
            NotificationKind.USER_REGISTRATION_WELCOME: self._welcome,
            NotificationKind.KYC_APPROVED: self._kyc_approved,
            NotificationKind.KYC_REJECTED: self._kyc_rejected,
            NotificationKind.KYC_REMINDER: self._kyc_reminder,
            NotificationKind.PASSWORD_CHANGED: self._password_changed,
            NotificationKind.DEPOSIT_REQUESTED: self._deposit_requested,
            NotificationKind.DEPOSIT_APPROVED: self._deposit_approved,
            NotificationKind.DEPOSIT_REJECTED: self._deposit_rejected,
            NotificationKind.WITHDRAWAL_REQUESTED: self._withdrawal_requested,
            NotificationKind.WITHDRAWAL_APPROVED: self._withdrawal_approved,
            NotificationKind.BUY_COMPLETED: partial(self._trade_completed, side=BUY),
            NotificationKind.SELL_COMPLETED: partial(self._trade_completed, side=SELL),
        }

    # ---------- public API ----------

    def build(self, kind: NotificationKind, record: Optional[Dict[str, Any]], account: Optional[Account]) -> Optional[str]:
        return self.build_user_message(kind, record, account)

    def build_user_message(
        self,
        kind: NotificationKind,
        record: Optional[Dict[str, Any]],
        account: Optional[Account],
    ) -> Optional[str]:
        """
        Render the account-holder message for `kind`.

        Returns None when the kind has no user layout or there is no account
        to address; callers skip the send in that case.
        """
        layout = self._user_layouts.get(kind)
        if layout is None or account is None or not isinstance(record, dict):
            return None
        return layout(record, account)

    def build_admin_message(
        self,
        kind: NotificationKind,
        record: Optional[Dict[str, Any]],
        account: Optional[Account],
    ) -> Optional[str]:
        """Third-person audit text for monetary kinds and GENERIC_AUDIT."""
        if not isinstance(record, dict):
            return None
        if kind in _TRADE_KINDS:
            return self._trade_audit(record, account)
        if kind in _BALANCE_KINDS:
            return self._balance_audit(record, account)
        if kind == NotificationKind.GENERIC_AUDIT:
            if _is_trade_record(record):
                return self._trade_audit(record, account)
            return self._balance_audit(record, account)
        return None

    def build_admin_email(
        self,
        stream: str,
        operation: str,
        record: Dict[str, Any],
        account: Optional[Account],
    ) -> Tuple[str, str]:
        if stream == STREAM_USERS:
            return self._new_user_email(record)

        tx_type = record.get("type") or ""
        amount = unwrap_number(record.get("amount"))
        amount = "" if amount is None else amount
        status = record.get("status") or ""

        if stream == STREAM_TRANSACTIONS:
            name = record.get("tradeableName", "")
            if operation == "insert":
                subject = f"New Transaction — {tx_type} {amount} {name} ({status})"
            else:
                subject = f"Transaction status → {status} — {tx_type} {amount} {name}"
        elif stream == STREAM_BALANCE_TX:
            if operation == "insert":
                subject = f"New BalanceTx — {tx_type} {amount}"
            else:
                subject = f"BalanceTx status → {status} — {tx_type} {amount}"
        else:
            subject = f"{stream} {operation} — {tx_type} {amount}"

        return squash_spaces(subject), self._record_body(record, account)

    # ---------- shared extraction ----------

    def _greeting(self, account: Account) -> str:
        first = (account.first_name or "").strip()
        return f"{first} عزیز" if first else "کاربر عزیز"

    def _balance_amount(self, record: Dict[str, Any]) -> str:
        return format_thousands(pick_first_present(record, BALANCE_AMOUNT_KEYS))

    def _trade_values(self, record: Dict[str, Any]) -> Dict[str, str]:
        label, unit = _instrument(record)
        return {
            "type": map_trade_type(record.get("type")),
            "quantity": format_thousands(pick_first_present(record, TRADE_QUANTITY_KEYS)),
            "total": format_thousands(pick_first_present(record, TRADE_TOTAL_KEYS)),
            "instrument": label,
            "unit": unit,
        }

    def _when(self, record: Dict[str, Any]) -> Tuple[str, str]:
        when = record.get("updatedAt") or record.get("createdAt")
        return format_jalali_parts(when, self.tz)

    # ---------- user layouts ----------

    def _welcome(self, record, account):
        return "\n".join([
            self._greeting(account),
            "پیش ثبت‌نام شما با موفقیت انجام شد.",
            "جهت تکمیل ثبت نام مراحل احراز هویت را کامل نمایید.",
            f"پشتیبانی:{self.support_phone}",
        ])

    def _kyc_approved(self, record, account):
        return "\n".join([
            self._greeting(account),
            f"احراز هویت شما در {self.brand} با موفقیت تأیید شد.",
            "اکنون می‌توانید از تمام خدمات سامانه استفاده کنید.",
        ])

    def _kyc_rejected(self, record, account):
        reason = record.get("verifyDescription") or record.get("confirmDescription") or UNKNOWN
        return "\n".join([
            self._greeting(account),
            f"احراز هویت شما در {self.brand} تأیید نشد.",
            f"دلیل: {reason}",
            "لطفاً اطلاعات خود را اصلاح و مجدداً ارسال کنید.",
        ])

    def _kyc_reminder(self, record, account):
        return "\n".join([
            self._greeting(account),
            f"احراز هویت شما در {self.brand} هنوز تکمیل نشده است.",
            "برای فعال‌سازی کامل حساب و دریافت هدیه 5میلی طلا ، لطفاً مراحل احراز هویت را انجام دهید.",
        ])

    def _password_changed(self, record, account):
        return "\n".join([
            self._greeting(account),
            f"رمز عبور حساب شما در {self.brand} با موفقیت تغییر کرد.",
        ])

    def _deposit_requested(self, record, account):
        return "\n".join([
            f"درخواست واریز شما در {self.brand} ثبت شد.",
            f"مبلغ: {self._balance_amount(record)} {TOMAN}",
            f"شماره پیگیری: {record.get('_id') or UNKNOWN}",
            "پس از بررسی اطلاع‌رسانی خواهد شد.",
        ])

    def _deposit_approved(self, record, account):
        date, time = self._when(record)
        return "\n".join([
            self.brand,
            f"واریز شما در {self.brand} با موفقیت تأیید شد.",
            f"مبلغ: {self._balance_amount(record)} {TOMAN}",
            f"موجودی کیف پول: {_balance(account.toman_balance, UNKNOWN)} {TOMAN}",
            f"تاریخ: {date}",
            f"ساعت: {time}",
        ])

    def _deposit_rejected(self, record, account):
        return "\n".join([
            f"درخواست واریز شما در {self.brand} تأیید نشد.",
            f"مبلغ: {self._balance_amount(record)} {TOMAN}",
            f"دلیل: {record.get('confirmDescription') or UNKNOWN}",
        ])

    def _withdrawal_requested(self, record, account):
        return "\n".join([
            f"درخواست برداشت شما در {self.brand} ثبت شد.",
            f"مبلغ: {self._balance_amount(record)} {TOMAN}",
            f"شماره پیگیری: {record.get('_id') or UNKNOWN}",
            "در حال بررسی می‌باشد.",
        ])

    def _withdrawal_approved(self, record, account):
        tracking = record.get("trackingCode") or record.get("_id") or UNKNOWN
        return "\n".join([
            f"برداشت شما از {self.brand} با موفقیت انجام شد.",
            f"مبلغ: {self._balance_amount(record)} {TOMAN}",
            f"شماره پیگیری: {tracking}",
        ])

    def _trade_completed(self, record, account, side):
        v = self._trade_values(record)
        return "\n".join([
            self.brand,
            "",
            f"{side} {v['quantity']} {v['unit']} {v['instrument']} به مبلغ {v['total']} با موفقیت انجام شد.",
            f"مانده موجودی طلا: {_balance(account.gold_balance, '0')}",
            f"مانده موجودی نقره: {_balance(account.silver_balance, '0')}",
            f"مانده موجودی تومان: {_balance(account.toman_balance, '0')}",
        ])

    # ---------- admin layouts ----------

    def _trade_audit(self, record, account):
        v = self._trade_values(record)
        who = account.display_name if account else PLACEHOLDER
        return squash_spaces(
            f"{v['type']} {v['quantity']} {v['unit']} {v['instrument']} به مبلغ {v['total']} "
            f"توسط {who} {status_phrase(record.get('status'))}"
        )

    def _balance_audit(self, record, account):
        amount = self._balance_amount(record)
        tx_type = map_balance_tx_type(record.get("type"))
        who = account.display_name if account else PLACEHOLDER

        if tx_type == OFFLINE_DEPOSIT:
            remaining = _balance(account.toman_balance, "") if account else ""
            date, time = self._when(record)
            lines = [
                self.brand,
                f"واريز مبلغ {amount} {TOMAN}",
                f"به حساب {who}",
                f"مانده حساب: {remaining} {TOMAN}" if remaining else "",
                date,
                time,
            ]
            return "\n".join(line for line in lines if line)

        return squash_spaces(f"{tx_type} مبلغ {amount} توسط {who} {status_phrase(record.get('status'))}")

    # ---------- admin email bodies ----------

    def _record_body(self, record: Dict[str, Any], account: Optional[Account]) -> str:
        created = record.get("jalaliDate") or format_jalali_timestamp(record.get("createdAt"), self.tz)
        lines = [
            f"Type: {record.get('type') or PLACEHOLDER}",
            f"Amount: {format_thousands(record.get('amount'))}",
            f"Wage: {format_thousands(record.get('wage'))}",
            f"Total: {format_thousands(record.get('total'))}",
            f"TradeablePrice: {format_thousands(record.get('tradeablePrice'))}",
            f"Tradeable: {record.get('tradeableName') or record.get('tradeable') or PLACEHOLDER}",
            f"Status: {record.get('status') or PLACEHOLDER}",
            f"CreatedAt: {created}",
            f"UpdatedAt: {format_jalali_timestamp(record.get('updatedAt'), self.tz)}",
            f"ConfirmDescription: {record.get('confirmDescription') or PLACEHOLDER}",
            f"_id: {record.get('_id')}",
        ]
        if account is not None:
            lines.append(
                f"User: {account.first_name or PLACEHOLDER} {account.last_name or PLACEHOLDER} "
                f"({account.mobile_number or PLACEHOLDER})"
            )
        return "\n".join(lines)

    def _new_user_email(self, record: Dict[str, Any]) -> Tuple[str, str]:
        first = record.get("firstName") or ""
        last = record.get("lastName") or ""
        mobile = record.get("mobileNumber") or ""
        subject = squash_spaces(f"New User — {first} {last} ({mobile})")
        body = "\n".join([
            f"Name: {first} {last}".rstrip(),
            f"Mobile: {mobile or PLACEHOLDER}",
            f"Role: {record.get('role') or PLACEHOLDER}",
            f"VerificationStatus: {record.get('verificationStatus') or PLACEHOLDER}",
            f"CreatedAt: {format_jalali_timestamp(record.get('createdAt'), self.tz)}",
            f"_id: {record.get('_id')}",
        ])
        return subject, body
