# notifier/models.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class StartupError(RuntimeError):
    """Configuration problem that must stop the process before any stream opens."""


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"


class NotificationKind(str, Enum):
    USER_REGISTRATION_WELCOME = "userRegistration"
    KYC_APPROVED = "kycApproved"
    KYC_REJECTED = "kycRejected"
    KYC_REMINDER = "kycReminder"
    PASSWORD_CHANGED = "passwordChanged"
    DEPOSIT_REQUESTED = "depositRequest"
    DEPOSIT_APPROVED = "depositApproved"
    DEPOSIT_REJECTED = "depositRejected"
    WITHDRAWAL_REQUESTED = "withdrawRequest"
    WITHDRAWAL_APPROVED = "withdrawApproved"
    BUY_COMPLETED = "buyTransaction"
    SELL_COMPLETED = "sellTransaction"
    # admin-only
    GENERIC_AUDIT = "genericAudit"


class ChangeEvent(BaseModel):
    """One insert/update observed on a watched collection."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    operation_type: Literal["insert", "update"]
    document_id: Any = None
    full_document: Dict[str, Any] = Field(default_factory=dict)
    updated_fields: Dict[str, Any] = Field(default_factory=dict)
    removed_fields: List[str] = Field(default_factory=list)
    resume_token: Optional[Dict[str, Any]] = None

    @classmethod
    def from_change(cls, change: Dict[str, Any]) -> "ChangeEvent":
        description = change.get("updateDescription") or {}
        return cls(
            operation_type=change["operationType"],
            document_id=(change.get("documentKey") or {}).get("_id"),
            full_document=change.get("fullDocument") or {},
            updated_fields=description.get("updatedFields") or {},
            removed_fields=list(description.get("removedFields") or []),
            resume_token=change.get("_id"),
        )

    @property
    def updated_field_names(self) -> Set[str]:
        if self.operation_type != "update":
            return set()
        return set(self.updated_fields) | set(self.removed_fields)


class Account(BaseModel):
    """Read-only projection of a `users` document."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, arbitrary_types_allowed=True)

    id: Any = Field(default=None, alias="_id")
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    mobile_number: Optional[str] = Field(default=None, alias="mobileNumber")
    verification_status: Optional[str] = Field(default=None, alias="verificationStatus")
    toman_balance: Any = Field(default=None, alias="tomanBalance")
    gold_balance: Any = Field(default=None, alias="goldBalance")
    silver_balance: Any = Field(default=None, alias="silverBalance")
    welcome_sms_sent_at: Any = Field(default=None, alias="welcomeSmsSentAt")

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Account":
        fields = {field.alias or name for name, field in cls.model_fields.items()}
        return cls.model_validate({k: v for k, v in doc.items() if k in fields})

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.mobile_number or "-"


class SendResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    code: Optional[str] = None
    detail: Optional[str] = None
    # recipients accepted before the failure, for multi-recipient sends
    delivered: int = 0

    @classmethod
    def success(cls, detail: Optional[str] = None) -> "SendResult":
        return cls(ok=True, detail=detail)

    @classmethod
    def failure(cls, code: Optional[str], detail: Optional[str] = None, delivered: int = 0) -> "SendResult":
        return cls(ok=False, code=code, detail=detail, delivered=delivered)


class GateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(allowed=True)

    @classmethod
    def block(cls, reason: str) -> "GateDecision":
        return cls(allowed=False, reason=reason)
