# notifier/settings.py
from typing import Literal, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from notifier.mongo_collections import (
    BALANCE_TRANSACTIONS,
    RESUME_TOKENS,
    SMS_LOGS,
    TRADEABLES,
    TRANSACTIONS,
    USERS,
)
from notifier.services.formatting import normalize_digits, split_csv

SendMode = Literal["off", "dry-run", "live"]

_TRUTHY = {"1", "true", "yes", "y", "on", "enable", "enabled"}
_FALSY = {"0", "false", "no", "n", "off", "disable", "disabled"}


class Settings(BaseSettings):
    app_env: str = Field("dev", validation_alias=AliasChoices("APP_ENV", "NODE_ENV", "app_env"))

    # Mongo
    mongodb_uri: str = Field(
        validation_alias=AliasChoices("MONGODB_URI", "MONGO_URI", "DATABASE_URI", "mongodb_uri"),
        min_length=1,
    )
    mongodb_db: str = Field(min_length=1)
    balance_tx_collection: str = Field(
        BALANCE_TRANSACTIONS,
        validation_alias=AliasChoices("MONGODB_COLLECTION", "BALANCE_TX_COLLECTION", "balance_tx_collection"),
    )
    users_collection: str = USERS
    transactions_collection: str = TRANSACTIONS
    tradeables_collection: str = TRADEABLES
    sms_log_collection: str = SMS_LOGS
    checkpoint_collection: str = RESUME_TOKENS

    # SMS safety (off / dry-run / live)
    sms_mode: SendMode = "off"
    sms_allow_live: bool = False
    sms_allow_non_prod: bool = False
    sms_send_admin: bool = True
    sms_allowlist: str = ""
    sms_max_per_minute: int = Field(0, ge=0)
    sms_admin_receptors: str = Field(
        "", validation_alias=AliasChoices("SMS_ADMIN_RECEPTORS", "KAVENEGAR_RECEPTOR", "sms_admin_receptors")
    )
    sms_sender: str = ""

    # Twilio
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None

    # Admin email (SendGrid). Defaults keep audit mail always on.
    email_mode: SendMode = "live"
    email_allow_live: bool = True
    email_allow_non_prod: bool = True
    email_allowlist: str = ""
    email_max_per_minute: int = Field(0, ge=0)
    sendgrid_api_key: str | None = None
    sendgrid_sender: str | None = Field(
        None, validation_alias=AliasChoices("SENDGRID_SENDER", "SMTP_FROM", "sendgrid_sender")
    )
    alert_to: str = ""

    # Change streams
    watch_start_fresh: bool = False
    reconnect_delay_seconds: float = Field(1.5, gt=0)
    checkpoint_backend: Literal["file", "mongo"] = "file"
    checkpoint_dir: str = "."

    sms_log_enabled: bool = True

    # Rendering
    brand_name: str = "مهرسان گلد"
    support_phone: str = "07644421176"
    display_timezone: str = "Asia/Tehran"

    log_level: str = "INFO"

    # IMPORTANT: ignore extra keys in .env to avoid crashes
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    @field_validator("sms_mode", "email_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value, info):
        if value is None:
            return cls.model_fields[info.field_name].default
        mode = str(value).strip().lower()
        if mode == "dryrun":
            return "dry-run"
        if mode in ("off", "dry-run", "live"):
            return mode
        # Unknown modes never send.
        return "off"

    @field_validator(
        "sms_allow_live",
        "sms_allow_non_prod",
        "sms_send_admin",
        "email_allow_live",
        "email_allow_non_prod",
        "watch_start_fresh",
        "sms_log_enabled",
        mode="before",
    )
    @classmethod
    def _parse_bool(cls, value, info):
        default = cls.model_fields[info.field_name].default
        if value is None or isinstance(value, bool):
            return default if value is None else value
        v = str(value).strip().lower()
        if v in _TRUTHY:
            return True
        if v in _FALSY:
            return False
        return default

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    @property
    def sms_allowlist_numbers(self) -> Tuple[str, ...]:
        return tuple(normalize_digits(n) for n in split_csv(self.sms_allowlist))

    @property
    def admin_sms_numbers(self) -> Tuple[str, ...]:
        return tuple(normalize_digits(n) for n in split_csv(self.sms_admin_receptors))

    @property
    def email_allowlist_addresses(self) -> Tuple[str, ...]:
        return tuple(a.lower() for a in split_csv(self.email_allowlist))

    @property
    def alert_recipients(self) -> Tuple[str, ...]:
        return tuple(split_csv(self.alert_to))

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    @property
    def sendgrid_configured(self) -> bool:
        return bool(self.sendgrid_api_key and self.sendgrid_sender)
