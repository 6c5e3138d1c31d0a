from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional
import os

from dotenv import load_dotenv


CLAIM_POLICIES = ("strict", "reclaim")
STORE_BACKENDS = ("memory", "sql")


def load_env():
    load_dotenv()


def _env(key: str) -> Optional[str]:
    v = os.getenv(key)
    return v.strip() if v and v.strip() else None


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _choice(key: str, allowed, default: str) -> str:
    v = (_env(key) or default).lower()
    return v if v in allowed else default


@dataclass
class Settings:
    store_backend: str = "memory"
    db_url: str = "sqlite:///./rescuenet.db"
    claim_policy: str = "strict"
    rescuer_active_window_s: int = 300
    frontend_url: str = "app"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    sms_timeout_s: float = 10.0
    ws_send_timeout_s: float = 5.0
    ws_max_pending: int = 256
    short_code_attempts: int = 20
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_env()
        origins = os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",")
        return cls(
            store_backend=_choice("STORE_BACKEND", STORE_BACKENDS, "memory"),
            db_url=_env("DB_URL") or "sqlite:///./rescuenet.db",
            claim_policy=_choice("CLAIM_POLICY", CLAIM_POLICIES, "strict"),
            rescuer_active_window_s=_env_int("RESCUER_ACTIVE_WINDOW_SECONDS", 300),
            frontend_url=_env("FRONTEND_URL") or "app",
            cors_allow_origins=[o.strip() for o in origins if o.strip()] or ["*"],
            twilio_account_sid=_env("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=_env("TWILIO_AUTH_TOKEN"),
            twilio_phone_number=_env("TWILIO_PHONE_NUMBER"),
            sms_timeout_s=_env_float("SMS_TIMEOUT_SECONDS", 10.0),
            ws_send_timeout_s=_env_float("WS_SEND_TIMEOUT_SECONDS", 5.0),
            ws_max_pending=_env_int("WS_MAX_PENDING", 256),
            short_code_attempts=_env_int("SHORT_CODE_ATTEMPTS", 20),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)
