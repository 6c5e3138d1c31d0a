from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ReportStatus = Literal["new", "claimed", "en_route", "arrived", "rescued", "closed"]
Severity = Literal["low", "medium", "high", "critical"]
ReportSource = Literal["web", "sms", "app"]

STATUSES = ("new", "claimed", "en_route", "arrived", "rescued", "closed")
SEVERITIES = ("low", "medium", "high", "critical")
# statuses during which a claimant is attached
ACTIVE_CLAIM_STATUSES = ("claimed", "en_route", "arrived")
TERMINAL_STATUSES = ("closed",)


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Report(_Model):
    """Stored report. Instances are immutable; every mutation produces a copy."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    short_code: str
    lat: float
    lng: float
    message: str = "Need help!"
    severity: Severity = "high"
    status: ReportStatus = "new"
    claimed_by: Optional[str] = None
    claimed_by_name: Optional[str] = None
    claimed_at: Optional[int] = None
    eta: Optional[str] = None
    notes: Optional[str] = None
    is_medical: bool = False
    is_fragile: bool = False
    people_count: int = Field(1, ge=1)
    battery_level: Optional[int] = Field(None, ge=0, le=100)
    photo_url: Optional[str] = None
    timestamp: int              # epoch ms, creation
    last_update: int            # epoch ms

    # PII (stripped by sanitize)
    phone: Optional[str] = None
    raw_sms: Optional[str] = None

    source: ReportSource = "web"


class SanitizedReport(_Model):
    id: str
    short_code: str
    lat: float
    lng: float
    message: str
    severity: Severity
    status: ReportStatus
    claimed_by: Optional[str] = None
    claimed_by_name: Optional[str] = None
    claimed_at: Optional[int] = None
    eta: Optional[str] = None
    notes: Optional[str] = None
    is_medical: bool
    is_fragile: bool
    people_count: int
    battery_level: Optional[int] = None
    photo_url: Optional[str] = None
    timestamp: int
    last_update: int
    source: ReportSource


class ReportIn(_Model):
    # kept loose: form posts and SMS send strings, and a bad location is a 400
    lat: Any = None
    lng: Any = None
    message: Optional[str] = None
    severity: Optional[str] = None
    phone: Optional[str] = None
    is_medical: Optional[Union[bool, str]] = None
    is_fragile: Optional[Union[bool, str]] = None
    people_count: Optional[Union[int, str]] = None
    battery_level: Optional[Union[int, str]] = None
    photo_url: Optional[str] = None


class ReportCreated(_Model):
    ok: bool = True
    id: str
    short_code: str
    message: str = "SOS sent successfully. Help is on the way."


class ClaimIn(_Model):
    rescuer_id: Optional[str] = None
    rescuer_name: Optional[str] = None
    eta: Optional[str] = None


class StatusIn(_Model):
    status: Optional[str] = None
    eta: Optional[str] = None
    notes: Optional[str] = None


class ReportEnvelope(_Model):
    ok: bool = True
    report: SanitizedReport


class Rescuer(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    organization: str = "Independent"
    phone: Optional[str] = None
    registered_at: int
    last_seen: int
    is_active: bool = True
    lat: Optional[float] = None
    lng: Optional[float] = None


class RescuerOut(_Model):
    id: str
    name: str
    organization: str
    registered_at: int
    last_seen: int
    is_active: bool
    lat: Optional[float] = None
    lng: Optional[float] = None


class RescuerIn(_Model):
    name: Optional[str] = None
    phone: Optional[str] = None
    organization: Optional[str] = None


class RescuerRegistered(_Model):
    ok: bool = True
    rescuer: Rescuer


class HeartbeatIn(_Model):
    id: Optional[str] = None


class SmsSendIn(_Model):
    report_id: str
    message: str = Field(..., min_length=1)


class SmsResult(_Model):
    success: bool
    sid: Optional[str] = None
    mock: bool = False
    error: Optional[str] = None


class ParsedSMS(_Model):
    lat: float
    lng: float
    message: str
    severity: Severity = "high"
    is_medical: bool = False
    is_fragile: bool = False
    people_count: int = 1


class Stats(_Model):
    total: int
    by_status: Dict[str, int]
    by_severity: Dict[str, int]
    active_rescuers: int
    connected_clients: int
    last_update: int


class ProcessingLog(_Model):
    id: str
    report_id: str
    created_at: datetime
    event: str
    detail: Optional[str] = None


class AuditEntries(_Model):
    report_id: str
    entries: List[ProcessingLog]
