from __future__ import annotations
from typing import Dict, Any

from ..schemas import Report, Rescuer, RescuerOut, SanitizedReport


PII_FIELDS = {
    "phone",
    "raw_sms",
    "rawSms",
}


def remove_pii(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in PII_FIELDS}


def sanitize(report: Report) -> SanitizedReport:
    """Client-safe projection of a stored report."""
    return SanitizedReport.model_validate(remove_pii(report.model_dump()))


def sanitize_rescuer(rescuer: Rescuer, is_active: bool) -> RescuerOut:
    data = remove_pii(rescuer.model_dump())
    data["is_active"] = is_active
    return RescuerOut.model_validate(data)
