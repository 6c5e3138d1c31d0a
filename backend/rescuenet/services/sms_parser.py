"""
Free-text SOS messages -> structured report fields.

Accepted shapes, tried in this order:

    FULL        HELP LAT:6.912 LON:79.852 MSG:injured
    STANDARD    SOS 6.912,79.852 Need help
    COMPRESSED  H 6.912 79.852 MC
    MINIMAL     6.912 79.852

COMPRESSED carries a situation code (see SMS_CODES); unknown or missing
codes fall back to ``A``.
"""
from __future__ import annotations
import re
from typing import Dict, Optional

from ..schemas import ParsedSMS
from . import severity


SMS_CODES: Dict[str, Dict] = {
    # single situations
    "A": {"message": "Adult trapped", "severity": "high"},
    "C": {"message": "Child/Children in danger", "severity": "critical", "is_fragile": True},
    "M": {"message": "Medical emergency", "severity": "critical", "is_medical": True},
    "F": {"message": "Fire emergency", "severity": "critical"},
    "W": {"message": "Flooding/Water emergency", "severity": "high"},
    "B": {"message": "Building collapse", "severity": "critical"},
    "E": {"message": "Elderly person needs help", "severity": "high", "is_fragile": True},
    "P": {"message": "Pregnant woman needs help", "severity": "critical", "is_medical": True, "is_fragile": True},
    "I": {"message": "Injured person", "severity": "high", "is_medical": True},
    "T": {"message": "Multiple people trapped", "severity": "critical", "people_count": 3},
    # combined
    "MC": {"message": "Medical emergency with child", "severity": "critical", "is_medical": True, "is_fragile": True},
    "MI": {"message": "Multiple injured", "severity": "critical", "is_medical": True, "people_count": 2},
    "BT": {"message": "Building collapse, people trapped", "severity": "critical", "people_count": 3},
    "WE": {"message": "Flooding with elderly", "severity": "critical", "is_fragile": True},
}

DEFAULT_SMS_MESSAGE = "Emergency via SMS"

HELP_TEXT = (
    "DISASTER SOS - Send in these formats:\n\n"
    "H 6.912 79.852 A\n"
    "(H=Help, then LAT LON, A=Adult)\n\n"
    "Codes: A=Adult M=Medical C=Child F=Fire W=Water B=Building I=Injured\n\n"
    "Or: SOS 6.912,79.852 your message"
)

_NUM = r"([-\d.]+)"
_FULL = re.compile(r"^(?:HELP|SOS)\s+LAT[:\s]*" + _NUM + r"\s+LON[:\s]*" + _NUM + r"(?:\s+MSG[:\s]*(.*))?$",
                   re.IGNORECASE | re.DOTALL)
_STANDARD = re.compile(r"^(?:HELP|SOS)\s+" + _NUM + r"[,\s]+" + _NUM + r"\s*(.*)$", re.IGNORECASE | re.DOTALL)
_COMPRESSED = re.compile(r"^H\s+" + _NUM + r"\s+" + _NUM + r"(?:\s+([A-Z]+))?$", re.IGNORECASE)
_MINIMAL = re.compile(r"^" + _NUM + r"[,\s]+" + _NUM + r"$")


def _float(v: str) -> Optional[float]:
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _fields(text: str) -> Optional[Dict]:
    m = _FULL.match(text)
    if m:
        return {"lat": m.group(1), "lng": m.group(2), "message": (m.group(3) or "").strip() or DEFAULT_SMS_MESSAGE}

    m = _STANDARD.match(text)
    if m:
        msg = (m.group(3) or "").strip()
        return {
            "lat": m.group(1),
            "lng": m.group(2),
            "message": msg or DEFAULT_SMS_MESSAGE,
            "severity": severity.classify(msg),
            "is_medical": severity.is_medical(msg),
            "is_fragile": severity.is_fragile(msg),
            "people_count": severity.people_count(msg),
        }

    m = _COMPRESSED.match(text)
    if m:
        code = (m.group(3) or "A").upper()
        info = SMS_CODES.get(code, SMS_CODES["A"])
        return dict(info, lat=m.group(1), lng=m.group(2))

    m = _MINIMAL.match(text)
    if m:
        return {"lat": m.group(1), "lng": m.group(2), "message": "Emergency - location only"}
    return None


def parse_sms(body: Optional[str]) -> Optional[ParsedSMS]:
    """Parse an SOS text. Returns None when no format matches or the
    coordinates are not a valid location."""
    text = (body or "").strip()
    if not text:
        return None
    fields = _fields(text)
    if fields is None:
        return None
    lat, lng = _float(fields.pop("lat")), _float(fields.pop("lng"))
    if lat is None or lng is None:
        return None
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        return None
    return ParsedSMS(lat=lat, lng=lng, **fields)
