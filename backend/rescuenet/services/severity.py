from __future__ import annotations
import re


CRITICAL = {
    "critical", "dying", "dead", "fire", "collaps", "child", "baby", "pregnant", "heart", "breath", "bleed"
}

HIGH = {
    "injur", "trapped", "flood", "water", "stuck", "help", "urgent", "emergency"
}

MEDIUM = {
    "need", "assist", "support"
}

MEDICAL = {
    "medical", "injur", "blood", "heart", "breath", "pain"
}

FRAGILE = {
    "child", "baby", "elderly", "old", "pregnant"
}

GROUP = {"family", "group", "multiple", "many", "several"}
PAIR = {"couple", "two", "2"}

_COUNT = re.compile(r"(\d+)\s*(?:people|persons|adults|children|family)", re.IGNORECASE)


def _has_any(text: str, keywords) -> bool:
    return any(kw in text for kw in keywords)


def classify(text: str) -> str:
    t = (text or "").lower()
    if _has_any(t, CRITICAL):
        return "critical"
    if _has_any(t, HIGH):
        return "high"
    if _has_any(t, MEDIUM):
        return "medium"
    # an SOS with no keywords is still an emergency
    return "high"


def is_medical(text: str) -> bool:
    return _has_any((text or "").lower(), MEDICAL)


def is_fragile(text: str) -> bool:
    return _has_any((text or "").lower(), FRAGILE)


def people_count(text: str) -> int:
    t = (text or "").lower()
    m = _COUNT.search(t)
    if m:
        return max(int(m.group(1)), 1)
    if _has_any(t, GROUP):
        return 3
    if _has_any(t, PAIR):
        return 2
    return 1
