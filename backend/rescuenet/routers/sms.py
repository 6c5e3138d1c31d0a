"""
SMS webhook (Twilio-style form posts) and manual outbound texts.

The webhook always answers 200 with a TwiML reply: SMS has no error-code
channel, so a text that cannot be parsed gets the format help instead.
"""
from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Form
from fastapi.responses import Response
from twilio.twiml.messaging_response import MessagingResponse

from ..errors import InvalidInputError, RescueError
from ..schemas import Report, ReportIn, SmsResult, SmsSendIn
from ..services.sms_parser import HELP_TEXT, parse_sms
from ..state import Coordinator
from ..storage import mask_phone
from .deps import get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sms", tags=["sms"])

ERROR_TEXT = "Error. Try: H 6.912 79.852 A"


def received_text(report: Report, frontend_url: str) -> str:
    return (
        f"SOS RECEIVED! Code: {report.short_code}\n"
        f"Location: {report.lat:.4f},{report.lng:.4f}\n"
        "Help is coming. Stay safe.\n"
        f"Track: {frontend_url}/track/{report.short_code}"
    )


def _twiml(text: str) -> Response:
    reply = MessagingResponse()
    reply.message(text)
    return Response(content=str(reply), media_type="application/xml")


@router.post("/incoming")
def sms_incoming(
    body: str = Form("", alias="Body"),
    sender: Optional[str] = Form(None, alias="From"),
    coord: Coordinator = Depends(get_coordinator),
) -> Response:
    logger.info("[SMS IN] From: %s | Body: %s" % (mask_phone(sender), body))
    parsed = parse_sms(body)
    if parsed is None:
        return _twiml(HELP_TEXT)
    command = ReportIn(
        lat=parsed.lat,
        lng=parsed.lng,
        message=parsed.message,
        severity=parsed.severity,
        phone=sender,
        is_medical=parsed.is_medical,
        is_fragile=parsed.is_fragile,
        people_count=parsed.people_count,
    )
    try:
        report = coord.engine.create_report(command, source="sms", raw_sms=body)
    except RescueError as e:
        logger.error("[SMS ERROR] %s" % e.detail)
        return _twiml(ERROR_TEXT)
    logger.info("[SMS SOS] Created report %s at %s,%s" % (report.short_code, report.lat, report.lng))
    return _twiml(received_text(report, coord.settings.frontend_url))


@router.post("/send", response_model=SmsResult)
def sms_send(payload: SmsSendIn = Body(...), coord: Coordinator = Depends(get_coordinator)) -> SmsResult:
    report = coord.engine.find(payload.report_id)
    if report is None or not report.phone:
        raise InvalidInputError("Report not found or no phone number")
    return coord.notifier.send(report.phone, payload.message)
