from __future__ import annotations
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ..config import Settings
from ..schemas import Report, SmsResult
from ..storage import mask_phone

logger = logging.getLogger(__name__)


def status_message(short_code: str, status: str, claimed_by_name: Optional[str] = None,
                   eta: Optional[str] = None) -> Optional[str]:
    messages = {
        "claimed": f"Your SOS ({short_code}) has been claimed by {claimed_by_name or 'a rescuer'}. Help is being dispatched.",
        "en_route": f"Rescuer is on the way to your location ({short_code}). ETA: {eta or 'Soon'}. Stay safe.",
        "arrived": f"Rescuer has arrived at your location ({short_code}). Look for help nearby.",
        "rescued": f"Glad you're safe! Case {short_code} marked as rescued.",
    }
    return messages.get(status)


class SmsNotifier:
    """Outbound SMS through Twilio, or logged only when Twilio is not configured.

    One attempt per message with a bounded HTTP timeout; failures are logged
    and reported in the result, never raised.
    """

    def __init__(self, settings: Settings, executor: Optional[ThreadPoolExecutor] = None):
        self.settings = settings
        self._client: Optional[Client] = None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="sms")

    def _twilio(self) -> Client:
        if self._client is None:
            self._client = Client(
                self.settings.twilio_account_sid,
                self.settings.twilio_auth_token,
                http_client=TwilioHttpClient(timeout=self.settings.sms_timeout_s),
            )
        return self._client

    def send(self, to: str, body: str) -> SmsResult:
        if not self.settings.sms_configured:
            logger.info("[SMS MOCK] To %s: %s" % (mask_phone(to), body))
            return SmsResult(success=True, mock=True)
        try:
            msg = self._twilio().messages.create(body=body, from_=self.settings.twilio_phone_number, to=to)
        except Exception as e:
            logger.error("[SMS ERROR] To %s: %s" % (mask_phone(to), e))
            return SmsResult(success=False, error=str(e))
        logger.info("[SMS SENT] To %s: %s..." % (mask_phone(to), body[:50]))
        return SmsResult(success=True, sid=msg.sid)

    def report_changed(self, report: Report) -> Optional[Future]:
        """Queue a status text for the reporter, if the report has a phone."""
        if not report.phone:
            return None
        text = status_message(report.short_code, report.status, report.claimed_by_name, report.eta)
        if not text:
            return None
        return self._executor.submit(self.send, report.phone, text)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
