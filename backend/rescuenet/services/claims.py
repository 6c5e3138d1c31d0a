from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Union

from ..audit import AuditLog
from ..db import Expectation, ReportStore, expect_claimant, expect_status
from ..errors import (
    ConflictError,
    InternalError,
    InvalidInputError,
    InvalidStatusError,
    NotFoundError,
    ShortCodeTakenError,
)
from ..locks import KeyedLock
from ..schemas import (
    ACTIVE_CLAIM_STATUSES,
    SEVERITIES,
    STATUSES,
    TERMINAL_STATUSES,
    Report,
    ReportIn,
)
from ..storage import generate_short_code, new_id, now_ms
from .cleaning import normalize_severity, parse_battery, parse_bool, parse_coordinates, parse_int

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Need help!"
DEFAULT_RESCUER_NAME = "Rescuer"

_OPEN_STATUSES = frozenset(s for s in STATUSES if s not in TERMINAL_STATUSES)


class ClaimEngine:
    """Owns every report transition: create, claim, status update, release.

    Each transition is validated against the stored record and committed with
    a single conditional write. The broadcast for a commit is handed to the
    dispatcher while the per-report ordering lock is still held, so events for
    one report go out in commit order. Reports with different ids never wait
    on each other.
    """

    def __init__(
        self,
        store: ReportStore,
        dispatcher,
        notifier=None,
        audit: Optional[AuditLog] = None,
        claim_policy: str = "strict",
        short_code_attempts: int = 20,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.audit = audit
        self.claim_policy = claim_policy
        self.short_code_attempts = max(short_code_attempts, 1)
        self._ordering = KeyedLock()

    # -- reads --

    def get(self, identifier: str) -> Report:
        return self.store.get(identifier)

    def find(self, identifier: str) -> Optional[Report]:
        try:
            return self.store.get(identifier)
        except NotFoundError:
            return None

    def list_reports(self, status: Optional[str] = None, severity: Optional[str] = None) -> List[Report]:
        """Newest first; ties keep store order."""
        if status is not None and status not in STATUSES:
            raise InvalidStatusError(status)
        if severity is not None and severity not in SEVERITIES:
            raise InvalidInputError("Invalid severity: %r" % severity)
        return sorted(self.store.list(status=status, severity=severity), key=lambda r: r.timestamp, reverse=True)

    # -- transitions --

    def create_report(
        self,
        data: Union[ReportIn, Dict[str, Any]],
        source: str = "web",
        raw_sms: Optional[str] = None,
    ) -> Report:
        if not isinstance(data, ReportIn):
            data = ReportIn.model_validate(data)
        lat, lng = parse_coordinates(data.lat, data.lng)
        now = now_ms()
        fields = dict(
            id=new_id(),
            lat=lat,
            lng=lng,
            message=(data.message or "").strip() or DEFAULT_MESSAGE,
            severity=normalize_severity(data.severity),
            status="new",
            phone=(data.phone or "").strip() or None,
            photo_url=data.photo_url or None,
            is_medical=parse_bool(data.is_medical),
            is_fragile=parse_bool(data.is_fragile),
            people_count=max(parse_int(data.people_count, 1), 1),
            battery_level=parse_battery(data.battery_level),
            timestamp=now,
            last_update=now,
            source=source,
            raw_sms=raw_sms,
        )
        with self._ordering.hold(fields["id"]):
            report = self._insert(fields)
            self._record(report, "created", "source=%s" % source)
            self.dispatcher.report_created(report)
        logger.info("[SOS] New report %s at %s, %s (%s)" % (report.short_code, lat, lng, source))
        return report

    def _insert(self, fields: Dict[str, Any]) -> Report:
        for _ in range(self.short_code_attempts):
            report = Report(short_code=generate_short_code(), **fields)
            try:
                return self.store.create(report)
            except ShortCodeTakenError:
                logger.info("Short code %s taken, regenerating" % report.short_code)
        raise InternalError("Could not allocate a unique short code")

    def _claim_expectations(self, rescuer_id: str) -> List[Expectation]:
        expected = [expect_status("new")]
        if self.claim_policy == "reclaim":
            expected.append(expect_claimant(rescuer_id, "claimed"))
        return expected

    def claim(
        self,
        identifier: str,
        rescuer_id: Optional[str],
        rescuer_name: Optional[str] = None,
        eta: Optional[str] = None,
    ) -> Report:
        if not rescuer_id:
            raise InvalidInputError("rescuerId is required")
        report = self.store.get(identifier)
        now = now_ms()
        patch: Dict[str, Any] = {
            "status": "claimed",
            "claimed_by": rescuer_id,
            "claimed_by_name": rescuer_name or DEFAULT_RESCUER_NAME,
            "eta": eta or None,
            "last_update": now,
        }
        if report.claimed_by != rescuer_id:
            patch["claimed_at"] = now
        with self._ordering.hold(report.id):
            try:
                updated = self.store.conditional_update(report.id, patch, self._claim_expectations(rescuer_id))
            except ConflictError as e:
                raise self._claim_conflict(e.current or report) from e
            self._record(updated, "claimed", "by=%s" % rescuer_id)
            self.dispatcher.report_updated(updated)
        logger.info("[CLAIM] Report %s claimed by %s" % (updated.short_code, updated.claimed_by_name))
        self._notify(updated)
        return updated

    @staticmethod
    def _claim_conflict(current: Report) -> ConflictError:
        if current.status in ACTIVE_CLAIM_STATUSES and current.claimed_by_name:
            detail = "Report %s already claimed by %s" % (current.short_code, current.claimed_by_name)
        else:
            detail = "Report %s is %s and cannot be claimed" % (current.short_code, current.status)
        return ConflictError(detail, current=current)

    def update_status(
        self,
        identifier: str,
        status: Optional[str],
        eta: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Report:
        if status not in STATUSES:
            raise InvalidStatusError(status)
        report = self.store.get(identifier)
        if status == "new":
            return self.release(report.id)
        patch: Dict[str, Any] = {"status": status, "last_update": now_ms()}
        if eta:
            patch["eta"] = eta
        if notes:
            patch["notes"] = notes
        allowed = _OPEN_STATUSES
        if status in ACTIVE_CLAIM_STATUSES:
            allowed = allowed - {"new"}
        with self._ordering.hold(report.id):
            try:
                updated = self.store.conditional_update(report.id, patch, Expectation(statuses=allowed))
            except ConflictError as e:
                current = e.current or report
                if current.status in TERMINAL_STATUSES:
                    detail = "Report %s is closed" % current.short_code
                elif current.status == "new":
                    detail = "Report %s must be claimed before moving to %s" % (current.short_code, status)
                else:
                    detail = e.detail
                raise ConflictError(detail, current=current) from e
            self._record(updated, "status", "status=%s" % status)
            self.dispatcher.report_updated(updated)
        logger.info("[STATUS] Report %s updated to %s" % (updated.short_code, status))
        self._notify(updated)
        return updated

    def release(self, identifier: str) -> Report:
        report = self.store.get(identifier)
        with self._ordering.hold(report.id):
            current = self.store.get(report.id)
            if current.status == "new" and current.claimed_by is None and current.eta is None:
                return current
            patch = {
                "status": "new",
                "claimed_by": None,
                "claimed_by_name": None,
                "claimed_at": None,
                "eta": None,
                "last_update": now_ms(),
            }
            try:
                updated = self.store.conditional_update(report.id, patch, Expectation(statuses=_OPEN_STATUSES))
            except ConflictError as e:
                raise ConflictError(
                    "Report %s is closed and cannot be released" % report.short_code, current=e.current
                ) from e
            self._record(updated, "released")
            self.dispatcher.report_updated(updated)
        logger.info("[RELEASE] Report %s released" % updated.short_code)
        return updated

    # -- side channels --

    def _record(self, report: Report, event: str, detail: Optional[str] = None) -> None:
        if self.audit is not None:
            self.audit.write(report.id, event, detail)

    def _notify(self, report: Report) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.report_changed(report)
        except Exception as e:
            logger.error("Notification for %s not queued: %s" % (report.short_code, e))
