from __future__ import annotations
import abc
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Union
from sqlalchemy import BigInteger, Column, Integer, String, Text, create_engine, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .errors import (
    ConflictError,
    DuplicateIdError,
    InternalError,
    NotFoundError,
    ShortCodeTakenError,
)
from .locks import KeyedLock
from .schemas import Report, Rescuer
from .storage import normalize_short_code, now_ms

logger = logging.getLogger(__name__)

Base = declarative_base()

_ANY = object()
# fields fixed at creation
IMMUTABLE_FIELDS = ("id", "short_code", "timestamp")


@dataclass(frozen=True)
class Expectation:
    """What the stored record must look like for a conditional write to apply."""

    statuses: Optional[FrozenSet[str]] = None
    claimed_by: Any = _ANY

    def matches(self, report: Report) -> bool:
        if self.statuses is not None and report.status not in self.statuses:
            return False
        if self.claimed_by is not _ANY and report.claimed_by != self.claimed_by:
            return False
        return True


def expect_status(*statuses: str) -> Expectation:
    return Expectation(statuses=frozenset(statuses))


def expect_claimant(claimant_id: Optional[str], *statuses: str) -> Expectation:
    return Expectation(statuses=frozenset(statuses) if statuses else None, claimed_by=claimant_id)


Expected = Union[None, Expectation, Iterable[Expectation]]


def satisfies(report: Report, expected: Expected) -> bool:
    """True when ``report`` matches ``expected`` (any one of several, if a list)."""
    if expected is None:
        return True
    if isinstance(expected, Expectation):
        return expected.matches(report)
    return any(e.matches(report) for e in expected)


def apply_patch(current: Report, patch: Dict[str, Any]) -> Report:
    data = {k: v for k, v in patch.items() if k not in IMMUTABLE_FIELDS}
    stamp = data.get("last_update") or now_ms()
    data["last_update"] = max(stamp, current.last_update)
    return current.model_copy(update=data)


def _conflict(report: Report) -> ConflictError:
    return ConflictError(
        "Report %s no longer matches the expected state (status=%s)" % (report.short_code, report.status),
        current=report,
    )


class ReportStore(abc.ABC):
    """Holds reports and rescuers.

    ``conditional_update`` is the only write path for an existing report and
    applies its patch as one unit: readers see the record either before or
    after, never in between.
    """

    @abc.abstractmethod
    def create(self, report: Report) -> Report: ...

    @abc.abstractmethod
    def get(self, identifier: str) -> Report: ...

    @abc.abstractmethod
    def list(self, status: Optional[str] = None, severity: Optional[str] = None) -> List[Report]: ...

    @abc.abstractmethod
    def conditional_update(self, report_id: str, patch: Dict[str, Any], expected: Expected = None) -> Report: ...

    @abc.abstractmethod
    def count(self) -> int: ...

    @abc.abstractmethod
    def save_rescuer(self, rescuer: Rescuer) -> Rescuer: ...

    @abc.abstractmethod
    def get_rescuer(self, rescuer_id: str) -> Rescuer: ...

    @abc.abstractmethod
    def update_rescuer(self, rescuer_id: str, patch: Dict[str, Any]) -> Rescuer: ...

    @abc.abstractmethod
    def list_rescuers(self) -> List[Rescuer]: ...

    @abc.abstractmethod
    def clear(self) -> Dict[str, int]: ...


class InMemoryDB(ReportStore):
    def __init__(self):
        self.reports: Dict[str, Report] = {}
        self.short_codes: Dict[str, str] = {}
        self.rescuers: Dict[str, Rescuer] = {}
        self._index_lock = threading.Lock()
        self._keys = KeyedLock()
        logger.info("In-memory database initialized")

    def create(self, report: Report) -> Report:
        code = normalize_short_code(report.short_code)
        with self._index_lock:
            if report.id in self.reports:
                raise DuplicateIdError("Report id %s already exists" % report.id)
            if code in self.short_codes:
                raise ShortCodeTakenError("Short code %s already in use" % code)
            self.reports[report.id] = report
            self.short_codes[code] = report.id
        logger.info("Added report %s to in-memory database" % report.id)
        return report

    def get(self, identifier: str) -> Report:
        report = self.reports.get(identifier)
        if report is None:
            rid = self.short_codes.get(normalize_short_code(identifier))
            report = self.reports.get(rid) if rid else None
        if report is None:
            raise NotFoundError("Report not found")
        return report

    def list(self, status: Optional[str] = None, severity: Optional[str] = None) -> List[Report]:
        with self._index_lock:
            snapshot = list(self.reports.values())
        return [
            r for r in snapshot
            if (status is None or r.status == status) and (severity is None or r.severity == severity)
        ]

    def conditional_update(self, report_id: str, patch: Dict[str, Any], expected: Expected = None) -> Report:
        with self._keys.hold(report_id):
            current = self.reports.get(report_id)
            if current is None:
                raise NotFoundError("Report not found")
            if not satisfies(current, expected):
                raise _conflict(current)
            updated = apply_patch(current, patch)
            self.reports[report_id] = updated
        return updated

    def count(self) -> int:
        return len(self.reports)

    def save_rescuer(self, rescuer: Rescuer) -> Rescuer:
        with self._index_lock:
            self.rescuers[rescuer.id] = rescuer
        return rescuer

    def get_rescuer(self, rescuer_id: str) -> Rescuer:
        found = self.rescuers.get(rescuer_id)
        if found is None:
            raise NotFoundError("Rescuer not found")
        return found

    def update_rescuer(self, rescuer_id: str, patch: Dict[str, Any]) -> Rescuer:
        with self._keys.hold(("rescuer", rescuer_id)):
            current = self.get_rescuer(rescuer_id)
            updated = current.model_copy(update={k: v for k, v in patch.items() if k != "id"})
            self.rescuers[rescuer_id] = updated
        return updated

    def list_rescuers(self) -> List[Rescuer]:
        with self._index_lock:
            return list(self.rescuers.values())

    def clear(self) -> Dict[str, int]:
        with self._index_lock:
            counts = {"reports": len(self.reports), "rescuers": len(self.rescuers)}
            self.reports = {}
            self.short_codes = {}
            self.rescuers = {}
        return counts


class ReportRow(Base):
    __tablename__ = "reports"
    id = Column(String(64), primary_key=True)
    short_code = Column(String(16), unique=True, index=True, nullable=False)
    status = Column(String(16), index=True, nullable=False)
    severity = Column(String(16), index=True, nullable=False)
    timestamp = Column(BigInteger, index=True, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    data = Column(Text, nullable=False)


class RescuerRow(Base):
    __tablename__ = "rescuers"
    id = Column(String(64), primary_key=True)
    last_seen = Column(BigInteger)
    data = Column(Text, nullable=False)


@contextmanager
def _sql_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("Database error while %s: %s" % (action, e))
        raise InternalError("Storage failure while %s" % action) from e


class SqlDB(ReportStore):
    """Relational backend. Writes are optimistic: a row version is compared
    and bumped in the same UPDATE, and a lost race re-reads and re-checks."""

    MAX_CAS_ATTEMPTS = 8

    def __init__(self, url: str):
        kwargs: Dict[str, Any] = {"future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        self.engine = create_engine(url, **kwargs)
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info("SQL database initialized")

    def create(self, report: Report) -> Report:
        code = normalize_short_code(report.short_code)
        with _sql_errors("creating report"), self.Session() as s:
            if s.get(ReportRow, report.id) is not None:
                raise DuplicateIdError("Report id %s already exists" % report.id)
            taken = s.execute(select(ReportRow.id).where(ReportRow.short_code == code)).first()
            if taken:
                raise ShortCodeTakenError("Short code %s already in use" % code)
            s.add(ReportRow(
                id=report.id,
                short_code=code,
                status=report.status,
                severity=report.severity,
                timestamp=report.timestamp,
                version=1,
                data=report.model_dump_json(),
            ))
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                if s.get(ReportRow, report.id) is not None:
                    raise DuplicateIdError("Report id %s already exists" % report.id)
                raise ShortCodeTakenError("Short code %s already in use" % code)
        return report

    def get(self, identifier: str) -> Report:
        with _sql_errors("reading report"), self.Session() as s:
            row = s.get(ReportRow, identifier)
            if row is None:
                stmt = select(ReportRow).where(ReportRow.short_code == normalize_short_code(identifier))
                row = s.execute(stmt).scalars().first()
            if row is None:
                raise NotFoundError("Report not found")
            return Report.model_validate_json(row.data)

    def list(self, status: Optional[str] = None, severity: Optional[str] = None) -> List[Report]:
        stmt = select(ReportRow.data)
        if status is not None:
            stmt = stmt.where(ReportRow.status == status)
        if severity is not None:
            stmt = stmt.where(ReportRow.severity == severity)
        stmt = stmt.order_by(ReportRow.timestamp.desc())
        with _sql_errors("listing reports"), self.Session() as s:
            return [Report.model_validate_json(d) for d in s.execute(stmt).scalars().all()]

    def conditional_update(self, report_id: str, patch: Dict[str, Any], expected: Expected = None) -> Report:
        current = None
        for _ in range(self.MAX_CAS_ATTEMPTS):
            with _sql_errors("updating report"), self.Session() as s:
                row = s.get(ReportRow, report_id)
                if row is None:
                    raise NotFoundError("Report not found")
                version = row.version
                current = Report.model_validate_json(row.data)
                if not satisfies(current, expected):
                    raise _conflict(current)
                updated = apply_patch(current, patch)
                res = s.execute(
                    update(ReportRow)
                    .where(ReportRow.id == report_id, ReportRow.version == version)
                    .values(
                        status=updated.status,
                        severity=updated.severity,
                        data=updated.model_dump_json(),
                        version=version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                s.commit()
                if res.rowcount == 1:
                    return updated
            logger.debug("Version race on report %s, retrying" % report_id)
        raise ConflictError("Report is being updated concurrently, try again", current=current)

    def count(self) -> int:
        with _sql_errors("counting reports"), self.Session() as s:
            return s.query(ReportRow).count()

    def save_rescuer(self, rescuer: Rescuer) -> Rescuer:
        with _sql_errors("saving rescuer"), self.Session() as s:
            s.merge(RescuerRow(id=rescuer.id, last_seen=rescuer.last_seen, data=rescuer.model_dump_json()))
            s.commit()
        return rescuer

    def get_rescuer(self, rescuer_id: str) -> Rescuer:
        with _sql_errors("reading rescuer"), self.Session() as s:
            row = s.get(RescuerRow, rescuer_id)
            if row is None:
                raise NotFoundError("Rescuer not found")
            return Rescuer.model_validate_json(row.data)

    def update_rescuer(self, rescuer_id: str, patch: Dict[str, Any]) -> Rescuer:
        with _sql_errors("updating rescuer"), self.Session() as s:
            row = s.get(RescuerRow, rescuer_id)
            if row is None:
                raise NotFoundError("Rescuer not found")
            current = Rescuer.model_validate_json(row.data)
            updated = current.model_copy(update={k: v for k, v in patch.items() if k != "id"})
            row.data = updated.model_dump_json()
            row.last_seen = updated.last_seen
            s.commit()
        return updated

    def list_rescuers(self) -> List[Rescuer]:
        with _sql_errors("listing rescuers"), self.Session() as s:
            rows = s.execute(select(RescuerRow.data)).scalars().all()
            return [Rescuer.model_validate_json(d) for d in rows]

    def clear(self) -> Dict[str, int]:
        with _sql_errors("clearing"), self.Session() as s:
            counts = {"reports": s.query(ReportRow).count(), "rescuers": s.query(RescuerRow).count()}
            s.query(ReportRow).delete()
            s.query(RescuerRow).delete()
            s.commit()
        return counts


def get_db(settings) -> ReportStore:
    if settings.store_backend == "sql":
        return SqlDB(settings.db_url)
    return InMemoryDB()
