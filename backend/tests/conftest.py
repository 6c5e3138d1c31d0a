from __future__ import annotations
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient

from rescuenet.audit import AuditLog
from rescuenet.config import Settings
from rescuenet.db import InMemoryDB, SqlDB
from rescuenet.main import create_app
from rescuenet.schemas import Report, SmsResult
from rescuenet.services.claims import ClaimEngine
from rescuenet.state import Coordinator

COLOMBO = {"lat": 6.9271, "lng": 79.8612}


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Report]] = []

    def report_created(self, report: Report) -> int:
        self.events.append(("report:new", report))
        return 0

    def report_updated(self, report: Report) -> int:
        self.events.append(("report:update", report))
        return 0


class RecordingNotifier:
    def __init__(self) -> None:
        self.changed: List[Report] = []
        self.sent: List[Tuple[str, str]] = []

    def report_changed(self, report: Report):
        self.changed.append(report)

    def send(self, to: str, body: str) -> SmsResult:
        self.sent.append((to, body))
        return SmsResult(success=True, mock=True)

    def shutdown(self) -> None:
        pass


class FakeTransport:
    def __init__(self, alive: bool = True, explode: bool = False) -> None:
        self.alive = alive
        self.explode = explode
        self.messages: List[dict] = []

    def deliver(self, message: dict) -> bool:
        if self.explode:
            raise RuntimeError("socket gone")
        if not self.alive:
            return False
        self.messages.append(message)
        return True


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    if request.param == "sql":
        db = SqlDB("sqlite:///%s" % (tmp_path / "rescuenet-test.db"))
        yield db
        db.engine.dispose()
    else:
        yield InMemoryDB()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine(store, dispatcher, notifier) -> ClaimEngine:
    return ClaimEngine(store, dispatcher, notifier=notifier, audit=AuditLog())


@pytest.fixture
def new_report(engine):
    def _make(**fields) -> Report:
        data = dict(COLOMBO)
        data.update(fields)
        return engine.create_report(data)
    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(store_backend="memory", frontend_url="https://sos.example")


@pytest.fixture
def coordinator(settings, notifier) -> Coordinator:
    return Coordinator(settings, store=InMemoryDB(), notifier=notifier)


@pytest.fixture
def client(settings, coordinator):
    app = create_app(settings, coordinator)
    with TestClient(app) as c:
        yield c
