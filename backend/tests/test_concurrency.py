from __future__ import annotations
import threading
from concurrent.futures import ThreadPoolExecutor

from rescuenet.errors import ConflictError
from rescuenet.locks import KeyedLock

RACERS = 12


def _race(engine, report_id):
    barrier = threading.Barrier(RACERS)

    def attempt(n):
        barrier.wait()
        try:
            return engine.claim(report_id, "r-%d" % n, "Rescuer %d" % n)
        except ConflictError:
            return None

    with ThreadPoolExecutor(max_workers=RACERS) as pool:
        return list(pool.map(attempt, range(RACERS)))


def test_exactly_one_concurrent_claim_wins(engine, new_report, dispatcher):
    report = new_report()
    results = _race(engine, report.id)
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert engine.get(report.id).claimed_by == winners[0].claimed_by
    updates = [r for e, r in dispatcher.events if e == "report:update"]
    assert len(updates) == 1
    assert updates[0].claimed_by == winners[0].claimed_by


def test_claims_on_different_reports_all_succeed(engine, new_report):
    reports = [new_report() for _ in range(RACERS)]

    def claim(pair):
        n, report = pair
        return engine.claim(report.id, "r-%d" % n)

    with ThreadPoolExecutor(max_workers=RACERS) as pool:
        results = list(pool.map(claim, enumerate(reports)))
    assert all(r.status == "claimed" for r in results)


def test_events_for_one_report_follow_commit_order(engine, new_report, dispatcher):
    report = new_report()
    engine.claim(report.id, "r-a")

    def move(status):
        engine.update_status(report.id, status)

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(move, ["en_route", "arrived", "en_route", "arrived"] * 3))
    stamps = [r.last_update for e, r in dispatcher.events if e == "report:update"]
    assert stamps == sorted(stamps)
    assert dispatcher.events[-1][1] == engine.get(report.id)


def test_keyed_lock_isolates_keys():
    locks = KeyedLock()
    acquired = threading.Event()
    with locks.hold("a"):
        def other():
            with locks.hold("b"):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=2)
        t.join()
    assert len(locks) == 0


def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    inside = []
    overlap = []

    def work(n):
        with locks.hold("k"):
            if inside:
                overlap.append(n)
            inside.append(n)
            threading.Event().wait(0.001)
            inside.remove(n)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(work, range(32)))
    assert overlap == []
    assert len(locks) == 0
