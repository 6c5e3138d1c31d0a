from __future__ import annotations

from conftest import COLOMBO


def _create(client, **fields):
    payload = dict(COLOMBO)
    payload.update(fields)
    r = client.post("/reports", json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def _claim(client, identifier, rescuer_id="r-a", name="Alice", **extra):
    body = {"rescuerId": rescuer_id, "rescuerName": name}
    body.update(extra)
    return client.post("/reports/%s/claim" % identifier, json=body)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["reports"] == 0
    assert body["connectedClients"] == 0


def test_create_and_fetch_by_short_code(client):
    created = _create(client, message="Trapped on roof", severity="critical", phone="+94771234567",
                      isMedical=True, peopleCount=3)
    assert created["ok"] is True
    assert created["id"]
    r = client.get("/reports/%s" % created["shortCode"].lower())
    assert r.status_code == 200
    report = r.json()
    assert report["id"] == created["id"]
    assert report["status"] == "new"
    assert report["severity"] == "critical"
    assert report["isMedical"] is True
    assert report["peopleCount"] == 3
    assert "phone" not in report
    assert "rawSms" not in report


def test_create_without_location(client):
    r = client.post("/reports", json={"message": "help"})
    assert r.status_code == 400
    assert "Location" in r.json()["detail"]


def test_create_without_body(client, coordinator):
    r = client.post("/reports")
    assert r.status_code == 400
    assert coordinator.store.count() == 0


def test_create_with_malformed_location(client, coordinator):
    r = client.post("/reports", json={"lat": {"deg": 6}, "lng": 79.8})
    assert r.status_code == 400
    assert "Location" in r.json()["detail"]
    assert coordinator.store.count() == 0


def test_unknown_report(client):
    r = client.get("/reports/NOPE")
    assert r.status_code == 404
    assert r.json() == {"detail": "Report not found"}


def test_list_and_filter(client):
    a = _create(client, severity="low")
    b = _create(client, severity="critical")
    _claim(client, b["id"])
    everything = client.get("/reports").json()
    assert {r["id"] for r in everything} == {a["id"], b["id"]}
    assert all("phone" not in r for r in everything)
    assert [r["id"] for r in client.get("/reports", params={"status": "claimed"}).json()] == [b["id"]]
    assert [r["id"] for r in client.get("/reports", params={"severity": "low"}).json()] == [a["id"]]
    assert client.get("/reports", params={"status": "lost"}).status_code == 400


def test_claim_race_over_http(client, notifier):
    created = _create(client, phone="+94771234567")
    r = _claim(client, created["id"], eta="15 min")
    assert r.status_code == 200
    report = r.json()["report"]
    assert report["status"] == "claimed"
    assert report["claimedBy"] == "r-a"
    assert report["claimedByName"] == "Alice"
    assert report["eta"] == "15 min"
    assert [x.status for x in notifier.changed] == ["claimed"]

    r = _claim(client, created["id"], "r-b", "Bob")
    assert r.status_code == 409
    assert "already claimed by Alice" in r.json()["detail"]
    assert client.get("/reports/%s" % created["id"]).json()["claimedBy"] == "r-a"


def test_claim_errors(client):
    created = _create(client)
    assert client.post("/reports/%s/claim" % created["id"], json={}).status_code == 400
    assert _claim(client, "missing").status_code == 404


def test_status_updates(client):
    created = _create(client)
    _claim(client, created["id"])
    r = client.put("/reports/%s/status" % created["id"], json={"status": "bogus"})
    assert r.status_code == 400
    assert "bogus" in r.json()["detail"]
    assert client.get("/reports/%s" % created["id"]).json()["status"] == "claimed"

    r = client.put("/reports/%s/status" % created["id"], json={"status": "en_route", "eta": "5 min"})
    assert r.status_code == 200
    assert r.json()["report"]["status"] == "en_route"
    assert r.json()["report"]["eta"] == "5 min"

    assert client.put("/reports/%s/status" % created["id"], json={"status": "closed"}).status_code == 200
    assert client.put("/reports/%s/status" % created["id"], json={"status": "rescued"}).status_code == 409


def test_release_is_idempotent(client):
    created = _create(client)
    _claim(client, created["id"], eta="5 min")
    for _ in range(2):
        r = client.post("/reports/%s/release" % created["id"])
        assert r.status_code == 200
        report = r.json()["report"]
        assert report["status"] == "new"
        assert report["claimedBy"] is None
        assert report["eta"] is None


def test_audit_trail(client):
    created = _create(client)
    _claim(client, created["id"])
    r = client.get("/reports/%s/audit" % created["shortCode"])
    assert r.status_code == 200
    body = r.json()
    assert body["reportId"] == created["id"]
    assert [e["event"] for e in body["entries"]] == ["created", "claimed"]


def test_rescuer_registration_and_heartbeat(client):
    r = client.post("/rescuers/register", json={"name": "Alice", "phone": "+94770000001"})
    assert r.status_code == 201
    rescuer = r.json()["rescuer"]
    assert rescuer["organization"] == "Independent"

    r = client.post("/rescuers/heartbeat", json={"id": rescuer["id"]})
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["lastSeen"] >= rescuer["lastSeen"]

    listed = client.get("/rescuers").json()
    assert [x["id"] for x in listed] == [rescuer["id"]]
    assert listed[0]["isActive"] is True
    assert "phone" not in listed[0]


def test_rescuer_errors(client):
    assert client.post("/rescuers/register", json={"organization": "Red Cross"}).status_code == 400
    assert client.post("/rescuers/heartbeat", json={}).status_code == 400
    assert client.post("/rescuers/heartbeat", json={"id": "ghost"}).status_code == 404


def test_stats(client):
    a = _create(client, severity="critical")
    _create(client, severity="low")
    _claim(client, a["id"])
    client.post("/rescuers/register", json={"name": "Alice"})
    stats = client.get("/stats").json()
    assert stats["total"] == 2
    assert stats["byStatus"]["new"] == 1
    assert stats["byStatus"]["claimed"] == 1
    assert stats["byStatus"]["closed"] == 0
    assert stats["bySeverity"] == {"low": 1, "medium": 0, "high": 0, "critical": 1}
    assert stats["activeRescuers"] == 1
    assert stats["connectedClients"] == 0


def test_sms_sos_creates_report(client, coordinator):
    r = client.post("/sms/incoming", data={"Body": "H 6.9271 79.8612 MC", "From": "+94771234567"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/xml")
    assert "SOS RECEIVED! Code:" in r.text
    assert "6.9271,79.8612" in r.text
    assert "https://sos.example/track/" in r.text

    [report] = client.get("/reports").json()
    assert report["source"] == "sms"
    assert report["severity"] == "critical"
    assert report["isMedical"] is True and report["isFragile"] is True
    assert "phone" not in report
    assert report["shortCode"] in r.text

    stored = coordinator.store.get(report["id"])
    assert stored.phone == "+94771234567"
    assert stored.raw_sms == "H 6.9271 79.8612 MC"


def test_sms_without_coordinates_gets_help(client, coordinator):
    r = client.post("/sms/incoming", data={"Body": "not a location", "From": "+94771234567"})
    assert r.status_code == 200
    assert "DISASTER SOS" in r.text
    assert coordinator.store.count() == 0


def test_sms_send(client, notifier):
    client.post("/sms/incoming", data={"Body": "SOS 6.9,79.8 stuck", "From": "+94771234567"})
    [report] = client.get("/reports").json()
    r = client.post("/sms/send", json={"reportId": report["id"], "message": "Hold on"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert notifier.sent == [("+94771234567", "Hold on")]

    web = _create(client)
    assert client.post("/sms/send", json={"reportId": web["id"], "message": "Hi"}).status_code == 400
