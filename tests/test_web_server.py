import pytest
from fastapi.testclient import TestClient

from ticket_lottery.web_server import CALLER_HEADER, LotteryWebServer


@pytest.fixture
def client(engine):
    server = LotteryWebServer({}, engine)
    with TestClient(server.app) as client:
        yield client


def as_caller(name):
    return {CALLER_HEADER: name}


def test_full_round_over_http(client, engine, clock):
    assert client.post("/api/lottery/initialize", json={"ticket_price": 10, "round_duration": 60}).status_code == 200
    started = client.post("/api/rounds").json()
    assert started["round_id"] == 0

    bought = client.post("/api/rounds/0/tickets", json={"count": 3}, headers=as_caller("alice"))
    assert bought.status_code == 200
    assert bought.json()["receipt"]["tickets"] == [0, 1, 2]
    client.post("/api/rounds/0/tickets", json={"count": 2}, headers=as_caller("bob"))

    clock.advance(60)
    closed = client.post("/api/rounds/0/close").json()["round"]
    assert closed["marker_name"] == "AWAITING_PAYOUT"
    assert closed["winning_ticket"] == 0

    paid = client.post("/api/rounds/0/claim", headers=as_caller("alice"))
    assert paid.status_code == 200
    assert paid.json()["receipt"]["reward"] == 25

    again = client.post("/api/rounds/0/claim", headers=as_caller("bob"))
    assert again.status_code == 409
    assert again.json()["error"] == "AlreadyCompletedError"

    assert client.delete("/api/rounds/0").status_code == 200
    views = client.get("/api/players/alice/participations").json()["participations"]
    assert views[0]["orphaned"] is True


def test_errors_map_to_statuses(client, clock):
    assert client.post("/api/rounds").status_code == 409
    assert client.get("/api/rounds/3").status_code == 404

    client.post("/api/lottery/initialize", json={"ticket_price": 10, "round_duration": 60})
    client.post("/api/rounds")

    bad_count = client.post("/api/rounds/0/tickets", json={"count": 0}, headers=as_caller("alice"))
    assert bad_count.status_code == 400
    assert bad_count.json()["fatal"] is False

    early = client.post("/api/rounds/0/close")
    assert early.status_code == 409
    assert early.json()["error"] == "RoundNotYetClosedError"

    client.post("/api/rounds/0/tickets", json={"count": 1}, headers=as_caller("alice"))
    clock.advance(60)
    client.post("/api/rounds/0/close")
    outsider = client.post("/api/rounds/0/claim", headers=as_caller("carol"))
    assert outsider.status_code == 403


def test_payment_failure_is_reported_as_fatal(client):
    client.post("/api/lottery/initialize", json={"ticket_price": 10, "round_duration": 60})
    client.post("/api/rounds")

    response = client.post("/api/rounds/0/tickets", json={"count": 500}, headers=as_caller("alice"))

    assert response.status_code == 502
    body = response.json()
    assert body["fatal"] is True
    assert body["reserved_tickets"] == list(range(500))
    assert client.get("/api/rounds/0").json()["round"]["tickets_sold"] == 500


def test_caller_header_is_required(client):
    client.post("/api/lottery/initialize", json={"ticket_price": 10, "round_duration": 60})
    client.post("/api/rounds")

    assert client.post("/api/rounds/0/tickets", json={"count": 1}).status_code == 401
    assert client.post("/api/rounds/0/claim").status_code == 401


def test_config_wallet_and_health(client, ledger):
    client.post("/api/lottery/initialize", json={"ticket_price": 10, "round_duration": 60})

    config = client.get("/api/lottery/config").json()["config"]
    assert config["phase"] == "IDLE"
    assert config["pool_scope"] == "global"
    assert client.get("/api/wallet/alice").json()["balance"] == 1_000
    assert client.get("/api/health").json()["components"]["ledger"]["status"] == "healthy"
    assert client.get("/api/rounds").json() == {"rounds": [], "total": 0}


def test_snapshot_failure_is_reported_as_fatal(client, engine, tmp_path, monkeypatch):
    def failing_write(data):
        raise OSError("read-only file system")

    monkeypatch.setattr(engine.store, "_snapshot_path", tmp_path / "lottery.json")
    monkeypatch.setattr(engine.store, "write_snapshot", failing_write)

    response = client.post("/api/lottery/initialize", json={"ticket_price": 10, "round_duration": 60})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "StoreWriteError"
    assert body["fatal"] is True
