from __future__ import annotations

import json
import urllib.request

import pytest

from spawner.app import StatusServer, create_app


@pytest.fixture
def scheduler(make_scheduler):
    scheduler, spawner = make_scheduler(total=4, limit=2)
    scheduler.start()
    scheduler.run_pending()
    spawner.handles[0].ready("bot#0")
    spawner.handles[1].exit(0)
    scheduler.run_pending()
    return scheduler


@pytest.fixture
def client(scheduler):
    app = create_app(scheduler)
    app.config["TESTING"] = True
    return app.test_client()


def test_status_returns_snapshot(client):
    response = client.get("/status")
    assert response.status_code == 200
    assert response.get_json() == {"launched": 2, "alive": 1, "finished": 1, "total": 4}


def test_index_is_plain_text_summary(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.mimetype == "text/plain"
    assert response.get_data(as_text=True) == "spawner running. launched=2, alive=1, finished=1"


def test_agents_lists_live_records(client):
    response = client.get("/agents")
    [agent] = response.get_json()
    assert agent["index"] == 0
    assert agent["state"] == "ready"
    assert agent["pid"] == 1000


def test_status_reads_do_not_change_state(client, scheduler):
    before = scheduler.snapshot()
    for _ in range(3):
        client.get("/status")
        client.get("/agents")
    assert scheduler.snapshot() == before


def test_status_server_serves_over_http(scheduler):
    server = StatusServer(create_app(scheduler), host="127.0.0.1", port=0)
    server.start()
    try:
        with urllib.request.urlopen(f"http://127.0.0.1:{server.port}/status", timeout=5) as response:
            payload = json.loads(response.read().decode("utf-8"))
    finally:
        server.shutdown()
    assert payload["launched"] == 2
    assert payload["total"] == 4
