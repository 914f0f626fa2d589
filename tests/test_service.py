import asyncio
import logging
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from bgchaos.app import SIMULATED_ERROR, create_app
from bgchaos.chaos import ChaosMode, ChaosState
from bgchaos.settings import Settings


def test_healthz_is_fast_and_healthy(client):
    client.get("/healthz")
    t0 = time.monotonic()
    r = client.get("/healthz")
    assert time.monotonic() - t0 < 0.1
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_version_echoes_pool_and_release(client):
    r = client.get("/version")
    assert r.status_code == 200
    body = r.json()
    assert body["app"] == "blue"
    assert body["release"] == "rel-42"
    assert body["timestamp"].endswith("Z")
    assert r.headers["X-App-Pool"] == "blue"
    assert r.headers["X-Release-Id"] == "rel-42"


def test_version_timestamps_do_not_go_backwards(client):
    stamps = [client.get("/version").json()["timestamp"] for _ in range(5)]
    # Fixed-width ISO-8601 sorts lexically.
    assert stamps == sorted(stamps)


def test_version_defaults_to_unknown():
    app = create_app(Settings(app_pool="unknown", release_id="unknown"))
    with TestClient(app) as c:
        r = c.get("/version")
    assert r.json()["app"] == "unknown"
    assert r.headers["X-Release-Id"] == "unknown"


def test_start_error_then_stop(client, state):
    r = client.post("/chaos/start", params={"mode": "error"})
    assert r.status_code == 200
    assert r.json() == {"status": "chaos started", "mode": "error"}
    assert state.current_mode() is ChaosMode.ERROR

    for path in ("/healthz", "/version", "/healthz"):
        r = client.get(path)
        assert r.status_code == 500
        assert r.json() == {"error": SIMULATED_ERROR}

    r = client.post("/chaos/stop")
    assert r.status_code == 200
    assert r.json() == {"status": "chaos stopped"}

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


@pytest.mark.parametrize("params", [{"mode": "bogus"}, {"mode": ""}, {"mode": "none"}, {"mode": "Error"}, {}])
def test_start_with_bad_mode_is_rejected_and_keeps_state(client, state, params):
    client.post("/chaos/start", params={"mode": "error"})

    r = client.post("/chaos/start", params=params)
    assert r.status_code == 400
    assert r.json()["error"].startswith("Invalid mode")
    assert state.current_mode() is ChaosMode.ERROR
    assert client.get("/healthz").status_code == 500


def test_bad_mode_without_prior_chaos_leaves_service_healthy(client):
    assert client.post("/chaos/start", params={"mode": "bogus"}).status_code == 400
    assert client.get("/healthz").status_code == 200


def test_stop_is_idempotent(client):
    assert client.post("/chaos/stop").status_code == 200
    assert client.post("/chaos/stop").status_code == 200
    assert client.get("/healthz").status_code == 200


def test_start_is_idempotent_and_last_start_wins(client, state):
    client.post("/chaos/start", params={"mode": "timeout"})
    client.post("/chaos/start", params={"mode": "timeout"})
    assert state.current_mode() is ChaosMode.TIMEOUT
    client.post("/chaos/start", params={"mode": "error"})
    assert state.current_mode() is ChaosMode.ERROR


def test_timeout_mode_delays_then_succeeds(client, cfg):
    client.post("/chaos/start", params={"mode": "timeout"})

    t0 = time.monotonic()
    r = client.get("/healthz")
    assert time.monotonic() - t0 >= cfg.chaos_timeout_s
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}

    t0 = time.monotonic()
    r = client.get("/version")
    assert time.monotonic() - t0 >= cfg.chaos_timeout_s
    assert r.status_code == 200
    assert r.json()["app"] == "blue"
    assert r.headers["X-App-Pool"] == "blue"


@pytest.mark.parametrize(
    "method,path",
    [("GET", "/"), ("GET", "/nope"), ("POST", "/healthz"), ("GET", "/chaos/start"), ("GET", "/docs"), ("DELETE", "/version")],
)
def test_unknown_routes_are_not_found(client, method, path):
    r = client.request(method, path)
    assert r.status_code == 404
    assert r.json() == {"error": "Not found"}


def test_each_app_owns_its_state():
    a_state, b_state = ChaosState(), ChaosState()
    create_app(Settings(), a_state)
    create_app(Settings(), b_state)
    a_state.set_mode("error")
    assert b_state.current_mode() is ChaosMode.NONE


@pytest.mark.anyio
async def test_timeout_does_not_block_other_requests(app, cfg):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        await ac.post("/chaos/start", params={"mode": "timeout"})

        slow = asyncio.create_task(ac.get("/healthz"))
        await asyncio.sleep(0.05)

        # Control calls and other reads keep flowing while the probe is suspended.
        t0 = time.monotonic()
        r = await ac.post("/chaos/stop")
        assert r.status_code == 200
        r = await ac.get("/healthz")
        assert r.status_code == 200
        assert time.monotonic() - t0 < cfg.chaos_timeout_s
        assert not slow.done()

        # The suspended request keeps the mode it read on arrival.
        r = await slow
        assert r.status_code == 200
        assert r.json() == {"status": "healthy"}


@pytest.mark.anyio
async def test_error_read_on_arrival_is_kept_for_that_request(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        await ac.post("/chaos/start", params={"mode": "timeout"})
        slow = asyncio.create_task(ac.get("/version"))
        await asyncio.sleep(0.05)
        await ac.post("/chaos/start", params={"mode": "error"})

        r = await slow
        assert r.status_code == 200
        assert (await ac.get("/version")).status_code == 500


@pytest.mark.anyio
async def test_concurrent_control_and_polling_see_only_valid_modes(app, state):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:

        async def control(i):
            if i % 3 == 0:
                return await ac.post("/chaos/stop")
            return await ac.post("/chaos/start", params={"mode": "error"})

        results = await asyncio.gather(*(control(i) for i in range(30)), *(ac.get("/healthz") for _ in range(30)))

    for r in results:
        assert r.status_code in (200, 500)
        body = r.json()
        assert body in (
            {"status": "healthy"},
            {"error": SIMULATED_ERROR},
            {"status": "chaos stopped"},
            {"status": "chaos started", "mode": "error"},
        )
    assert state.current_mode() in (ChaosMode.NONE, ChaosMode.ERROR)


def _http_scope(method, path):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/healthz", "/version"])
async def test_timeout_is_abandoned_when_caller_hangs_up(caplog, path):
    cfg = Settings(app_pool="blue", release_id="rel-42", chaos_timeout_s=5.0, disconnect_poll_s=0.02)
    state = ChaosState()
    state.set_mode("timeout")
    app = create_app(cfg, state)

    hung_up = asyncio.Event()
    pending = [{"type": "http.request", "body": b"", "more_body": False}]
    sent = []

    async def receive():
        if pending:
            return pending.pop(0)
        if hung_up.is_set():
            return {"type": "http.disconnect"}
        await hung_up.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    with caplog.at_level(logging.INFO, logger="bgchaos.app"):
        t0 = time.monotonic()
        task = asyncio.create_task(app(_http_scope("GET", path), receive, send))
        await asyncio.sleep(0.1)
        assert not task.done()

        hung_up.set()
        await asyncio.wait_for(task, timeout=2.0)
        elapsed = time.monotonic() - t0

    assert elapsed < cfg.chaos_timeout_s
    assert f"Caller disconnected during simulated timeout on {path}; response abandoned" in caplog.text
    start = next(m for m in sent if m["type"] == "http.response.start")
    assert start["status"] != 200
    bodies = b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body")
    assert b"healthy" not in bodies and b"blue" not in bodies


@pytest.mark.anyio
async def test_control_calls_apply_in_arrival_order(app, state):
    transport = httpx.ASGITransport(app=app)
    sequence = ["error", "stop", "timeout", "error", "stop", "timeout", "error", "timeout"]
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:

        def call(op):
            if op == "stop":
                return ac.post("/chaos/stop")
            return ac.post("/chaos/start", params={"mode": op})

        results = await asyncio.gather(*(call(op) for op in sequence))

    assert all(r.status_code == 200 for r in results)
    assert state.current_mode() is ChaosMode.TIMEOUT

    for route in app.routes:
        if getattr(route, "path", None) in ("/chaos/start", "/chaos/stop"):
            assert asyncio.iscoroutinefunction(route.endpoint)
