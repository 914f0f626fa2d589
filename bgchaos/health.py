from __future__ import annotations

import time

import httpx


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000.0, 2)


def check_health(
    url: str,
    timeout_s: float = 2.0,
    transport: httpx.BaseTransport | None = None,
) -> tuple[bool, str, float | None]:
    """Probe a backend's `/healthz` the way the fronting proxy judges it.

    The backend counts as up only for a 200 carrying {"status": "healthy"}.
    A reply slower than `timeout_s` is a failure even if it would have been
    healthy, which is how Timeout chaos reaches the proxy.
    Returns (is_up, reason, latency_ms). Never raises.
    """
    start = time.monotonic()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
            resp = client.get(url)
    except httpx.TimeoutException:
        return False, f"Timed out after {timeout_s:g}s", _elapsed_ms(start)
    except httpx.ConnectError:
        return False, "Connection refused", _elapsed_ms(start)
    except httpx.HTTPError as e:
        return False, f"Transport error: {type(e).__name__}", _elapsed_ms(start)

    latency_ms = _elapsed_ms(start)
    if resp.status_code != 200:
        return False, f"HTTP {resp.status_code}", latency_ms
    try:
        body = resp.json()
    except ValueError:
        return False, "Body is not JSON", latency_ms
    status = body.get("status") if isinstance(body, dict) else None
    if status != "healthy":
        return False, f"Reported status {status!r}", latency_ms
    return True, "Healthy", latency_ms


def observe_served_pool(
    proxy_url: str,
    timeout_s: float = 5.0,
    transport: httpx.BaseTransport | None = None,
) -> str | None:
    """Ask the proxy for /version and return the pool named in X-App-Pool.

    Returns None when the proxy cannot be reached or the header is missing.
    """
    url = f"{proxy_url.rstrip('/')}/version"
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
            resp = client.get(url)
    except httpx.HTTPError:
        return None
    return resp.headers.get("X-App-Pool")
