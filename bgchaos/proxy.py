from __future__ import annotations

import os
import re
from dataclasses import dataclass
from string import Template

from .settings import _env_float, _env_int

HOST_PORT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-\._]*:\d{1,5}$")

DEFAULT_TEMPLATE = """\
events {
    worker_connections 1024;
}

http {
    upstream app_backend {
        server ${PRIMARY} max_fails=${MAX_FAILS} fail_timeout=${FAIL_TIMEOUT}s;
        server ${BACKUP} backup;
    }

    server {
        listen ${LISTEN_PORT};

        location / {
            proxy_pass http://app_backend;
            proxy_connect_timeout ${CONNECT_TIMEOUT}s;
            proxy_send_timeout ${READ_TIMEOUT}s;
            proxy_read_timeout ${READ_TIMEOUT}s;

            proxy_next_upstream error timeout http_500 http_502 http_503 http_504;
            proxy_next_upstream_tries 2;

            proxy_set_header Host $host;
            proxy_set_header X-Real-IP $remote_addr;
        }
    }
}
"""


@dataclass(frozen=True)
class ProxySettings:
    """Assumptions about the fronting proxy's health checking.

    These are documented here and fed to the proxy config; the backend
    service never depends on them.
    """

    primary: str = os.getenv("PRIMARY", "app_blue:8080")
    backup: str = os.getenv("BACKUP", "app_green:8080")
    listen_port: int = _env_int("PROXY_LISTEN_PORT", 80)
    max_fails: int = _env_int("PROXY_MAX_FAILS", 1)
    fail_timeout_s: int = _env_int("PROXY_FAIL_TIMEOUT_S", 5)
    connect_timeout_s: float = _env_float("PROXY_CONNECT_TIMEOUT_S", 2.0)
    read_timeout_s: float = _env_float("PROXY_READ_TIMEOUT_S", 3.0)
    check_interval_s: float = _env_float("PROXY_CHECK_INTERVAL_S", 5.0)


def _fmt_seconds(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def validate_contract(proxy: ProxySettings, chaos_timeout_s: float) -> list[str]:
    """Return the ways `proxy` would fail to act on the backend's chaos signals."""
    problems: list[str] = []
    for label, addr in (("PRIMARY", proxy.primary), ("BACKUP", proxy.backup)):
        if not HOST_PORT_RE.match(addr):
            problems.append(f"{label} must be host:port, got {addr!r}")
    if proxy.primary == proxy.backup:
        problems.append("PRIMARY and BACKUP must point at different upstreams")
    if proxy.read_timeout_s >= chaos_timeout_s:
        problems.append(
            f"proxy read timeout ({_fmt_seconds(proxy.read_timeout_s)}s) must be below "
            f"the chaos delay ({_fmt_seconds(chaos_timeout_s)}s) or timeout mode is never detected"
        )
    if proxy.connect_timeout_s <= 0 or proxy.read_timeout_s <= 0:
        problems.append("proxy timeouts must be positive")
    if proxy.max_fails < 1:
        problems.append("max_fails must be at least 1")
    return problems


def render_nginx_conf(proxy: ProxySettings, template: str | None = None) -> str:
    """Fill the nginx template with upstream addresses and timing knobs.

    Only the `${NAME}` placeholders below are replaced; nginx's own
    `$variables` pass through untouched, like envsubst with a variable list.
    """
    values = {
        "PRIMARY": proxy.primary,
        "BACKUP": proxy.backup,
        "LISTEN_PORT": str(proxy.listen_port),
        "MAX_FAILS": str(proxy.max_fails),
        "FAIL_TIMEOUT": str(proxy.fail_timeout_s),
        "CONNECT_TIMEOUT": _fmt_seconds(proxy.connect_timeout_s),
        "READ_TIMEOUT": _fmt_seconds(proxy.read_timeout_s),
    }
    return Template(template if template is not None else DEFAULT_TEMPLATE).safe_substitute(values)
