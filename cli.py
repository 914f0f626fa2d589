from __future__ import annotations

import argparse
import json
import sys

import requests

from bgchaos.failover import FailoverMonitor, PoolTarget, wait_for
from bgchaos.health import check_health, observe_served_pool
from bgchaos.logs import configure_logging
from bgchaos.proxy import ProxySettings, render_nginx_conf, validate_contract
from bgchaos.settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _body(r: requests.Response) -> dict:
    """JSON body of `r`, or an error dict when the reply is not JSON (e.g. an nginx 502 page)."""
    try:
        data = r.json()
    except ValueError:
        return {"error": f"HTTP {r.status_code}: non-JSON reply"}
    return data if isinstance(data, dict) else {"error": f"HTTP {r.status_code}: unexpected body {data!r}"}


def _pool_name(base: str) -> str | None:
    try:
        r = requests.get(f"{base}/version", timeout=10)
    except requests.RequestException:
        return None
    if not r.ok:
        return None
    return _body(r).get("app")


def _drill(args: argparse.Namespace) -> int:
    proxy_cfg = ProxySettings()
    primary_base = args.primary.rstrip("/")
    backup_base = args.backup.rstrip("/")
    proxy_base = args.proxy.rstrip("/")

    primary_name = _pool_name(primary_base)
    backup_name = _pool_name(backup_base)
    report: dict = {"primary": primary_name, "backup": backup_name, "mode": args.mode, "steps": []}
    if not primary_name or not backup_name:
        report["result"] = "failed"
        report["reason"] = "could not read /version from both pools"
        _print(report)
        return 1

    monitor = FailoverMonitor(
        PoolTarget(primary_name, primary_base, "primary"),
        PoolTarget(backup_name, backup_base, "backup"),
        fail_threshold=proxy_cfg.max_fails,
        check_timeout_s=proxy_cfg.read_timeout_s,
    )

    def served_by(expected: str):
        def _check() -> bool:
            predicted = monitor.tick().name
            served = observe_served_pool(proxy_base, timeout_s=proxy_cfg.read_timeout_s + 2)
            report["steps"].append(
                {"expected": expected, "predicted": predicted, "served": served, "mismatch": predicted != served}
            )
            return served == expected

        return _check

    if not served_by(primary_name)():
        report["result"] = "failed"
        report["reason"] = "proxy is not serving the primary pool before chaos"
        _print(report)
        return 1

    try:
        r = requests.post(f"{primary_base}/chaos/start", params={"mode": args.mode}, timeout=10)
    except requests.RequestException as e:
        report["result"] = "failed"
        report["reason"] = f"chaos start failed: {type(e).__name__}: {e}"
        _print(report)
        return 1
    if not r.ok:
        report["result"] = "failed"
        report["reason"] = f"chaos start rejected: HTTP {r.status_code}"
        _print(report)
        return 1

    try:
        failed_over = wait_for(served_by(backup_name), args.wait_s, args.interval_s)
    finally:
        requests.post(f"{primary_base}/chaos/stop", timeout=10)

    failed_back = wait_for(served_by(primary_name), args.wait_s, args.interval_s)

    report["failed_over"] = failed_over
    report["failed_back"] = failed_back
    report["mismatches"] = sum(1 for s in report["steps"] if s["mismatch"])
    report["result"] = "passed" if failed_over and failed_back else "failed"
    _print(report)
    return 0 if report["result"] == "passed" else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Blue/green chaos backend CLI")
    p.add_argument("--log-level", default=settings.log_level)
    sub = p.add_subparsers(dest="cmd", required=True)

    s_chaos = sub.add_parser("chaos", help="Start or stop chaos on one backend")
    s_chaos.add_argument("action", choices=["start", "stop"])
    s_chaos.add_argument("--target", default=f"http://localhost:{settings.port}", help="Backend base URL")
    s_chaos.add_argument("--mode", help="error|timeout (for start)")

    s_health = sub.add_parser("health", help="Probe a backend's /healthz")
    s_health.add_argument("--target", default=f"http://localhost:{settings.port}", help="Backend base URL")
    s_health.add_argument("--timeout", type=float, default=2.0)

    s_render = sub.add_parser("render-nginx", help="Render nginx.conf from PRIMARY/BACKUP and PROXY_* env vars")
    s_render.add_argument("--template", help="Template file (defaults to the built-in one)")
    s_render.add_argument("--output", help="Write here instead of stdout")

    s_drill = sub.add_parser("drill", help="Force a failover through the proxy and back")
    s_drill.add_argument("--proxy", required=True, help="Proxy base URL")
    s_drill.add_argument("--primary", required=True, help="Primary backend base URL (direct)")
    s_drill.add_argument("--backup", required=True, help="Backup backend base URL (direct)")
    s_drill.add_argument("--mode", choices=["error", "timeout"], default="error")
    s_drill.add_argument("--wait-s", type=float, default=60.0, help="Max seconds to wait for each switch")
    s_drill.add_argument("--interval-s", type=float, default=ProxySettings().check_interval_s)

    sub.add_parser("serve", help="Run the backend service")

    args = p.parse_args(argv)
    configure_logging(args.log_level)

    if args.cmd == "chaos":
        base = args.target.rstrip("/")
        try:
            if args.action == "start":
                r = requests.post(f"{base}/chaos/start", params={"mode": args.mode}, timeout=10)
            else:
                r = requests.post(f"{base}/chaos/stop", timeout=10)
        except requests.RequestException as e:
            _print({"error": f"{type(e).__name__}: {e}"})
            return 1
        _print(_body(r))
        return 0 if r.ok else 1

    if args.cmd == "health":
        url = f"{args.target.rstrip('/')}/healthz"
        ok, msg, latency = check_health(url, timeout_s=args.timeout)
        _print({"url": url, "healthy": ok, "message": msg, "latency_ms": latency})
        return 0 if ok else 1

    if args.cmd == "render-nginx":
        proxy_cfg = ProxySettings()
        problems = validate_contract(proxy_cfg, settings.chaos_timeout_s)
        if problems:
            _print({"error": "proxy settings break the failover contract", "problems": problems})
            return 1
        template = None
        if args.template:
            with open(args.template, encoding="utf-8") as fh:
                template = fh.read()
        conf = render_nginx_conf(proxy_cfg, template)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as fh:
                fh.write(conf)
        else:
            sys.stdout.write(conf)
        return 0

    if args.cmd == "drill":
        return _drill(args)

    if args.cmd == "serve":
        from main import run

        run()
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
