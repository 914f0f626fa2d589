from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from .health import check_health

log = logging.getLogger(__name__)

Checker = Callable[[str, float], tuple[bool, str, float | None]]


@dataclass(frozen=True)
class PoolTarget:
    name: str
    base_url: str
    role: str  # primary|backup

    @property
    def health_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/healthz"


class FailoverMonitor:
    """Client-side model of a primary/backup proxy's routing decision.

    The proxy is external; this tracks the same signals it consumes (status
    code and check timeout) so a drill can predict which pool should be
    serving and compare it with what the proxy really serves.
    """

    def __init__(
        self,
        primary: PoolTarget,
        backup: PoolTarget,
        fail_threshold: int = 1,
        rise_threshold: int = 1,
        check_timeout_s: float = 3.0,
        checker: Checker | None = None,
    ):
        self.primary = primary
        self.backup = backup
        self.fail_threshold = max(1, int(fail_threshold))
        self.rise_threshold = max(1, int(rise_threshold))
        self.check_timeout_s = check_timeout_s
        self.checker = checker or check_health
        self.lock = Lock()
        self.last_status: dict[str, bool] = {}  # pool name -> last healthy
        self.fail_counts: dict[str, int] = {}  # pool name -> consecutive fails
        self.ok_counts: dict[str, int] = {}  # pool name -> consecutive successes
        self.active = primary

    def mark_health(self, pool: str, healthy: bool) -> tuple[bool | None, int]:
        """Update last health and consecutive counters.

        Returns (previous_healthy or None, current streak length).
        """
        with self.lock:
            prev = self.last_status.get(pool)
            self.last_status[pool] = healthy
            if healthy:
                self.fail_counts[pool] = 0
                self.ok_counts[pool] = self.ok_counts.get(pool, 0) + 1
                return prev, self.ok_counts[pool]
            self.ok_counts[pool] = 0
            self.fail_counts[pool] = self.fail_counts.get(pool, 0) + 1
            return prev, self.fail_counts[pool]

    def tick(self) -> PoolTarget:
        """Probe both pools once and return the pool that should serve traffic."""
        for pool in (self.primary, self.backup):
            ok, msg, latency = self.checker(pool.health_url, self.check_timeout_s)
            prev, _ = self.mark_health(pool.name, ok)
            if prev and not ok:
                log.warning("Pool %s became unhealthy: %s (%s ms)", pool.name, msg, latency)
            elif prev is False and ok:
                log.info("Pool %s recovered", pool.name)
        return self._select()

    def _select(self) -> PoolTarget:
        with self.lock:
            current = self.active
            backup_up = self.last_status.get(self.backup.name, False)
            if current is self.primary:
                primary_down = self.fail_counts.get(self.primary.name, 0) >= self.fail_threshold
                chosen = self.backup if primary_down and backup_up else self.primary
            else:
                primary_back = self.ok_counts.get(self.primary.name, 0) >= self.rise_threshold
                # With both pools down a proxy keeps trying the primary.
                chosen = self.primary if primary_back or not backup_up else self.backup
            self.active = chosen
        if chosen is not current:
            log.warning("Failover: traffic should move from %s to %s", current.name, chosen.name)
        return chosen


def wait_for(
    predicate: Callable[[], bool],
    timeout_s: float,
    interval_s: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll `predicate` until it returns True or `timeout_s` runs out."""
    t0 = clock()
    while True:
        if predicate():
            return True
        if clock() - t0 >= timeout_s:
            return False
        sleep(interval_s)
