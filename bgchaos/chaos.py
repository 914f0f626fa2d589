from __future__ import annotations

import logging
from enum import Enum
from threading import Lock

log = logging.getLogger(__name__)


class ChaosMode(str, Enum):
    NONE = "none"
    ERROR = "error"
    TIMEOUT = "timeout"


# Modes an operator may switch on. NONE is reached only through clear_mode().
SETTABLE_MODES = (ChaosMode.ERROR, ChaosMode.TIMEOUT)


class InvalidModeError(ValueError):
    def __init__(self, mode: object):
        self.mode = mode
        super().__init__('Invalid mode. Use "error" or "timeout"')


def parse_mode(mode: ChaosMode | str | None) -> ChaosMode:
    """Return the settable ChaosMode for `mode` or raise InvalidModeError."""
    if isinstance(mode, ChaosMode):
        candidate = mode
    elif isinstance(mode, str):
        try:
            candidate = ChaosMode(mode)
        except ValueError:
            raise InvalidModeError(mode) from None
    else:
        raise InvalidModeError(mode)
    if candidate not in SETTABLE_MODES:
        raise InvalidModeError(mode)
    return candidate


class ChaosState:
    """The single active chaos mode of this process.

    All access goes through one lock so a reader always sees the value from
    just before or just after a concurrent write. Writers are serialized in
    arrival order; the last one wins.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._mode = ChaosMode.NONE

    def set_mode(self, mode: ChaosMode | str | None) -> ChaosMode:
        new = parse_mode(mode)
        with self._lock:
            prev = self._mode
            self._mode = new
        log.warning("Chaos mode activated: %s (was %s)", new.value, prev.value)
        return new

    def clear_mode(self) -> ChaosMode:
        with self._lock:
            prev = self._mode
            self._mode = ChaosMode.NONE
        if prev is not ChaosMode.NONE:
            log.info("Chaos mode deactivated (was %s)", prev.value)
        return prev

    def current_mode(self) -> ChaosMode:
        with self._lock:
            return self._mode
