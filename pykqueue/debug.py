"""Debug output settings and a mutex that tracks its owner."""

from __future__ import annotations

import inspect
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

DebugFunc = Callable[[str], object]


def _write_stderr(message: str) -> None:
    sys.stderr.write(message)


class MutexState(Enum):
    """Whether a tracing mutex is held."""

    UNLOCKED = 0
    LOCKED = 1


@dataclass
class DebugSettings:
    """Controls whether debug messages are produced, their prefix and their sink."""

    enabled: bool = False
    ident: str = "KQ"
    func: DebugFunc = field(default=_write_stderr)

    def set_func(self, func: Optional[DebugFunc]) -> None:
        """Use ``func`` for output; ``None`` restores writing to standard error."""
        self.func = _write_stderr if func is None else func

    def set_ident(self, ident: str) -> None:
        """Set the prefix placed before every message."""
        self.ident = str(ident)

    def clear_ident(self) -> None:
        """Remove the message prefix."""
        self.ident = ""

    def log(self, message: str) -> None:
        """Emit ``message`` tagged with the prefix, thread id and calling function."""
        if not self.enabled:
            return
        frame = inspect.currentframe()
        caller = frame.f_back.f_code.co_name if frame and frame.f_back else "?"
        del frame
        self.func(f"{self.ident} [{threading.get_native_id()}]: {caller}(): {message}\n")


debug_settings = DebugSettings()


class TracingMutex:
    """A non-reentrant lock that records its state and owning thread."""

    def __init__(self, name: str = "mutex", settings: Optional[DebugSettings] = None) -> None:
        self.name = name
        self._settings = settings if settings is not None else debug_settings
        self._lock = threading.Lock()
        self.status = MutexState.UNLOCKED
        self.owner = -1

    def lock(self) -> None:
        """Block until the mutex is acquired."""
        self._settings.log(f"waiting for {self.name}")
        self._lock.acquire()
        self._settings.log(f"locked {self.name}")
        self.owner = threading.get_native_id()
        self.status = MutexState.LOCKED

    def trylock(self) -> bool:
        """Acquire the mutex if it is free; return whether it was acquired."""
        self._settings.log(f"waiting for {self.name}")
        if self._lock.acquire(blocking=False):
            self._settings.log(f"locked {self.name}")
            self.owner = threading.get_native_id()
            self.status = MutexState.LOCKED
            return True
        self._settings.log(f"locking {self.name} failed - busy")
        return False

    def unlock(self) -> None:
        """Release the mutex."""
        self.status = MutexState.UNLOCKED
        self.owner = -1
        self._lock.release()
        self._settings.log(f"unlocked {self.name}")

    def assert_state(self, state: MutexState) -> None:
        """Raise ``AssertionError`` unless the mutex is in ``state``."""
        if not isinstance(state, MutexState):
            raise ValueError(f"invalid mutex state: {state!r}")
        if self.status is not state:
            raise AssertionError(f"{self.name} is {self.status.name}, expected {state.name}")

    def assert_owned(self, state: MutexState) -> None:
        """Check the mutex from the calling thread's point of view.

        ``LOCKED`` requires that this thread holds it; ``UNLOCKED`` requires
        that this thread does not.
        """
        me = threading.get_native_id()
        if state is MutexState.UNLOCKED:
            ok = self.status is MutexState.UNLOCKED or self.owner != me
        elif state is MutexState.LOCKED:
            ok = self.status is MutexState.LOCKED and self.owner == me
        else:
            raise ValueError(f"invalid mutex state: {state!r}")
        if not ok:
            raise AssertionError(f"{self.name} ownership does not match {state.name}")

    def __enter__(self) -> "TracingMutex":
        self.lock()
        return self

    def __exit__(self, *args) -> None:
        self.unlock()