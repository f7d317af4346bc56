"""A fixed-size table from descriptor numbers to objects with compare-and-swap updates."""

from __future__ import annotations

import threading
from typing import Any, Optional

from pykqueue.debug import debug_settings


class FdMap:
    """Slots indexed ``0`` to ``length`` inclusive, each empty or holding one object.

    Updates compare by identity, so an entry can only be removed or replaced
    by a caller that knows which object is stored there.
    """

    def __init__(self, length: int) -> None:
        if length < 0:
            raise ValueError("length must not be negative")
        self.length = length
        self._slots: list[Optional[Any]] = [None] * (length + 1)
        self._lock = threading.Lock()

    def _check(self, idx: int) -> None:
        if idx < 0 or idx > self.length:
            raise IndexError(f"index {idx} outside map of length {self.length}")

    def _swap_if(self, idx: int, expected: Any, new: Any) -> bool:
        with self._lock:
            if self._slots[idx] is expected:
                self._slots[idx] = new
                return True
            return False

    def insert(self, idx: int, obj: Any) -> bool:
        """Store ``obj`` at ``idx`` if the slot is empty; return whether it was stored."""
        self._check(idx)
        if self._swap_if(idx, None, obj):
            debug_settings.log(f"idx={idx} - inserted {obj!r} into map")
            return True
        debug_settings.log(f"idx={idx} - tried to insert {obj!r} into a non-empty location")
        return False

    def remove(self, idx: int, obj: Any) -> bool:
        """Empty the slot at ``idx`` if it holds ``obj``; return whether it did."""
        self._check(idx)
        if self._swap_if(idx, obj, None):
            debug_settings.log(f"idx={idx} - removed {obj!r} from map")
            return True
        debug_settings.log(f"idx={idx} - removal failed, {obj!r} is not the current entry")
        return False

    def replace(self, idx: int, old: Any, new: Any) -> bool:
        """Swap ``old`` for ``new`` at ``idx`` if ``old`` is stored there."""
        self._check(idx)
        if self._swap_if(idx, old, new):
            debug_settings.log(f"idx={idx} - replaced item in map with {new!r}")
            return True
        debug_settings.log(f"idx={idx} - replace failed, {old!r} is not the current entry")
        return False

    def lookup(self, idx: int) -> Optional[Any]:
        """Return the object at ``idx``, or ``None`` if empty or out of range."""
        if idx < 0 or idx > self.length:
            return None
        with self._lock:
            return self._slots[idx]

    def delete(self, idx: int) -> Optional[Any]:
        """Empty the slot at ``idx`` and return what it held."""
        self._check(idx)
        with self._lock:
            previous = self._slots[idx]
            self._slots[idx] = None
        return previous