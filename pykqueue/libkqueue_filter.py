"""The library's own filter: version queries and run-time controls."""

from __future__ import annotations

import errno
from dataclasses import dataclass, field, replace
from typing import List, Optional

from pykqueue.debug import DebugSettings, debug_settings
from pykqueue.events import EventFlag, Filter as FilterId, KEvent, LibkqueueNote
from pykqueue.filters import Filter, Knote

VERSION = (2, 6, 1)
RELEASE: Optional[int] = None


@dataclass
class LibraryOptions:
    """Process-wide switches that the library filter can read and change."""

    thread_safe: bool = True
    fork_cleanup: bool = True
    debug: DebugSettings = field(default_factory=lambda: debug_settings)


library_options = LibraryOptions()


def version_number() -> int:
    """Return the version packed as major, minor, patch and release bytes."""
    major, minor, patch = VERSION
    number = (major << 24) | (minor << 16) | (patch << 8)
    if RELEASE is not None:
        number |= RELEASE
    return number


def version_string() -> str:
    """Return the version as text."""
    text = ".".join(str(part) for part in VERSION)
    if RELEASE is not None:
        text += f"-{RELEASE}"
    return text


class LibkqueueFilter(Filter):
    """Answers version queries and toggles library options.

    Queries set ``EV_RECEIPT`` on the knote so the caller copies it into
    the event list; controls return the previous value in ``data``.
    """

    filter_id = FilterId.LIBKQUEUE

    def __init__(self, options: Optional[LibraryOptions] = None) -> None:
        super().__init__()
        self.options = options if options is not None else library_options

    @staticmethod
    def _swap(kev: KEvent, old: bool) -> bool:
        new = kev.data > 0
        kev.data = int(old)
        return new

    def create(self, knote: Knote) -> bool:
        """Run the query or control named by the knote's filter flags."""
        kev = knote.kev
        note = kev.fflags
        options = self.options
        if note == LibkqueueNote.VERSION_STR:
            kev.udata = version_string()
            kev.flags |= EventFlag.RECEIPT
        elif note == LibkqueueNote.VERSION:
            kev.data = version_number()
            kev.flags |= EventFlag.RECEIPT
        elif note == LibkqueueNote.THREAD_SAFE:
            options.thread_safe = self._swap(kev, options.thread_safe)
        elif note == LibkqueueNote.FORK_CLEANUP:
            options.fork_cleanup = self._swap(kev, options.fork_cleanup)
        elif note == LibkqueueNote.DEBUG:
            options.debug.enabled = self._swap(kev, options.debug.enabled)
        elif note == LibkqueueNote.DEBUG_PREFIX:
            options.debug.set_ident(kev.data)
        elif note == LibkqueueNote.DEBUG_FUNC:
            options.debug.set_func(kev.data)
        else:
            raise OSError(errno.EINVAL, f"unknown library filter request {note}")
        return bool(kev.flags & EventFlag.RECEIPT)

    def modify(self, knote: Knote, kev: KEvent) -> bool:
        """Replace the knote's event with ``kev`` and run it again."""
        knote.kev = replace(kev)
        return self.create(knote)

    def copyout(self, knote: Knote) -> List[KEvent]:
        """The library filter never becomes ready, so there is nothing to copy out."""
        raise OSError(errno.EINVAL, "the library filter produces no events")

    def delete(self, knote: Knote) -> None:
        """Nothing is held per knote; only make sure it no longer reports."""
        knote._remove_from_ready()

    def enable(self, knote: Knote) -> None:
        """Clear the knote's disabled flag; the filter has no other state."""
        knote._set_disabled(False)

    def disable(self, knote: Knote) -> None:
        """Withdraw any pending report; the filter has no other state."""
        knote._remove_from_ready()