"""Filters, the knotes they hold, and the per-queue table of filters."""

from __future__ import annotations

import contextlib
import errno
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Iterator, List, Optional

from pykqueue.debug import debug_settings
from pykqueue.events import EVFILT_SYSCOUNT, EventFlag, KEvent, filter_name


@dataclass(eq=False)
class Knote:
    """A registered interest: the event it was created from plus bookkeeping."""

    kev: KEvent
    kq: Any = None
    deleted: bool = False
    refcount: int = 1
    ready_list: Optional[list] = field(default=None, repr=False)

    @property
    def disabled(self) -> bool:
        """Whether the knote is disabled."""
        return bool(self.kev.flags & EventFlag.DISABLE)

    @property
    def enabled(self) -> bool:
        """Whether the knote is enabled."""
        return not self.disabled

    @property
    def ready(self) -> bool:
        """Whether the knote sits on its queue's ready list."""
        return self.ready_list is not None

    def _set_disabled(self, disabled: bool) -> None:
        if disabled:
            self.kev.flags |= EventFlag.DISABLE
        else:
            self.kev.flags &= ~EventFlag.DISABLE

    def _remove_from_ready(self) -> None:
        if self.ready_list is None:
            return
        for position, entry in enumerate(self.ready_list):
            if entry is self:
                del self.ready_list[position]
                break
        self.ready_list = None

    def _release(self) -> bool:
        """Drop one reference; return whether the knote is now freed."""
        if self.refcount <= 0:
            raise AssertionError("knote released more times than it was referenced")
        self.refcount -= 1
        if self.refcount:
            debug_settings.log(f"kn={id(self):#x} rc={self.refcount} - decrementing refcount")
            return False
        if self.deleted:
            debug_settings.log(f"kn={id(self):#x} - freeing")
            return True
        debug_settings.log(f"kn={id(self):#x} - attempted to free knote without marking it as deleted")
        return False


class Filter:
    """Base for event filters.

    The hook methods (``create``, ``modify``, ``delete``, ``enable``,
    ``disable``, ``copyout``) are what a concrete filter overrides; the
    ``*_knote`` methods maintain the filter's index around those hooks.
    Hooks signal failure by raising ``OSError``.
    """

    filter_id: int = 0

    def __init__(self, filter_id: Optional[int] = None) -> None:
        self.id = int(self.filter_id if filter_id is None else filter_id)
        self.kq: Any = None
        self.index: dict[int, Knote] = {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id} {filter_name(self.id)}>"

    def init(self) -> None:
        """Per-filter set-up, run when the filter is registered: start with an empty index."""
        self.index = {}

    def destroy(self) -> None:
        """Per-filter tear-down, run when the filter is unregistered: drop pending reports."""
        for knote in self.index.values():
            knote._remove_from_ready()

    def create(self, knote: Knote) -> bool:
        """Start watching for ``knote``; return whether a receipt should be produced."""
        return False

    def modify(self, knote: Knote, kev: KEvent) -> bool:
        """Apply a changed registration; return whether a receipt should be produced."""
        knote.kev.fflags = kev.fflags
        knote.kev.data = kev.data
        return False

    def delete(self, knote: Knote) -> None:
        """Stop watching for ``knote``: it no longer reports."""
        knote._remove_from_ready()

    def enable(self, knote: Knote) -> None:
        """Resume reporting for ``knote``."""
        knote._set_disabled(False)

    def disable(self, knote: Knote) -> None:
        """Suspend reporting for ``knote``: withdraw any pending report."""
        knote._remove_from_ready()

    def copyout(self, knote: Knote) -> List[KEvent]:
        """Return the events a ready ``knote`` produces."""
        return [replace(knote.kev)]

    def insert_knote(self, knote: Knote) -> None:
        """Index ``knote`` by its identifier; an existing entry is kept."""
        self.index.setdefault(knote.kev.ident, knote)

    def lookup_knote(self, ident: int) -> Optional[Knote]:
        """Return the knote registered for ``ident``, if any."""
        return self.index.get(ident)

    def delete_knote(self, knote: Knote) -> None:
        """Remove ``knote`` from the filter and release it."""
        debug_settings.log(f"kn={id(knote):#x} - calling kn_delete")
        if knote.deleted:
            debug_settings.log(f"kn={id(knote):#x} - double deletion detected")
            raise OSError(errno.ENOENT, "knote already deleted")
        ident = knote.kev.ident
        if self.index.get(ident) is knote:
            del self.index[ident]
        else:
            debug_settings.log(f"kn={id(knote):#x} - conflicting entry in filter tree")
        knote._remove_from_ready()
        try:
            self.delete(knote)
        finally:
            knote.deleted = True
            knote._release()

    def disable_knote(self, knote: Knote) -> None:
        """Disable ``knote`` unless it is already disabled."""
        if knote.disabled:
            return
        debug_settings.log(f"kn={id(knote):#x} - calling kn_disable")
        self.disable(knote)
        knote._remove_from_ready()
        knote._set_disabled(True)

    def enable_knote(self, knote: Knote) -> None:
        """Enable ``knote`` unless it is already enabled."""
        if knote.enabled:
            return
        debug_settings.log(f"kn={id(knote):#x} - calling kn_enable")
        self.enable(knote)
        knote._set_disabled(False)

    def delete_all_knotes(self) -> None:
        """Delete every knote, in identifier order, ignoring individual failures."""
        for ident in sorted(self.index):
            knote = self.index.get(ident)
            if knote is None:
                continue
            with contextlib.suppress(OSError):
                self.delete_knote(knote)

    def mark_all_disabled(self) -> None:
        """Flag every knote as disabled without calling the filter's hook."""
        for knote in self.index.values():
            debug_settings.log(f"kn={id(knote):#x} - marking disabled")
            knote._set_disabled(True)


class FilterTable:
    """The filters registered for one queue, one slot per filter identifier."""

    def __init__(self, kq: Any = None, filters: Iterable[Filter] = ()) -> None:
        self.kq = kq
        self._slots: List[Optional[Filter]] = [None] * EVFILT_SYSCOUNT
        try:
            for filt in filters:
                self.register(filt)
        except Exception:
            self.unregister_all()
            raise
        debug_settings.log("complete")

    def register(self, filt: Filter) -> None:
        """Attach ``filt`` to this table and run its set-up.

        A filter with identifier 0 is not implemented and is skipped.
        """
        if filt.id == 0:
            return
        slot = -filt.id - 1
        if not 0 <= slot < EVFILT_SYSCOUNT:
            raise ValueError(f"filter id {filt.id} out of range")
        filt.kq = self.kq
        filt.index = {}
        try:
            filt.init()
        except Exception:
            debug_settings.log("filter failed to initialize")
            raise
        self._slots[slot] = filt

    def lookup(self, filter_id: int) -> Filter:
        """Return the filter for ``filter_id``.

        Raises ``OSError`` with ``EINVAL`` for an invalid identifier and
        ``ENOSYS`` for one with no registered filter.
        """
        slot = ~int(filter_id)
        if slot < 0 or slot >= EVFILT_SYSCOUNT:
            debug_settings.log(f"filt={filter_id} inv_filt={slot} - invalid id")
            raise OSError(errno.EINVAL, f"invalid filter id {filter_id}")
        filt = self._slots[slot]
        if filt is None:
            debug_settings.log(f"filt={filter_id} - filt_name={filter_name(filter_id)} not implemented")
            raise OSError(errno.ENOSYS, f"filter {filter_id} not implemented")
        return filt

    def unregister_all(self) -> None:
        """Tear down every filter, deleting its knotes, and empty the table."""
        for filt in list(self):
            filt.destroy()
            filt.delete_all_knotes()
        self._slots = [None] * EVFILT_SYSCOUNT

    def __iter__(self) -> Iterator[Filter]:
        return (filt for filt in self._slots if filt is not None)