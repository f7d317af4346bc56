"""Queues, their descriptors, and the exchange of changes and events."""

from __future__ import annotations

import atexit
import errno
import itertools
import os
import threading
import weakref
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pykqueue.debug import DebugSettings, TracingMutex
from pykqueue.dump import kevent_dump
from pykqueue.events import EventFlag, KEvent
from pykqueue.fdmap import FdMap
from pykqueue.filters import Filter, FilterTable, Knote
from pykqueue.libkqueue_filter import LibkqueueFilter, LibraryOptions, library_options

try:
    import resource
except ImportError:  # not available on every platform
    resource = None

DEFAULT_FD_LIMIT = 65536
# The descriptor table is a real list, so an effectively unlimited hard
# limit is clamped to keep its size reasonable.
_MAX_FD_LIMIT = 1 << 20

_ADD = int(EventFlag.ADD)
_DELETE = int(EventFlag.DELETE)
_ENABLE = int(EventFlag.ENABLE)
_DISABLE = int(EventFlag.DISABLE)
_ONESHOT = int(EventFlag.ONESHOT)
_RECEIPT = int(EventFlag.RECEIPT)
_DISPATCH = int(EventFlag.DISPATCH)
_ERROR = int(EventFlag.ERROR)

_kevent_counter = itertools.count(1)
_counter_lock = threading.Lock()

FilterFactory = Callable[[], Iterable[Filter]]


def get_fd_limit() -> int:
    """Return the hard limit on open descriptors, or 65536 if it is unknown."""
    if resource is None:
        return DEFAULT_FD_LIMIT
    try:
        _, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    except (OSError, ValueError):
        return DEFAULT_FD_LIMIT
    if hard == resource.RLIM_INFINITY or hard < 0:
        return DEFAULT_FD_LIMIT
    return min(int(hard), _MAX_FD_LIMIT)


def _next_call_id() -> int:
    with _counter_lock:
        return next(_kevent_counter)


class KQueue:
    """One event queue: its filters, their knotes, and the knotes ready to report."""

    def __init__(
        self,
        kq_id: int,
        filters: Iterable[Filter] = (),
        library: Optional["Library"] = None,
        debug: Optional[DebugSettings] = None,
    ) -> None:
        self.id = kq_id
        self._library = library
        self._debug = debug if debug is not None else (
            library.options.debug if library is not None else library_options.debug
        )
        self._cond = threading.Condition(threading.RLock())
        self._ready: List[Knote] = []
        self.closed = False
        self.filters = FilterTable(self, filters)

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<KQueue {self.id} {state}>"

    def _copyin_one(self, change: KEvent) -> Tuple[Knote, bool]:
        """Apply one change; return its knote and whether it asks for a receipt."""
        flags = int(change.flags)
        if flags & _DISPATCH and flags & _ONESHOT:
            self._debug.log("Error: EV_DISPATCH and EV_ONESHOT are mutually exclusive")
            raise OSError(errno.EINVAL, "EV_DISPATCH and EV_ONESHOT are mutually exclusive")

        filt = self.filters.lookup(change.filter)
        self._debug.log(f"src={kevent_dump(change)}")

        kn = filt.lookup_knote(change.ident)
        if kn is None:
            if not flags & _ADD:
                self._debug.log(f"ident={change.ident} - no knote found")
                raise OSError(errno.ENOENT, f"no event registered for ident {change.ident}")
            kev = replace(change)
            kev.flags = flags & ~_ENABLE
            kn = Knote(kev=kev, kq=self)
            try:
                receipt = filt.create(kn)
            except OSError as exc:
                self._debug.log("kn_create failed")
                kn.deleted = True
                raise OSError(errno.EFAULT, "filter failed to create the event") from exc
            filt.insert_knote(kn)
            self._debug.log(f"kn={id(kn):#x} - created knote {kevent_dump(change)}")
            if flags & _DISABLE:
                kn.kev.flags = int(kn.kev.flags) | _DISABLE
                filt.disable(kn)
                return kn, False
            return kn, bool(receipt)

        self._debug.log(f"kn={id(kn):#x} - resolved ident={change.ident} to knote")
        receipt = False
        if flags & _DELETE:
            filt.delete_knote(kn)
        elif flags & _DISABLE:
            filt.disable_knote(kn)
        elif flags & _ENABLE:
            filt.enable_knote(kn)
        elif flags & _ADD or flags == 0 or flags & _RECEIPT:
            receipt = bool(filt.modify(kn, change))
            kn.kev.udata = change.udata
            current = int(kn.kev.flags) & ~_DISPATCH
            kn.kev.flags = current | (flags & _DISPATCH)
            self._debug.log(f"kn={id(kn):#x} - kn_modify done")
        return kn, receipt

    def _copyin(self, changelist: Iterable[KEvent], nevents: int) -> List[KEvent]:
        """Apply every change, collecting receipts and errors up to ``nevents``."""
        out: List[KEvent] = []
        for change in changelist:
            try:
                kn, receipt = self._copyin_one(change)
            except OSError as exc:
                self._debug.log(f"errno={exc.strerror}")
                if len(out) >= nevents:
                    raise
                entry = replace(change)
                entry.flags = int(entry.flags) | _ERROR
                entry.data = exc.errno
                out.append(entry)
                continue
            if receipt:
                if len(out) >= nevents:
                    raise OSError(errno.EFAULT, "no room in the event list for a receipt")
                entry = replace(kn.kev)
                entry.flags = int(entry.flags) | _RECEIPT
                out.append(entry)
            elif int(change.flags) & _RECEIPT:
                if len(out) >= nevents:
                    raise OSError(errno.EFAULT, "no room in the event list for a receipt")
                entry = replace(change)
                entry.flags = int(entry.flags) | _ERROR
                entry.data = 0
                out.append(entry)
        return out

    def _wait(self, timeout: Optional[float]) -> int:
        """Wait until a knote is ready or ``timeout`` seconds pass; return the ready count."""
        if timeout is not None:
            timeout = max(0.0, float(timeout))
        self._cond.wait_for(lambda: bool(self._ready) or self.closed, timeout)
        if self.closed:
            raise OSError(errno.EBADF, "queue was closed")
        return len(self._ready)

    def _copyout(self, space: int) -> List[KEvent]:
        """Turn ready knotes into events, at most ``space`` of them."""
        events: List[KEvent] = []
        while self._ready and len(events) < space:
            kn = self._ready[0]
            filt = self.filters.lookup(kn.kev.filter)
            produced = filt.copyout(kn)
            kn._remove_from_ready()
            events.extend(produced[: space - len(events)])
            flags = int(kn.kev.flags)
            if flags & _ONESHOT:
                filt.delete_knote(kn)
            elif flags & _DISPATCH:
                filt.disable_knote(kn)
        return events

    def kevent(
        self,
        changelist: Optional[Iterable[KEvent]] = (),
        nevents: int = 0,
        timeout: Optional[float] = None,
    ) -> List[KEvent]:
        """Apply ``changelist`` and return up to ``nevents`` receipts, errors and events.

        ``timeout`` is in seconds; ``None`` waits until an event arrives.
        Waiting only happens when room is left after the changes.
        """
        nevents = max(0, int(nevents))
        with self._cond:
            if self.closed:
                raise OSError(errno.EBADF, "queue is closed")
            call_id = _next_call_id() if self._debug.enabled else 0
            self._debug.log(f"--- START kevent {call_id} --- (nevents = {nevents})")
            out = self._copyin(changelist or (), nevents)
            if nevents - len(out) > 0:
                if self._wait(timeout) > 0:
                    out.extend(self._copyout(nevents - len(out)))
                else:
                    self._debug.log(f"({call_id}) kevent_wait timedout")
            if self._debug.enabled:
                for n, kev in enumerate(out):
                    self._debug.log(f"({call_id}) eventlist[{n}] = {kevent_dump(kev)}")
            self._debug.log(f"--- END kevent {call_id} ret {len(out)} ---")
            return out

    def mark_ready(self, knote: Knote) -> None:
        """Put an enabled knote on the ready list and wake any waiter."""
        with self._cond:
            if self.closed or knote.deleted or knote.disabled or knote.ready:
                return
            knote.ready_list = self._ready
            self._ready.append(knote)
            self._cond.notify_all()

    def _shutdown(self) -> None:
        with self._cond:
            if self.closed:
                return
            self._debug.log(f"kq={self.id} - freeing")
            self.closed = True
            self.filters.unregister_all()
            self._ready.clear()
            self._cond.notify_all()

    def close(self) -> None:
        """Release the queue and its descriptor."""
        if self._library is not None:
            self._library.close(self.id)
            return
        if self.closed:
            raise OSError(errno.EBADF, "queue is already closed")
        self._shutdown()

    def __enter__(self) -> "KQueue":
        return self

    def __exit__(self, *args) -> None:
        if not self.closed:
            self.close()


class Library:
    """Owns the descriptor table and every queue created through it."""

    def __init__(
        self,
        limit: Optional[int] = None,
        filters: Optional[FilterFactory] = None,
        options: Optional[LibraryOptions] = None,
    ) -> None:
        self.options = options if options is not None else library_options
        self._limit = limit
        self._filter_factory: FilterFactory = filters if filters is not None else self._default_filters
        self._mutex = TracingMutex("kq_mtx", self.options.debug)
        self._init_lock = threading.Lock()
        self._map: Optional[FdMap] = None
        self._queues: Dict[int, KQueue] = {}
        self._in_child = False
        self._fork_cleanup_active = False

    def _default_filters(self) -> List[Filter]:
        return [LibkqueueFilter(self.options)]

    @property
    def queues(self) -> Dict[int, KQueue]:
        """The open queues by descriptor."""
        return dict(self._queues)

    def _init(self) -> None:
        with self._init_lock:
            if self._map is not None:
                return
            env = os.environ.get("KQUEUE_DEBUG", "")
            if env and not env.startswith("0"):
                self.options.debug.enabled = True
            self._map = FdMap(self._limit if self._limit is not None else get_fd_limit())
            if hasattr(os, "register_at_fork"):
                ref = weakref.ref(self)

                def before() -> None:
                    lib = ref()
                    if lib is not None:
                        lib._pre_fork()

                def parent() -> None:
                    lib = ref()
                    if lib is not None:
                        lib._parent_fork()

                def child() -> None:
                    lib = ref()
                    if lib is not None:
                        lib._child_fork()

                os.register_at_fork(before=before, after_in_parent=parent, after_in_child=child)
            self.options.debug.log("library initialization complete")

    def _pre_fork(self) -> None:
        self._fork_cleanup_active = self.options.fork_cleanup
        if self._fork_cleanup_active:
            self._mutex.lock()

    def _parent_fork(self) -> None:
        if not self._fork_cleanup_active:
            return
        self.options.debug.log("resuming execution in parent")
        self._mutex.unlock()

    def _child_fork(self) -> None:
        self._in_child = True
        if not self._fork_cleanup_active:
            return
        self.options.debug.log("cleaning up forked resources")
        # Queue locks may be held by threads that do not exist here, so the
        # queues are dropped without touching them.
        for kq in self._queues.values():
            kq.closed = True
        self._queues.clear()
        if self._map is not None:
            self._map = FdMap(self._map.length)
        self._mutex.unlock()

    def _allocate_id(self) -> int:
        assert self._map is not None
        for kq_id in range(self._map.length + 1):
            if kq_id not in self._queues and self._map.lookup(kq_id) is None:
                return kq_id
        raise OSError(errno.EMFILE, "no free queue descriptors")

    def kqueue(self) -> int:
        """Create a queue and return its descriptor."""
        self._init()
        assert self._map is not None
        with self._mutex:
            kq_id = self._allocate_id()
            try:
                kq = KQueue(kq_id, self._filter_factory(), library=self, debug=self.options.debug)
            except Exception:
                self.options.debug.log(f"kq={kq_id} - init failed")
                raise
            self.options.debug.log(f"kq={kq_id} - alloced")
            self._free_by_id(kq_id)
            if not self._map.insert(kq_id, kq):
                self.options.debug.log(f"kq={kq_id} - map insertion failed, freeing")
                kq.filters.unregister_all()
                raise OSError(errno.EMFILE, f"descriptor {kq_id} is in use")
            self._queues[kq_id] = kq
        return kq_id

    def lookup(self, kqfd: int) -> Optional[KQueue]:
        """Return the queue for ``kqfd``, or ``None``."""
        if self._map is None:
            return None
        return self._map.lookup(kqfd)

    def _free(self, kq: KQueue) -> None:
        if self._queues.get(kq.id) is kq:
            del self._queues[kq.id]
        if self._map is not None and 0 <= kq.id <= self._map.length:
            self._map.remove(kq.id, kq)
        kq._shutdown()

    def _free_by_id(self, kqfd: int) -> bool:
        if self._map is None or self._map.lookup(kqfd) is None:
            return False
        kq = self._map.delete(kqfd)
        if kq is None:
            return False
        self._free(kq)
        return True

    def free_by_id(self, kqfd: int) -> bool:
        """Free the queue stored at ``kqfd``; return whether there was one."""
        with self._mutex:
            return self._free_by_id(kqfd)

    def kevent(
        self,
        kqfd: int,
        changelist: Optional[Iterable[KEvent]] = (),
        nevents: int = 0,
        timeout: Optional[float] = None,
    ) -> List[KEvent]:
        """Run :meth:`KQueue.kevent` on the queue with descriptor ``kqfd``."""
        thread_safe = self.options.thread_safe
        if thread_safe:
            self._mutex.lock()
        try:
            kq = self.lookup(kqfd)
            if kq is None:
                raise OSError(errno.ENOENT, f"no queue with descriptor {kqfd}")
            kq._cond.acquire()
        finally:
            if thread_safe:
                self._mutex.unlock()
        try:
            return kq.kevent(changelist, nevents, timeout)
        finally:
            kq._cond.release()

    def close(self, kqfd: int) -> None:
        """Close the queue with descriptor ``kqfd``."""
        with self._mutex:
            if not self._free_by_id(kqfd):
                raise OSError(errno.EBADF, f"bad queue descriptor {kqfd}")

    def free(self) -> None:
        """Release every queue; does nothing in a forked child."""
        if self._in_child:
            self.options.debug.log("not releasing library resources as we are a child")
            return
        self.options.debug.log("releasing library resources")
        with self._mutex:
            for kq in list(self._queues.values()):
                self._free(kq)


_default_library: Optional[Library] = None
_default_lock = threading.Lock()


def _default() -> Library:
    global _default_library
    with _default_lock:
        if _default_library is None:
            _default_library = Library()
            atexit.register(_default_library.free)
        return _default_library


def kqueue() -> int:
    """Create a queue in the shared library instance and return its descriptor."""
    return _default().kqueue()


def kevent(
    kqfd: int,
    changelist: Optional[Iterable[KEvent]] = (),
    nevents: int = 0,
    timeout: Optional[float] = None,
) -> List[KEvent]:
    """Apply changes and collect events on a queue of the shared library instance."""
    return _default().kevent(kqfd, changelist, nevents, timeout)


def close(kqfd: int) -> None:
    """Close a queue of the shared library instance."""
    _default().close(kqfd)