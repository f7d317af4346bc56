# pykqueue

A pure-Python, user-space core of a kqueue-style event notification
mechanism. It provides:

- `pykqueue.events`: the `KEvent` dataclass, the filter identifiers
  (`Filter`), the action and flag values (`EventFlag`), the filter-specific
  flag sets (`UserNote`, `VnodeNote`, `ProcNote`, `TimerNote`,
  `LibkqueueNote`) and `filter_name()`.
- `pykqueue.kqueue`: queues and their integer descriptors. `Library` owns a
  descriptor table and the queues made through it. `KQueue` is one queue.
  The module-level `kqueue()`, `kevent()` and `close()` work on a shared
  `Library` instance, and `get_fd_limit()` reports the size of its descriptor
  table.
- `pykqueue.filters`: the `Filter` base class, the `Knote` records a filter
  holds, and the per-queue `FilterTable`.
- `pykqueue.libkqueue_filter`: `LibkqueueFilter`, the library's own filter,
  which answers version queries and toggles the options in `LibraryOptions`.
- `pykqueue.fdmap`: `FdMap`, a fixed-size table from descriptor numbers to
  objects with compare-by-identity updates.
- `pykqueue.debug` and `pykqueue.dump`: debug output settings, a
  `TracingMutex` that records its owner, and one-line renderings of events.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Usage

```python
from pykqueue.events import KEvent, Filter, EventFlag, LibkqueueNote
from pykqueue.kqueue import kqueue, kevent, close

kq = kqueue()

# Ask for the version number; the answer comes back as a receipt.
query = KEvent(ident=0, filter=Filter.LIBKQUEUE, flags=EventFlag.ADD,
               fflags=LibkqueueNote.VERSION)
events = kevent(kq, [query], 1, 0)
print(hex(events[0].data))   # 0x2060100

close(kq)
```

`kevent(kqfd, changelist, nevents, timeout)` applies each change in order,
then, if fewer than `nevents` entries have been produced, waits up to
`timeout` seconds (`None` waits indefinitely) for ready events and returns
them. It returns a list of `KEvent`.

Changes that fail are reported as entries in the returned list carrying
`EventFlag.ERROR` with the error number in `data`, as long as there is room
for them. A change with `EventFlag.RECEIPT` that succeeds is reported the
same way with `data` equal to 0. When there is no room, the descriptor does
not name a live queue, or the queue is closed, an `OSError` is raised.

### The library filter

Changes on `Filter.LIBKQUEUE` are requests, chosen by `fflags`:

- `LibkqueueNote.VERSION` puts the version packed as major, minor and patch
  bytes (`0x02060100`) in `data`. `LibkqueueNote.VERSION_STR` puts
  `"2.6.1"` in `udata`. Both come back as receipts.
- `LibkqueueNote.THREAD_SAFE`, `FORK_CLEANUP` and `DEBUG` set the matching
  option to `data > 0`. They give no receipt unless the change carries
  `EventFlag.RECEIPT`. In that case the receipt's `data` holds the previous
  value.
- `LibkqueueNote.DEBUG_PREFIX` sets the debug message prefix from `data`.
  `LibkqueueNote.DEBUG_FUNC` sets the debug output function from `data`;
  `None` restores standard error.

### Queues as objects and custom filters

`Library(limit=None, filters=None, options=None)` takes a factory that returns
the filters for each new queue. By default that is only `LibkqueueFilter`.
A filter is a subclass of `pykqueue.filters.Filter` with a `filter_id` that
overrides any of the hooks `create`, `modify`, `delete`, `enable`,
`disable` and `copyout`. A hook reports failure by raising `OSError`.
`KQueue.mark_ready(knote)` puts a knote on the ready list and wakes any
thread waiting in `kevent`:

```python
from pykqueue.events import Filter as FilterId, KEvent, EventFlag
from pykqueue.filters import Filter
from pykqueue.kqueue import Library
from pykqueue.libkqueue_filter import LibkqueueFilter

class UserFilter(Filter):
    filter_id = FilterId.USER

lib = Library(filters=lambda: [LibkqueueFilter(), UserFilter()])
fd = lib.kqueue()
lib.kevent(fd, [KEvent(ident=1, filter=FilterId.USER, flags=EventFlag.ADD)])

kq = lib.lookup(fd)
kq.mark_ready(kq.filters.lookup(FilterId.USER).lookup_knote(1))
print(lib.kevent(fd, [], 4, 0))   # one event for ident 1
lib.close(fd)
```

After a knote is copied out, the queue deletes it if it has
`EventFlag.ONESHOT` and disables it if it has `EventFlag.DISPATCH`.
A `KQueue` is a context manager and is closed on exit.

### Debugging

Debug output is off by default. It is turned on by a `LibkqueueNote.DEBUG`
request. It is also turned on when a `Library` is first used with the
environment variable `KQUEUE_DEBUG` set to a value that does not start
with `0`. `pykqueue.debug.DebugSettings` holds the switch, the prefix
(default `KQ`) and the output function. `pykqueue.dump.kevent_dump()`
renders a `KEvent` on one line.

## What this package does not do

Only the library filter is registered by default. There are no built-in
filters that watch sockets or files for reading and writing, timers,
signals, file changes, processes or user-triggered events. A change naming
one of those filters is reported with `ENOSYS`. Such sources have to be
supplied as `Filter` subclasses that call `KQueue.mark_ready`.

Queue descriptors are numbers in the package's own table, not operating
system file descriptors. They cannot be polled or selected on.