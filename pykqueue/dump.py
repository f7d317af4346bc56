"""Human-readable renderings of events for debug output."""

from __future__ import annotations

from typing import Any, Iterable, Optional, Tuple

from pykqueue.events import (
    EventFlag,
    Filter,
    KEvent,
    LibkqueueNote,
    ProcNote,
    TimerNote,
    UserNote,
    VnodeNote,
    filter_name,
)

_Names = Tuple[Tuple[int, str], ...]

_FLAG_NAMES: _Names = (
    (EventFlag.ADD, "EV_ADD"),
    (EventFlag.ENABLE, "EV_ENABLE"),
    (EventFlag.DISABLE, "EV_DISABLE"),
    (EventFlag.DELETE, "EV_DELETE"),
    (EventFlag.ONESHOT, "EV_ONESHOT"),
    (EventFlag.CLEAR, "EV_CLEAR"),
    (EventFlag.EOF, "EV_EOF"),
    (EventFlag.ERROR, "EV_ERROR"),
    (EventFlag.DISPATCH, "EV_DISPATCH"),
    (EventFlag.RECEIPT, "EV_RECEIPT"),
)

# Each entry is tested with a bitwise AND, so values that are not single
# bits (the library filter's query numbers, NOTE_FFCOPY) can match several.
_FFLAG_NAMES: dict[int, _Names] = {
    Filter.VNODE: (
        (VnodeNote.DELETE, "NOTE_DELETE"),
        (VnodeNote.WRITE, "NOTE_WRITE"),
        (VnodeNote.EXTEND, "NOTE_EXTEND"),
        (VnodeNote.ATTRIB, "NOTE_ATTRIB"),
        (VnodeNote.LINK, "NOTE_LINK"),
        (VnodeNote.RENAME, "NOTE_RENAME"),
    ),
    Filter.USER: (
        (UserNote.FFNOP, "NOTE_FFNOP"),
        (UserNote.FFAND, "NOTE_FFAND"),
        (UserNote.FFOR, "NOTE_FFOR"),
        (UserNote.FFCOPY, "NOTE_FFCOPY"),
        (UserNote.TRIGGER, "NOTE_TRIGGER"),
    ),
    Filter.READ: (),
    Filter.WRITE: (),
    Filter.PROC: (
        (ProcNote.EXIT, "NOTE_EXIT"),
        (ProcNote.FORK, "NOTE_FORK"),
        (ProcNote.EXEC, "NOTE_EXEC"),
    ),
    Filter.TIMER: (
        (TimerNote.SECONDS, "NOTE_SECONDS"),
        (TimerNote.USECONDS, "NOTE_USECONDS"),
        (TimerNote.NSECONDS, "NOTE_NSECONDS"),
        (TimerNote.ABSOLUTE, "NOTE_ABSOLUTE"),
    ),
    Filter.LIBKQUEUE: (
        (LibkqueueNote.VERSION, "NOTE_VERSION"),
        (LibkqueueNote.VERSION_STR, "NOTE_VERSION_STR"),
        (LibkqueueNote.THREAD_SAFE, "NOTE_THREAD_SAFE"),
        (LibkqueueNote.FORK_CLEANUP, "NOTE_FORK_CLEANUP"),
        (LibkqueueNote.DEBUG, "NOTE_DEBUG"),
        (LibkqueueNote.DEBUG_PREFIX, "NOTE_DEBUG_PREFIX"),
        (LibkqueueNote.DEBUG_FUNC, "NOTE_DEBUG_FUNC"),
    ),
}


def _int32(value: int) -> int:
    return ((int(value) + 2**31) % 2**32) - 2**31


def _describe(label: str, value: int, names: Iterable[Tuple[int, str]]) -> str:
    present = [name for bit, name in names if value & bit]
    return f"{label}=0x{value:04x} ({' '.join(present)})"


def filter_dump(kev: KEvent) -> str:
    """Render the filter of ``kev`` as its number and name."""
    name: Optional[str] = filter_name(kev.filter)
    return f"{int(kev.filter)} ({name if name is not None else '(null)'})"


def flags_dump(flags: int) -> str:
    """Render an event's flags as hex followed by the names of the set flags."""
    return _describe("flags", int(flags) & 0xFFFF, _FLAG_NAMES)


def fflags_dump(filt: int, fflags: int) -> str:
    """Render filter-specific flags using the names that apply to ``filt``."""
    return _describe("fflags", int(fflags) & 0xFFFFFFFF, _FFLAG_NAMES.get(int(filt), ()))


def _format_data(data: Any) -> str:
    if isinstance(data, int):
        return str(_int32(data))
    return repr(data)


def _format_udata(udata: Any) -> str:
    return "(nil)" if udata is None else repr(udata)


def kevent_dump(kev: KEvent) -> str:
    """Render a whole event on one line."""
    return (
        f"{{ ident={_int32(kev.ident)}, filter={filter_dump(kev)}, "
        f"{flags_dump(kev.flags)}, {fflags_dump(kev.filter, kev.fflags)}, "
        f"data={_format_data(kev.data)}, udata={_format_udata(kev.udata)} }}"
    )