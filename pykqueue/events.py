"""Event structure, filter identifiers and flag values."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Any, Optional

EVFILT_SYSCOUNT = 12


class Filter(IntEnum):
    """Filter identifiers; each is a negative number."""

    READ = -1
    WRITE = -2
    AIO = -3
    VNODE = -4
    PROC = -5
    SIGNAL = -6
    TIMER = -7
    NETDEV = -8
    FS = -9
    LIO = -10
    USER = -11
    LIBKQUEUE = -12


class EventFlag(IntFlag):
    """Actions, flags and returned values carried in ``KEvent.flags``."""

    ADD = 0x0001
    DELETE = 0x0002
    ENABLE = 0x0004
    DISABLE = 0x0008
    ONESHOT = 0x0010
    CLEAR = 0x0020
    RECEIPT = 0x0040
    DISPATCH = 0x0080
    SYSFLAGS = 0xF000
    FLAG1 = 0x2000
    EOF = 0x8000
    ERROR = 0x4000


class UserNote(IntFlag):
    """Filter flags for the user filter.

    On input the top two bits select how the low twenty-four bits are
    applied to the stored value; on output they are always ``FFNOP``.
    """

    FFNOP = 0x00000000
    FFAND = 0x40000000
    FFOR = 0x80000000
    FFCOPY = 0xC0000000
    FFCTRLMASK = 0xC0000000
    FFLAGSMASK = 0x00FFFFFF
    TRIGGER = 0x01000000


class VnodeNote(IntFlag):
    """Filter flags for the vnode filter."""

    DELETE = 0x0001
    WRITE = 0x0002
    EXTEND = 0x0004
    ATTRIB = 0x0008
    LINK = 0x0010
    RENAME = 0x0020


class ProcNote(IntFlag):
    """Filter flags for the process filter."""

    EXIT = 0x80000000
    FORK = 0x40000000
    EXEC = 0x20000000
    PCTRLMASK = 0xF0000000
    PDATAMASK = 0x000FFFFF
    TRACK = 0x00000001
    TRACKERR = 0x00000002
    CHILD = 0x00000004


class TimerNote(IntFlag):
    """Filter flags for the timer filter."""

    SECONDS = 0x0001
    USECONDS = 0x0002
    NSECONDS = 0x0004
    ABSOLUTE = 0x0008


class LibkqueueNote(IntEnum):
    """Queries and controls understood by the library's own filter."""

    VERSION = 0x0001
    VERSION_STR = 0x0002
    THREAD_SAFE = 0x0003
    FORK_CLEANUP = 0x0004
    DEBUG = 0x0005
    DEBUG_PREFIX = 0x0006
    DEBUG_FUNC = 0x0007


# Network device filter flags.
NOTE_LINKUP = 0x0001
NOTE_LINKDOWN = 0x0002
NOTE_LINKINV = 0x0004

# Filesystem query flags used by the filesystem filter.
VQ_NOTRESP = 0x0001
VQ_NEEDAUTH = 0x0002
VQ_LOWDISK = 0x0004
VQ_MOUNT = 0x0008
VQ_UNMOUNT = 0x0010
VQ_DEAD = 0x0020
VQ_ASSIST = 0x0040
VQ_NOTRESPLOCK = 0x0080


@dataclass
class KEvent:
    """An event registration (in a change list) or notification (in an event list)."""

    ident: int
    filter: int
    flags: int = 0
    fflags: int = 0
    data: Any = 0
    udata: Any = None


_FILTER_NAMES = {
    Filter.READ: "EVFILT_READ",
    Filter.WRITE: "EVFILT_WRITE",
    Filter.AIO: "EVFILT_AIO",
    Filter.VNODE: "EVFILT_VNODE",
    Filter.PROC: "EVFILT_PROC",
    Filter.SIGNAL: "EVFILT_SIGNAL",
    Filter.TIMER: "EVFILT_TIMER",
    Filter.NETDEV: "EVFILT_NETDEV",
    Filter.FS: "EVFILT_FS",
    Filter.LIO: "EVFILT_LIO",
    Filter.USER: "EVFILT_USER",
}


def filter_name(filt: int) -> Optional[str]:
    """Return the symbolic name of a filter identifier.

    Identifiers outside the known range give ``"EVFILT_INVALID"``; the
    library's own filter has no entry in the name table and gives ``None``.
    """
    index = ~int(filt)
    if index < 0 or index >= EVFILT_SYSCOUNT:
        return "EVFILT_INVALID"
    return _FILTER_NAMES.get(Filter(filt))