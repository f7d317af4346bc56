import dataclasses

import pytest

from pykqueue.events import (
    EVFILT_SYSCOUNT,
    EventFlag,
    Filter,
    KEvent,
    UserNote,
    filter_name,
)


@pytest.mark.parametrize(
    "filt, name",
    [
        (Filter.READ, "EVFILT_READ"),
        (Filter.WRITE, "EVFILT_WRITE"),
        (Filter.VNODE, "EVFILT_VNODE"),
        (Filter.PROC, "EVFILT_PROC"),
        (Filter.SIGNAL, "EVFILT_SIGNAL"),
        (Filter.TIMER, "EVFILT_TIMER"),
        (Filter.USER, "EVFILT_USER"),
    ],
)
def test_filter_name_known(filt, name):
    assert filter_name(filt) == name


@pytest.mark.parametrize("filt", [0, 1, -13, -100])
def test_filter_name_invalid(filt):
    assert filter_name(filt) == "EVFILT_INVALID"


def test_filter_name_libkqueue_has_no_entry():
    assert filter_name(Filter.LIBKQUEUE) is None


def test_filter_name_accepts_plain_ints():
    assert filter_name(-1) == filter_name(Filter.READ)
    assert filter_name(-11) == "EVFILT_USER"


def test_every_filter_has_a_table_slot():
    names = {int(f): filter_name(f) for f in Filter}
    assert len(names) == EVFILT_SYSCOUNT
    assert names == {
        -1: "EVFILT_READ",
        -2: "EVFILT_WRITE",
        -3: "EVFILT_AIO",
        -4: "EVFILT_VNODE",
        -5: "EVFILT_PROC",
        -6: "EVFILT_SIGNAL",
        -7: "EVFILT_TIMER",
        -8: "EVFILT_NETDEV",
        -9: "EVFILT_FS",
        -10: "EVFILT_LIO",
        -11: "EVFILT_USER",
        -12: None,
    }


def test_kevent_flags_combine():
    kev = KEvent(1, Filter.READ, EventFlag.ADD | EventFlag.ONESHOT)
    assert kev.flags & EventFlag.ADD
    assert not kev.flags & EventFlag.DELETE
    kev.flags |= EventFlag.EOF
    assert kev.flags & EventFlag.SYSFLAGS == EventFlag.EOF


def test_kevent_user_fflags_field():
    kev = KEvent(2, Filter.USER, EventFlag.ADD, UserNote.TRIGGER | 0x12)
    assert kev.fflags & UserNote.FFLAGSMASK == 0x12
    assert kev.fflags & UserNote.FFCTRLMASK == 0


def test_kevent_defaults_and_fields():
    kev = KEvent(5, Filter.USER, EventFlag.ADD)
    assert (kev.ident, kev.filter, kev.flags) == (5, Filter.USER, EventFlag.ADD)
    assert kev.fflags == 0
    assert kev.data == 0
    assert kev.udata is None


def test_kevent_copy_is_independent():
    kev = KEvent(3, Filter.TIMER, EventFlag.ADD, 0, 1000, "cookie")
    other = dataclasses.replace(kev)
    assert other == kev
    other.flags |= EventFlag.RECEIPT
    assert kev.flags == EventFlag.ADD
    assert other != kev