import errno

import pytest

from pykqueue.debug import DebugSettings
from pykqueue.events import EventFlag, Filter as FilterId, KEvent, LibkqueueNote
from pykqueue.filters import FilterTable, Knote
from pykqueue.libkqueue_filter import (
    LibkqueueFilter,
    LibraryOptions,
    version_number,
    version_string,
)


@pytest.fixture
def options():
    return LibraryOptions(debug=DebugSettings())


@pytest.fixture
def filt(options):
    return LibkqueueFilter(options)


def _knote(note, data=0):
    return Knote(KEvent(0, FilterId.LIBKQUEUE, EventFlag.ADD, note, data))


def test_version_query(filt):
    kn = _knote(LibkqueueNote.VERSION)
    assert filt.create(kn) is True
    assert kn.kev.data == version_number()
    assert kn.kev.data > 0
    assert kn.kev.flags & EventFlag.RECEIPT


def test_version_number_layout():
    assert version_number() == 0x02060100


def test_version_str_query(filt):
    kn = _knote(LibkqueueNote.VERSION_STR)
    assert filt.create(kn) is True
    assert kn.kev.udata == version_string()
    assert len(kn.kev.udata) > 0


def test_version_string_matches_number():
    number = version_number()
    parts = [number >> 24, (number >> 16) & 0xFF, (number >> 8) & 0xFF]
    assert version_string().startswith(".".join(str(p) for p in parts))


def test_thread_safe_toggle(filt, options):
    kn = _knote(LibkqueueNote.THREAD_SAFE, 0)
    assert filt.create(kn) is False
    assert options.thread_safe is False
    assert kn.kev.data == 1
    kn = _knote(LibkqueueNote.THREAD_SAFE, 1)
    filt.create(kn)
    assert options.thread_safe is True
    assert kn.kev.data == 0


def test_fork_cleanup_toggle(filt, options):
    kn = _knote(LibkqueueNote.FORK_CLEANUP, 0)
    filt.create(kn)
    assert options.fork_cleanup is False
    assert kn.kev.data == 1


def test_debug_toggle(filt, options):
    kn = _knote(LibkqueueNote.DEBUG, 1)
    filt.create(kn)
    assert options.debug.enabled is True
    assert kn.kev.data == 0


def test_debug_prefix(filt, options):
    filt.create(_knote(LibkqueueNote.DEBUG_PREFIX, "TEST"))
    assert options.debug.ident == "TEST"


def test_debug_func(filt, options):
    captured = []
    filt.create(_knote(LibkqueueNote.DEBUG_FUNC, captured.append))
    filt.create(_knote(LibkqueueNote.DEBUG, 1))
    options.debug.log("hello")
    assert len(captured) == 1
    assert captured[0].endswith("hello\n")


def test_unknown_request_raises(filt):
    with pytest.raises(OSError) as info:
        filt.create(_knote(0x99))
    assert info.value.errno == errno.EINVAL


def test_modify_replaces_event(filt):
    kn = _knote(LibkqueueNote.VERSION)
    filt.create(kn)
    new = KEvent(0, FilterId.LIBKQUEUE, EventFlag.ADD, LibkqueueNote.VERSION_STR)
    assert filt.modify(kn, new) is True
    assert kn.kev.udata == version_string()
    assert new.udata is None


def test_copyout_raises(filt):
    with pytest.raises(OSError):
        filt.copyout(_knote(LibkqueueNote.VERSION))


def test_delete_enable_disable_leave_knote_alone(filt):
    kn = _knote(LibkqueueNote.VERSION, 5)
    before = KEvent(**vars(kn.kev))
    filt.delete(kn)
    filt.enable(kn)
    filt.disable(kn)
    assert kn.kev == before


def test_registers_in_libkqueue_slot(filt):
    table = FilterTable(None, [filt])
    assert table.lookup(FilterId.LIBKQUEUE) is filt
    assert filt.id == FilterId.LIBKQUEUE