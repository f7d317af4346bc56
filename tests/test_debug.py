import threading

import pytest

from pykqueue.debug import DebugSettings, MutexState, TracingMutex


def _raised(check, state):
    """Run a mutex state check and report the exception type it raised, if any."""
    try:
        check(state)
    except Exception as exc:  # the check under test signals failure by raising
        return type(exc)
    return None


def test_default_ident():
    assert DebugSettings().ident == "KQ"


def test_log_disabled_emits_nothing():
    lines = []
    settings = DebugSettings(func=lines.append)
    settings.log("hello")
    assert lines == []


def test_log_enabled_format():
    lines = []
    settings = DebugSettings(enabled=True, func=lines.append)
    settings.log("hello")
    assert len(lines) == 1
    prefix = f"KQ [{threading.get_native_id()}]: test_log_enabled_format(): "
    assert lines[0] == prefix + "hello\n"


def test_set_ident_and_clear():
    lines = []
    settings = DebugSettings(enabled=True, func=lines.append)
    settings.set_ident("custom")
    assert settings.ident == "custom"
    settings.log("a")
    assert lines[-1].startswith("custom [")
    settings.clear_ident()
    assert settings.ident == ""
    settings.log("b")
    assert lines[-1].startswith(" [")


def test_default_func_writes_stderr(capsys):
    settings = DebugSettings(enabled=True)
    settings.log("to stderr")
    captured = capsys.readouterr()
    assert captured.err.endswith("to stderr\n")
    assert captured.out == ""


def test_set_func_none_restores_stderr(capsys):
    lines = []
    settings = DebugSettings(enabled=True)
    settings.set_func(lines.append)
    settings.log("one")
    settings.set_func(None)
    settings.log("two")
    assert len(lines) == 1
    assert capsys.readouterr().err.endswith("two\n")


def test_lock_records_owner():
    mutex = TracingMutex("m", DebugSettings())
    mutex.lock()
    assert mutex.status is MutexState.LOCKED
    assert mutex.owner == threading.get_native_id()
    assert _raised(mutex.assert_state, MutexState.LOCKED) is None
    assert _raised(mutex.assert_owned, MutexState.LOCKED) is None
    mutex.unlock()
    assert mutex.status is MutexState.UNLOCKED
    assert mutex.owner == -1


def test_assert_state_mismatch_raises():
    mutex = TracingMutex("m", DebugSettings())
    assert _raised(mutex.assert_state, MutexState.LOCKED) is AssertionError
    assert _raised(mutex.assert_owned, MutexState.LOCKED) is AssertionError
    assert _raised(mutex.assert_state, MutexState.UNLOCKED) is None


def test_assert_owned_unlocked_fails_for_holder():
    mutex = TracingMutex("m", DebugSettings())
    with mutex:
        assert _raised(mutex.assert_owned, MutexState.UNLOCKED) is AssertionError
    assert mutex.status is MutexState.UNLOCKED


def test_invalid_state_raises_value_error():
    mutex = TracingMutex("m", DebugSettings())
    with pytest.raises(ValueError):
        mutex.assert_state("locked")
    with pytest.raises(ValueError):
        mutex.assert_owned(1)


def test_trylock_and_other_thread_view():
    mutex = TracingMutex("m", DebugSettings())
    results = {}

    def worker():
        results["try"] = mutex.trylock()
        results["owned_check"] = _raised(mutex.assert_owned, MutexState.UNLOCKED)

    mutex.lock()
    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()
    mutex.unlock()

    assert results == {"try": False, "owned_check": None}
    assert mutex.trylock() is True
    mutex.unlock()


def test_mutex_logs_when_enabled():
    lines = []
    mutex = TracingMutex("kq_mtx", DebugSettings(enabled=True, func=lines.append))
    with mutex:
        pass
    waiting = [i for i, line in enumerate(lines) if "waiting for kq_mtx" in line]
    unlocked = [i for i, line in enumerate(lines) if "unlocked kq_mtx" in line]
    assert len(waiting) == 1
    assert len(unlocked) == 1
    assert waiting[0] < unlocked[0]


def test_unlock_unheld_raises():
    mutex = TracingMutex("m", DebugSettings())
    with pytest.raises(RuntimeError):
        mutex.unlock()