import threading
import uuid

import pytest

from exceptions import CancellationError
from services.cancellation import CancellationRegistry


def test_begin_generation_registers_handle():
    registry = CancellationRegistry()
    thread_id = uuid.uuid4()

    handle = registry.begin_generation(thread_id)

    assert registry.get(thread_id) is handle
    assert registry.is_generating(thread_id)
    assert not handle.cancelled


def test_begin_generation_preempts_previous():
    registry = CancellationRegistry()
    thread_id = uuid.uuid4()

    first = registry.begin_generation(thread_id)
    second = registry.begin_generation(thread_id)

    assert first.cancelled
    assert first.reason == "preempted"
    assert not second.cancelled
    assert registry.get(thread_id) is second


def test_cancel_signals_and_removes():
    registry = CancellationRegistry()
    thread_id = uuid.uuid4()
    handle = registry.begin_generation(thread_id)

    assert registry.cancel(thread_id) is True
    assert handle.cancelled
    assert handle.reason == "stopped"
    assert registry.get(thread_id) is None
    assert registry.cancel(thread_id) is False


def test_raise_if_cancelled_carries_reason():
    registry = CancellationRegistry()
    thread_id = uuid.uuid4()
    handle = registry.begin_generation(thread_id)
    handle.raise_if_cancelled()

    registry.cancel(thread_id)

    with pytest.raises(CancellationError) as exc_info:
        handle.raise_if_cancelled()
    assert exc_info.value.reason == "stopped"


def test_end_generation_only_removes_own_handle():
    registry = CancellationRegistry()
    thread_id = uuid.uuid4()
    first = registry.begin_generation(thread_id)
    second = registry.begin_generation(thread_id)

    registry.end_generation(thread_id, first)
    assert registry.get(thread_id) is second

    registry.end_generation(thread_id, second)
    assert registry.get(thread_id) is None
    registry.end_generation(thread_id, second)


def test_threads_are_independent():
    registry = CancellationRegistry()
    t1, t2 = uuid.uuid4(), uuid.uuid4()
    h1 = registry.begin_generation(t1)
    h2 = registry.begin_generation(t2)

    registry.cancel(t1)

    assert h1.cancelled and not h2.cancelled
    assert registry.active_threads() == [t2]


def test_concurrent_begins_leave_one_live_handle():
    registry = CancellationRegistry()
    thread_id = uuid.uuid4()
    handles = []
    lock = threading.Lock()

    def worker():
        for _ in range(50):
            handle = registry.begin_generation(thread_id)
            with lock:
                handles.append(handle)

    workers = [threading.Thread(target=worker) for _ in range(8)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()

    live = [h for h in handles if not h.cancelled]
    assert live == [registry.get(thread_id)]
