import threading

from toskernel.spinlock import SpinLock


def test_try_acquire_on_free_lock_succeeds():
    lock = SpinLock()
    assert lock.try_acquire() is True


def test_try_acquire_on_held_lock_fails():
    lock = SpinLock()
    lock.acquire()
    assert lock.try_acquire() is False
    lock.release()
    assert lock.try_acquire() is True


def test_context_manager_holds_and_releases():
    lock = SpinLock()
    with lock as held:
        assert held is lock
        assert lock.try_acquire() is False
    assert lock.try_acquire() is True


def test_double_release_is_harmless():
    lock = SpinLock()
    lock.acquire()
    lock.release()
    lock.release()
    assert lock.try_acquire() is True


def test_lock_serialises_threads():
    lock = SpinLock()
    counter = {"value": 0}
    attempts_while_held = []
    attempts_guard = threading.Lock()
    workers = 4
    rounds = 500

    def work():
        for _ in range(rounds):
            with lock:
                taken = lock.try_acquire()
                with attempts_guard:
                    attempts_while_held.append(taken)
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=work) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert counter["value"] == workers * rounds
    assert attempts_while_held == [False] * (workers * rounds)
    assert lock.try_acquire() is True