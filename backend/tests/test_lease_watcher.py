"""Tests for lease file watching and refresh coalescing"""
import threading

from watchdog.events import DirModifiedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from lease_watcher import LeaseFileWatcher, LeaseRefreshQueue, watch_leases
from settings_model import SettingsModel


class CountingQueue:
    def __init__(self):
        self.triggers = 0

    def trigger(self):
        self.triggers += 1
        return True

    def shutdown(self):
        pass


def test_triggers_during_a_run_collapse_into_one_follow_up():
    started = threading.Event()
    release = threading.Event()
    calls = []

    def refresh():
        calls.append(len(calls))
        started.set()
        release.wait(5)

    queue = LeaseRefreshQueue(refresh)
    try:
        assert queue.trigger() is True
        assert started.wait(5)

        assert queue.trigger() is False
        assert queue.trigger() is False
        assert queue.trigger() is False

        release.set()
        assert queue.wait_idle(5)
        assert calls == [0, 1]
        assert queue.runs == 2
    finally:
        queue.shutdown()


def test_trigger_after_idle_starts_new_run():
    queue = LeaseRefreshQueue(lambda: None)
    try:
        assert queue.trigger() is True
        assert queue.wait_idle(5)
        assert queue.trigger() is True
        assert queue.wait_idle(5)
        assert queue.runs == 2
    finally:
        queue.shutdown()


def test_failed_refresh_is_reported_and_queue_recovers():
    errors = []

    def refresh():
        raise OSError("leases file vanished")

    queue = LeaseRefreshQueue(refresh, on_error=errors.append)
    try:
        queue.trigger()
        assert queue.wait_idle(5)

        assert isinstance(queue.last_error, OSError)
        assert len(errors) == 1
        assert queue.trigger() is True
        assert queue.wait_idle(5)
    finally:
        queue.shutdown()


def test_only_leases_file_writes_trigger(tmp_path):
    leases = tmp_path / 'dhcpd.leases'
    queue = CountingQueue()
    watcher = LeaseFileWatcher(str(leases), queue)

    watcher.dispatch(FileModifiedEvent(str(leases)))
    watcher.dispatch(FileModifiedEvent(str(tmp_path / 'dhcpd6.leases')))
    watcher.dispatch(DirModifiedEvent(str(tmp_path)))
    watcher.dispatch(FileCreatedEvent(str(tmp_path / 'dhcpd.leases~')))

    assert queue.triggers == 1


def test_rename_over_leases_file_triggers(tmp_path):
    leases = tmp_path / 'dhcpd.leases'
    queue = CountingQueue()
    watcher = LeaseFileWatcher(str(leases), queue)

    watcher.dispatch(FileMovedEvent(str(tmp_path / 'dhcpd.leases~'), str(leases)))
    watcher.dispatch(FileMovedEvent(str(leases), str(tmp_path / 'dhcpd.leases.old')))

    assert queue.triggers == 1


def test_watch_leases_publishes_initial_table(tmp_path):
    leases = tmp_path / 'dhcpd.leases'
    leases.write_text(
        "lease 10.0.0.20 {\n"
        "  binding state active;\n"
        "  hardware ethernet 00:0a:0b:0c:0d:0e;\n"
        "}\n"
    )
    model = SettingsModel()

    watcher = watch_leases(model, str(leases), start=False)
    try:
        assert watcher.queue.wait_idle(5)
        assert list(model.get_dhcpd_leases()) == ['00:0a:0b:0c:0d:0e']
    finally:
        watcher.stop()


def test_watch_leases_missing_file_records_error(tmp_path):
    model = SettingsModel()

    watcher = watch_leases(model, str(tmp_path / 'missing.leases'), start=False)
    try:
        assert watcher.queue.wait_idle(5)
        assert watcher.queue.last_error is not None
        assert model.get_dhcpd_leases() == {}
    finally:
        watcher.stop()
