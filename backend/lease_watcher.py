"""
Lease File Watcher
Re-parses dhcpd.leases whenever the DHCP server writes to it
"""

import os
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from lease_parser import LeaseParser
from settings_model import SettingsModel

logger = logging.getLogger(__name__)


class LeaseRefreshQueue:
    """
    Single-slot queue of lease refreshes

    At most one refresh runs at a time. Triggers that arrive while one is
    running collapse into exactly one follow-up run.
    """

    def __init__(self,
                 refresh: Callable[[], object],
                 executor: ThreadPoolExecutor = None,
                 on_error: Callable[[Exception], None] = None):
        self._refresh = refresh
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix='lease-refresh')
        self._owns_executor = executor is None
        self._on_error = on_error
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._running = False
        self._pending = False
        self.runs = 0
        self.last_error: Optional[Exception] = None

    def trigger(self) -> bool:
        """
        Request a refresh

        Returns:
            True if a new run was started, False if the request was folded
            into the follow-up of the run in progress
        """
        with self._lock:
            if self._running:
                self._pending = True
                return False
            self._running = True
        self._executor.submit(self._drain)
        return True

    def _drain(self) -> None:
        while True:
            try:
                self._refresh()
                self.last_error = None
            except Exception as e:
                # Previous lease table stays published
                logger.error(f"Lease refresh failed: {str(e)}")
                self.last_error = e
                if self._on_error:
                    self._on_error(e)
            finally:
                self.runs += 1

            with self._lock:
                if not self._pending:
                    self._running = False
                    self._idle.notify_all()
                    return
                self._pending = False

    def wait_idle(self, timeout: float = None) -> bool:
        """Block until no refresh is running or queued"""
        with self._lock:
            return self._idle.wait_for(lambda: not self._running, timeout=timeout)

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)


class LeaseFileWatcher(FileSystemEventHandler):
    """Watches one leases file and queues a refresh for every write to it"""

    def __init__(self, leases_path: str, queue: LeaseRefreshQueue):
        super().__init__()
        self.leases_path = os.path.abspath(leases_path)
        self.queue = queue
        self._observer = None

    def _is_leases_file(self, path) -> bool:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        return os.path.abspath(path) == self.leases_path

    def on_modified(self, event):
        if not event.is_directory and self._is_leases_file(event.src_path):
            logger.debug(f"Leases file modified: {event.src_path}")
            self.queue.trigger()

    def on_moved(self, event):
        # dhcpd rewrites the file by renaming dhcpd.leases~ over it
        if not event.is_directory and self._is_leases_file(event.dest_path):
            logger.debug(f"Leases file replaced: {event.dest_path}")
            self.queue.trigger()

    def start(self) -> None:
        """Start watching the directory that holds the leases file"""
        self._observer = Observer()
        self._observer.schedule(self, os.path.dirname(self.leases_path), recursive=False)
        self._observer.start()
        logger.info(f"Watching leases file {self.leases_path}")

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self.queue.shutdown()
        logger.info(f"Stopped watching leases file {self.leases_path}")


def watch_leases(settings: SettingsModel, leases_path: str, start: bool = True) -> LeaseFileWatcher:
    """
    Publish the lease table into settings and keep it current

    The file is parsed once immediately, then again after every write.
    """
    parser = LeaseParser(leases_path)
    queue = LeaseRefreshQueue(lambda: parser.refresh(settings))
    watcher = LeaseFileWatcher(leases_path, queue)
    queue.trigger()
    if start:
        watcher.start()
    return watcher
