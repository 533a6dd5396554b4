import os
import threading

from loguru import logger

from sourcewatch.config import get_setting
from sourcewatch.utils import OSUtils
from sourcewatch.watcher.eventbased import (
    EventHandler,
    EventSource,
    FileEvent,
    Subscription,
)

from typing import Callable, Optional  # noqa


def compare_stats(previous, current):
    # type: (Optional[os.stat_result], Optional[os.stat_result]) -> FileEvent
    """Derive the events that explain going from ``previous`` to ``current``.

    ``None`` stands for a path that does not exist.
    """
    if previous is None and current is None:
        return FileEvent(0)
    if current is None:
        return FileEvent.DELETE
    if previous is None:
        return FileEvent.RENAME
    if (previous.st_ino, previous.st_dev) != (current.st_ino, current.st_dev):
        return FileEvent.RENAME
    flags = FileEvent(0)
    if current.st_size > previous.st_size:
        flags |= FileEvent.EXTEND | FileEvent.WRITE
    elif current.st_size != previous.st_size:
        flags |= FileEvent.WRITE
    if current.st_mtime_ns != previous.st_mtime_ns:
        flags |= FileEvent.WRITE
    if current.st_nlink != previous.st_nlink:
        flags |= FileEvent.LINK
    if not flags and current.st_ctime_ns != previous.st_ctime_ns:
        flags |= FileEvent.ATTRIB
    return flags


class StatFileObserver(object):
    def __init__(self, path, osutils=None):
        # type: (str, Optional[OSUtils]) -> None
        if osutils is None:
            osutils = OSUtils()
        self._path = path
        self._osutils = osutils
        self._last_stat = osutils.stat(path)

    def check(self):
        # type: () -> FileEvent
        current = self._osutils.stat(self._path)
        previous, self._last_stat = self._last_stat, current
        return compare_stats(previous, current)


class StatSubscription(Subscription):
    def __init__(self, poll, interval, handle=None, osutils=None):
        # type: (Callable[[], bool], float, Optional[int], Optional[OSUtils]) -> None
        self._poll = poll
        self._interval = interval
        self._handle = handle
        self._osutils = osutils
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run)
        self._thread.daemon = True

    def start(self):
        # type: () -> None
        self._thread.start()

    def cancel(self):
        # type: () -> None
        if self._stopped.is_set():
            return
        self._stopped.set()
        if threading.current_thread() is not self._thread:
            self._thread.join()
        if self._handle is not None and self._osutils is not None:
            self._osutils.close_handle(self._handle)
            self._handle = None

    def _run(self):
        # type: () -> None
        while not self._stopped.wait(self._interval):
            # A poll returning True is done for good.
            if self._poll():
                return


class StatEventSource(EventSource):
    """Polls ``os.stat`` to detect changes.

    Slower to react than native notifications, but works on network and
    virtual file systems where those are missing or unreliable.
    """
    def __init__(self, poll_interval=None, osutils=None):
        # type: (Optional[float], Optional[OSUtils]) -> None
        if poll_interval is None:
            poll_interval = get_setting('stat_poll_interval')
        if osutils is None:
            osutils = OSUtils()
        self._poll_interval = poll_interval
        self._osutils = osutils

    def subscribe(self, path, event_mask, handler):
        # type: (str, FileEvent, EventHandler) -> Subscription
        handle = self._osutils.open_handle(path)
        observer = StatFileObserver(path, self._osutils)

        def poll():
            # type: () -> bool
            flags = observer.check() & event_mask
            if flags:
                handler(flags)
            return False

        subscription = StatSubscription(
            poll, self._poll_interval, handle, self._osutils)
        subscription.start()
        logger.debug("Polling {} every {}s", path, self._poll_interval)
        return subscription

    def watch_creation(self, path, handler):
        # type: (str, Callable[[], None]) -> Subscription
        def poll():
            # type: () -> bool
            if self._osutils.file_exists(path):
                handler()
                return True
            return False

        subscription = StatSubscription(poll, self._poll_interval)
        subscription.start()
        return subscription
