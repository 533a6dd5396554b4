import enum
import os
import threading

from loguru import logger
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
from watchdog.events import FileSystemEvent  # noqa
from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
)

from sourcewatch.utils import OSUtils

from typing import Callable, Optional  # noqa


class FileEvent(enum.IntFlag):
    DELETE = 1
    WRITE = 2
    EXTEND = 4
    ATTRIB = 8
    LINK = 16
    RENAME = 32
    REVOKE = 64


ALL_EVENTS = (FileEvent.DELETE | FileEvent.WRITE | FileEvent.EXTEND |
              FileEvent.ATTRIB | FileEvent.LINK | FileEvent.RENAME |
              FileEvent.REVOKE)

EventHandler = Callable[[FileEvent], None]


class Subscription(object):
    def cancel(self):
        # type: () -> None
        raise NotImplementedError('cancel')


class EventSource(object):
    """Capability to observe a single file for OS level changes."""
    def subscribe(self, path, event_mask, handler):
        # type: (str, FileEvent, EventHandler) -> Subscription
        """Open ``path`` and call ``handler(flags)`` for each change.

        Raises ``OSError`` if the path cannot be opened.
        """
        raise NotImplementedError('subscribe')

    def watch_creation(self, path, handler):
        # type: (str, Callable[[], None]) -> Subscription
        """Call ``handler()`` once, as soon as ``path`` exists."""
        raise NotImplementedError('watch_creation')


def _normalize(path):
    # type: (str) -> str
    # Watch the resolved parent but keep the file name itself, a symlinked
    # file is watched as the link.
    path = os.path.abspath(path)
    parent = os.path.realpath(os.path.dirname(path))
    return os.path.normcase(os.path.join(parent, os.path.basename(path)))


def _event_path(raw_path):
    # type: (object) -> str
    if isinstance(raw_path, bytes):
        raw_path = os.fsdecode(raw_path)
    return _normalize(str(raw_path))


class WatchDogEventAdapter(FileSystemEventHandler):
    """Translates watchdog events for one file into ``FileEvent`` flags.

    watchdog watches directories, so the adapter is scheduled on the
    parent directory and drops directory events along with events for
    any other file in it.
    """
    def __init__(self, path, event_mask, handler):
        # type: (str, FileEvent, EventHandler) -> None
        self._path = _normalize(path)
        self._event_mask = event_mask
        self._handler = handler

    def on_any_event(self, event):
        # type: (FileSystemEvent) -> None
        if event.is_directory:
            return
        flags = self._translate(event) & self._event_mask
        if flags:
            self._handler(flags)

    def _translate(self, event):
        # type: (FileSystemEvent) -> FileEvent
        event_type = event.event_type
        if event_type == EVENT_TYPE_MOVED:
            # Moving the file away and moving another file onto its path
            # (atomic save) both replace what the path points to.
            if self._path in (_event_path(event.src_path),
                              _event_path(event.dest_path)):
                return FileEvent.RENAME
            return FileEvent(0)
        if _event_path(event.src_path) != self._path:
            return FileEvent(0)
        if event_type == EVENT_TYPE_DELETED:
            return FileEvent.DELETE
        if event_type == EVENT_TYPE_CREATED:
            return FileEvent.RENAME
        if event_type in (EVENT_TYPE_MODIFIED, EVENT_TYPE_CLOSED):
            return FileEvent.WRITE
        # Opens and reads are ours as often as not.
        return FileEvent(0)


class WatchDogCreationAdapter(FileSystemEventHandler):
    def __init__(self, path, handler):
        # type: (str, Callable[[], None]) -> None
        self._path = _normalize(path)
        self._handler = handler
        self._lock = threading.Lock()
        self._fired = False

    def on_any_event(self, event):
        # type: (FileSystemEvent) -> None
        if event.is_directory:
            return
        if event.event_type == EVENT_TYPE_MOVED:
            target = _event_path(event.dest_path)
        elif event.event_type in (EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED,
                                  EVENT_TYPE_CLOSED):
            target = _event_path(event.src_path)
        else:
            return
        if target == self._path:
            self.fire()

    def fire(self):
        # type: () -> None
        with self._lock:
            if self._fired:
                return
            self._fired = True
        self._handler()


class WatchdogSubscription(Subscription):
    def __init__(self, observer, handle=None, osutils=None):
        # type: (Observer, Optional[int], Optional[OSUtils]) -> None
        self._observer = observer
        self._handle = handle
        self._osutils = osutils
        self._lock = threading.Lock()
        self._cancelled = False

    def cancel(self):
        # type: () -> None
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
        self._observer.stop()
        if threading.current_thread() is not self._observer:
            self._observer.join()
        if self._handle is not None and self._osutils is not None:
            self._osutils.close_handle(self._handle)
            self._handle = None


class WatchdogEventSource(EventSource):
    """Uses watchdog to watch a file for changes."""
    def __init__(self, osutils=None):
        # type: (Optional[OSUtils]) -> None
        if osutils is None:
            osutils = OSUtils()
        self._osutils = osutils

    def subscribe(self, path, event_mask, handler):
        # type: (str, FileEvent, EventHandler) -> Subscription
        handle = self._osutils.open_handle(path)
        try:
            observer = self._start_observer(
                path, WatchDogEventAdapter(path, event_mask, handler))
        except Exception:
            self._osutils.close_handle(handle)
            raise
        logger.debug("Subscribed to file events for {}", path)
        return WatchdogSubscription(observer, handle, self._osutils)

    def watch_creation(self, path, handler):
        # type: (str, Callable[[], None]) -> Subscription
        adapter = WatchDogCreationAdapter(path, handler)
        observer = self._start_observer(path, adapter)
        logger.debug("Waiting for {} to be created", path)
        # It may have shown up before the observer was scheduled.
        if self._osutils.file_exists(path):
            adapter.fire()
        return WatchdogSubscription(observer)

    def _start_observer(self, path, adapter):
        # type: (str, FileSystemEventHandler) -> Observer
        observer = Observer()
        observer.daemon = True
        directory = os.path.dirname(_normalize(path))
        observer.schedule(adapter, directory, recursive=False)
        observer.start()
        return observer
