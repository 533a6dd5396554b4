"""Watcher for local files.

The file is observed through an :class:`EventSource`, bursts of events are
debounced and the whole content is re-read and compared with what was last
delivered, so callers only hear about real changes.
"""
import threading
from concurrent.futures import Executor, ThreadPoolExecutor  # noqa

from loguru import logger

from sourcewatch.config import get_setting
from sourcewatch.utils import OSUtils
from sourcewatch.watcher.eventbased import ALL_EVENTS
from sourcewatch.watcher.eventbased import EventSource  # noqa
from sourcewatch.watcher.eventbased import FileEvent
from sourcewatch.watcher.eventbased import Subscription  # noqa
from sourcewatch.watcher.eventbased import WatchdogEventSource
from sourcewatch.watcher.shared import (
    AlreadyStarted,
    AlreadyStopped,
    ErrorObserver,
    FailedToStart,
    NO_CHANGES,
    Update,
    UpdateCallback,
    Updated,
    Watcher,
    deliver,
    weak_method,
)
from sourcewatch.watcher.stat import StatEventSource

from typing import Any, Callable, Optional  # noqa


def make_event_source(name=None):
    # type: (Optional[str]) -> EventSource
    if name is None:
        name = get_setting('event_source')
    if name == 'watchdog':
        return WatchdogEventSource()
    if name == 'stat':
        return StatEventSource()
    raise ValueError("Unknown event source: %r" % name)


class _Started(object):
    """Everything a started local watcher holds."""
    def __init__(self, callback, worker, delivery):
        # type: (UpdateCallback, Executor, Executor) -> None
        self.callback = callback
        self.worker = worker
        self.delivery = delivery
        self.subscription = None  # type: Optional[Subscription]
        self.pending_reload = None  # type: Optional[threading.Timer]
        self.is_processing = False


class LocalWatcher(Watcher):
    def __init__(self, path, refresh_interval=None, delivery=None,
                 event_source=None, on_error=None, osutils=None):
        # type: (str, Optional[float], Optional[Executor], Optional[EventSource], Optional[ErrorObserver], Optional[OSUtils]) -> None
        """
        :param path: File to observe.
        :param refresh_interval: Debounce window, events closer together
            than this produce a single refresh.
        :param delivery: Executor the callback is submitted to.  Defaults
            to a single thread owned by the watcher.
        :param event_source: Backend producing file events.
        :param on_error: Called with a ``RefreshFailed`` whenever a refresh
            or a re-subscription fails.
        """
        self._lock = threading.Lock()
        # Held while a callback runs, stop() waits for it.
        self._delivery_lock = threading.RLock()
        self._state = None  # type: Optional[_Started]
        super(LocalWatcher, self).__init__(on_error)
        if refresh_interval is None:
            refresh_interval = get_setting('local_refresh_interval')
        if event_source is None:
            event_source = make_event_source()
        if osutils is None:
            osutils = OSUtils()
        self.path = path
        self.refresh_interval = refresh_interval
        self._delivery = delivery
        self._event_source = event_source
        self._osutils = osutils
        self._previous_content = None  # type: Optional[bytes]

    @property
    def is_started(self):
        # type: () -> bool
        return self._state is not None

    def start(self, callback):
        # type: (UpdateCallback) -> None
        with self._lock:
            if self._state is not None:
                raise AlreadyStarted()
            worker = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix='sourcewatch-local')
            delivery = self._delivery
            if delivery is None:
                delivery = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix='sourcewatch-delivery')
            state = _Started(callback, worker, delivery)
            try:
                state.subscription = self._subscribe(state)
            except OSError as e:
                self._shutdown_executors(state)
                raise FailedToStart(
                    'Failed to open %s: %s' % (self.path, e.strerror or e))
            self._previous_content = None
            self._state = state
        logger.info("Watching {}", self.path)
        self.refresh()

    def stop(self):
        # type: () -> None
        """Stop watching.

        Waits for a callback that is already running, none runs once this
        returns.
        """
        with self._delivery_lock, self._lock:
            state = self._state
            if state is None:
                raise AlreadyStopped()
            self._state = None
            self._cancel_pending_reload(state)
            subscription, state.subscription = state.subscription, None
        if subscription is not None:
            subscription.cancel()
        self._shutdown_executors(state)
        logger.info("Stopped watching {}", self.path)

    def needs_to_reload(self):
        # type: () -> None
        """Schedule a refresh once ``refresh_interval`` passes quietly."""
        with self._lock:
            state = self._state
            if state is None:
                return
            self._cancel_pending_reload(state)
            dispatch = weak_method(self._dispatch)
            timer = threading.Timer(
                self.refresh_interval,
                lambda: dispatch(state, LocalWatcher._reload, timer))
            timer.daemon = True
            state.pending_reload = timer
            timer.start()

    def refresh(self):
        # type: () -> None
        """Re-read the file and deliver the result.

        Does nothing if the watcher is stopped or a refresh is already
        running.  Read failures are reported to the error observer and
        nothing is delivered, the next event will try again.
        """
        with self._lock:
            state = self._state
            if state is None or state.is_processing:
                return
            state.is_processing = True
        try:
            try:
                content = self._osutils.get_uncached_file_contents(self.path)
            except OSError as e:
                self._report_error(self.path, e)
                return
            with self._lock:
                if self._state is not state:
                    return
                changed = content != self._previous_content
                if changed:
                    self._previous_content = content
            if changed:
                logger.debug("Content of {} changed", self.path)
                self._deliver(state, Updated(content))
            else:
                self._deliver(state, NO_CHANGES)
        finally:
            state.is_processing = False

    def _subscribe(self, state):
        # type: (_Started) -> Subscription
        dispatch = weak_method(self._dispatch)
        return self._event_source.subscribe(
            self.path, ALL_EVENTS,
            lambda flags: dispatch(state, LocalWatcher._handle_event, flags))

    def _dispatch(self, state, fn, *args):
        # type: (_Started, Callable[..., None], Any) -> None
        """Run ``fn(self, state, *args)`` on the processing thread.

        ``fn`` is taken unbound so callers holding on to the arguments do
        not keep the watcher alive.
        """
        if self._state is not state:
            return

        def run():
            # type: () -> None
            if self._state is not state:
                return
            try:
                fn(self, state, *args)
            except Exception:
                logger.exception("Error while processing {}", self.path)

        try:
            state.worker.submit(run)
        except RuntimeError:
            # Lost the race against stop() shutting the worker down.
            logger.debug("Dropped event for stopped watcher of {}", self.path)

    def _handle_event(self, state, flags):
        # type: (_Started, FileEvent) -> None
        if flags & (FileEvent.DELETE | FileEvent.RENAME):
            # The path no longer points at the file we opened, editors
            # saving through a temporary file do this on every save.
            self._resubscribe(state)
            return
        self.needs_to_reload()

    def _reload(self, state, timer):
        # type: (_Started, threading.Timer) -> None
        with self._lock:
            if state.pending_reload is timer:
                state.pending_reload = None
        self.refresh()

    def _resubscribe(self, state):
        # type: (_Started) -> None
        with self._lock:
            if self._state is not state:
                return
            self._cancel_pending_reload(state)
            old, state.subscription = state.subscription, None
        if old is not None:
            old.cancel()
        logger.debug("{} was replaced or removed, reopening", self.path)
        try:
            subscription = self._subscribe(state)
        except OSError as e:
            self._report_error(self.path, e)
            self._wait_for_creation(state)
            return
        if not self._attach(state, subscription):
            return
        self.refresh()

    def _wait_for_creation(self, state):
        # type: (_Started) -> None
        dispatch = weak_method(self._dispatch)
        try:
            subscription = self._event_source.watch_creation(
                self.path,
                lambda: dispatch(state, LocalWatcher._resubscribe))
        except OSError as e:
            self._report_error(self.path, e)
            return
        self._attach(state, subscription)

    def _attach(self, state, subscription):
        # type: (_Started, Subscription) -> bool
        with self._lock:
            attached = self._state is state
            if attached:
                state.subscription = subscription
        if not attached:
            subscription.cancel()
        return attached

    def _deliver(self, state, update):
        # type: (_Started, Update) -> None
        def run():
            # type: () -> None
            with self._delivery_lock:
                if self._state is state:
                    deliver(state.callback, update)

        try:
            state.delivery.submit(run)
        except RuntimeError:
            logger.debug("Delivery executor for {} is shut down", self.path)

    def _cancel_pending_reload(self, state):
        # type: (_Started) -> None
        if state.pending_reload is not None:
            state.pending_reload.cancel()
            state.pending_reload = None

    def _shutdown_executors(self, state):
        # type: (_Started) -> None
        state.worker.shutdown(wait=False)
        if self._delivery is None:
            state.delivery.shutdown(wait=False)
