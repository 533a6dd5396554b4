"""Watcher for remote files, supports both ETag and Last-Modified validators.

Every tick of the timer enqueues a conditional GET on a queue that runs one
request at a time, so validators are always updated in the order the
requests were made.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import requests
from loguru import logger

from sourcewatch.config import get_setting
from sourcewatch.watcher.shared import (
    AlreadyStarted,
    AlreadyStopped,
    ErrorObserver,
    NO_CHANGES,
    NotStarted,
    UpdateCallback,
    Updated,
    Watcher,
    deliver,
    weak_method,
)

from typing import Callable, Optional  # noqa

IF_MODIFIED_SINCE = 'If-Modified-Since'
LAST_MODIFIED = 'Last-Modified'
IF_NONE_MATCH = 'If-None-Match'
ETAG = 'ETag'

NOT_MODIFIED = 304


def create_session():
    # type: () -> requests.Session
    """Session that asks every cache on the way to stay out of it.

    Freshness is decided by our own validators, a transparent cache
    answering in the server's place would hide changes.
    """
    session = requests.Session()
    session.headers.update({
        'Cache-Control': 'no-cache',
        'Pragma': 'no-cache',
    })
    return session


class RepeatingTimer(object):
    def __init__(self, interval, action):
        # type: (float, Callable[[], None]) -> None
        self._interval = interval
        self._action = action
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run)
        self._thread.daemon = True

    def start(self):
        # type: () -> None
        self._thread.start()

    def fire(self):
        # type: () -> None
        self._action()

    def invalidate(self):
        # type: () -> None
        self._stopped.set()
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def _run(self):
        # type: () -> None
        while not self._stopped.wait(self._interval):
            self._action()


class SessionHandler(object):
    """Sends the polls of one started watcher and interprets responses."""
    def __init__(self, url, session, callback, on_failure, timeout):
        # type: (str, requests.Session, UpdateCallback, Callable[[str, BaseException], None], float) -> None
        self.url = url
        self.last_modified = ''
        self.etag = ''
        self._session = session
        self._callback = callback
        self._on_failure = on_failure
        self._timeout = timeout
        self._queue = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix='sourcewatch-remote')
        # Held while a response is applied, invalidate() waits for it.
        self._lock = threading.RLock()
        self._active = True

    def refresh(self):
        # type: () -> None
        try:
            self._queue.submit(self.poll)
        except RuntimeError:
            logger.debug("Poll of {} skipped, handler invalidated", self.url)

    def invalidate(self):
        # type: () -> None
        """Stop handling polls.

        A response being applied finishes first, nothing is delivered
        once this returns.  A request still in flight is not awaited, its
        response is dropped.
        """
        with self._lock:
            self._active = False
        self._queue.shutdown(wait=False, cancel_futures=True)
        self._session.close()

    def poll(self):
        # type: () -> None
        if not self._active:
            return
        headers = {
            IF_MODIFIED_SINCE: self.last_modified,
            IF_NONE_MATCH: self.etag,
        }
        try:
            response = self._session.get(
                self.url, headers=headers, timeout=self._timeout)
            data = response.content
        except requests.RequestException as e:
            with self._lock:
                if self._active:
                    self._on_failure(self.url, e)
            return
        with self._lock:
            if not self._active:
                logger.debug("Ignoring response for {} after stop", self.url)
                return
            self._apply(response, data)

    def _apply(self, response, data):
        # type: (requests.Response, bytes) -> None
        if response.status_code == NOT_MODIFIED:
            deliver(self._callback, NO_CHANGES)
            return

        modified = response.headers.get(LAST_MODIFIED)
        if modified is not None:
            self.last_modified = modified
        etag = response.headers.get(ETAG)
        if etag is not None:
            self.etag = etag
        logger.debug("{} answered {}, delivering new content",
                     self.url, response.status_code)
        deliver(self._callback, Updated(data))


class _Started(object):
    def __init__(self, handler, timer):
        # type: (SessionHandler, RepeatingTimer) -> None
        self.handler = handler
        self.timer = timer


class RemoteWatcher(Watcher):
    def __init__(self, url, refresh_interval=None, on_error=None,
                 session_factory=None, timeout=None):
        # type: (str, Optional[float], Optional[ErrorObserver], Optional[Callable[[], requests.Session]], Optional[float]) -> None
        """
        :param url: URL to observe.
        :param refresh_interval: Minimal time between two polls of ``url``.
        :param on_error: Called with a ``RefreshFailed`` for each poll that
            did not get an HTTP response.
        :param session_factory: Builds the ``requests.Session`` used by
            each start, defaults to :func:`create_session`.
        :param timeout: Seconds before a poll is abandoned.
        """
        self._lock = threading.Lock()
        self._state = None  # type: Optional[_Started]
        super(RemoteWatcher, self).__init__(on_error)
        if refresh_interval is None:
            refresh_interval = get_setting('remote_refresh_interval')
        if timeout is None:
            timeout = get_setting('remote_timeout')
        if session_factory is None:
            session_factory = create_session
        self.url = url
        self.refresh_interval = refresh_interval
        self.timeout = timeout
        self._session_factory = session_factory

    @property
    def is_started(self):
        # type: () -> bool
        return self._state is not None

    def start(self, callback):
        # type: (UpdateCallback) -> None
        with self._lock:
            if self._state is not None:
                raise AlreadyStarted()
            handler = SessionHandler(
                self.url, self._session_factory(), callback,
                weak_method(self._report_error), self.timeout)
            timer = RepeatingTimer(self.refresh_interval, handler.refresh)
            self._state = _Started(handler, timer)
        logger.info("Polling {} every {}s", self.url, self.refresh_interval)
        timer.start()
        timer.fire()

    def stop(self):
        # type: () -> None
        """Stop polling.

        Waits for a callback that is already running, none runs once this
        returns.
        """
        with self._lock:
            state = self._state
            if state is None:
                raise AlreadyStopped()
            self._state = None
        state.timer.invalidate()
        state.handler.invalidate()
        logger.info("Stopped polling {}", self.url)

    def refresh(self):
        # type: () -> None
        """Poll now, in addition to the regular ticks.

        :raises NotStarted: if the watcher is stopped.
        """
        state = self._state
        if state is None:
            raise NotStarted()
        state.handler.refresh()
