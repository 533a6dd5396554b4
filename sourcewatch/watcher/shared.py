import weakref

from loguru import logger

from typing import Any, Callable, Optional  # noqa


class WatcherError(Exception):
    """Base class for all watcher errors."""


class AlreadyStarted(WatcherError):
    def __init__(self):
        # type: () -> None
        super(AlreadyStarted, self).__init__('Watcher is already started.')


class AlreadyStopped(WatcherError):
    def __init__(self):
        # type: () -> None
        super(AlreadyStopped, self).__init__('Watcher is already stopped.')


class NotStarted(WatcherError):
    def __init__(self):
        # type: () -> None
        super(NotStarted, self).__init__('Watcher has not been started.')


class FailedToStart(WatcherError):
    def __init__(self, reason):
        # type: (str) -> None
        self.reason = reason
        super(FailedToStart, self).__init__(
            'Failed to start watcher: %s' % reason)


class RefreshFailed(WatcherError):
    """A refresh could not complete and will be retried on the next trigger.

    Never raised to callers, only handed to the ``on_error`` observer of
    the watcher that hit it.
    """
    def __init__(self, source, cause):
        # type: (str, BaseException) -> None
        self.source = source
        self.cause = cause
        super(RefreshFailed, self).__init__(
            'Refresh of %s failed: %s' % (source, cause))


class Update(object):
    """Value delivered to a watcher's callback after each refresh."""
    has_changes = False


class Updated(Update):
    has_changes = True

    def __init__(self, data):
        # type: (bytes) -> None
        self.data = data

    def __eq__(self, other):
        # type: (object) -> bool
        return isinstance(other, Updated) and other.data == self.data

    def __ne__(self, other):
        # type: (object) -> bool
        return not self == other

    def __hash__(self):
        # type: () -> int
        return hash((Updated, self.data))

    def __repr__(self):
        # type: () -> str
        return 'Updated(data=%r)' % (self.data,)


class NoChanges(Update):
    def __eq__(self, other):
        # type: (object) -> bool
        return isinstance(other, NoChanges)

    def __ne__(self, other):
        # type: (object) -> bool
        return not self == other

    def __hash__(self):
        # type: () -> int
        return hash(NoChanges)

    def __repr__(self):
        # type: () -> str
        return 'NoChanges()'


NO_CHANGES = NoChanges()

UpdateCallback = Callable[[Update], None]
ErrorObserver = Callable[[RefreshFailed], None]


class Watcher(object):
    """Lifecycle shared by every watcher.

    A watcher is either stopped or started.  ``start`` hands it the
    callback that receives every :class:`Update`, ``stop`` releases
    everything ``start`` acquired.  Dropping the last reference to a
    started watcher stops it.
    """
    def __init__(self, on_error=None):
        # type: (Optional[ErrorObserver]) -> None
        self._on_error = on_error

    @property
    def is_started(self):
        # type: () -> bool
        raise NotImplementedError('is_started')

    def start(self, callback):
        # type: (UpdateCallback) -> None
        raise NotImplementedError('start')

    def stop(self):
        # type: () -> None
        raise NotImplementedError('stop')

    def refresh(self):
        # type: () -> None
        raise NotImplementedError('refresh')

    def __enter__(self):
        # type: () -> Watcher
        return self

    def __exit__(self, *exc_info):
        # type: (object) -> None
        if self.is_started:
            self.stop()

    def __del__(self):
        # type: () -> None
        try:
            self.stop()
        except AlreadyStopped:
            pass

    def _report_error(self, source, cause):
        # type: (str, BaseException) -> None
        error = RefreshFailed(source, cause)
        if self._on_error is None:
            logger.warning("{}, will retry on next change", error)
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Error observer raised while handling {}", error)


def weak_method(method):
    # type: (Callable[..., Any]) -> Callable[..., None]
    """Wrap a bound method without keeping its object alive.

    Background threads hold on to the wrapper, so a dropped watcher can
    still be collected and stopped.  Once the object is gone calls do
    nothing.
    """
    ref = weakref.WeakMethod(method)

    def call(*args):
        # type: (Any) -> None
        bound = ref()
        if bound is not None:
            bound(*args)
    return call


def deliver(callback, update):
    # type: (UpdateCallback, Update) -> None
    try:
        callback(update)
    except Exception:
        logger.exception("Update callback raised")
