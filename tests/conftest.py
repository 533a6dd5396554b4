import os
import threading
import time
from concurrent.futures import Executor, Future

import pytest

from sourcewatch.watcher.eventbased import EventSource, Subscription


DEFAULT_TIMEOUT = 5.0


def wait_for(predicate, timeout=DEFAULT_TIMEOUT, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class ImmediateExecutor(Executor):
    """Runs submitted work inline on the submitting thread."""
    def __init__(self):
        self._shutdown = False

    def submit(self, fn, *args, **kwargs):
        if self._shutdown:
            raise RuntimeError('cannot schedule new futures after shutdown')
        future = Future()
        future.set_result(fn(*args, **kwargs))
        return future

    def shutdown(self, wait=True, **kwargs):
        self._shutdown = True


class Collector(object):
    def __init__(self):
        self.updates = []
        self._lock = threading.Lock()

    def __call__(self, update):
        with self._lock:
            self.updates.append(update)

    @property
    def data(self):
        with self._lock:
            return [u.data for u in self.updates if u.has_changes]


class FakeSubscription(Subscription):
    def __init__(self, handler):
        self.handler = handler
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeEventSource(EventSource):
    """Event source driven by the test instead of the OS."""
    def __init__(self):
        self.subscriptions = []
        self.creation_watches = []

    def subscribe(self, path, event_mask, handler):
        if not os.path.isfile(path):
            raise FileNotFoundError(2, 'No such file or directory', path)
        subscription = FakeSubscription(handler)
        self.subscriptions.append(subscription)
        return subscription

    def watch_creation(self, path, handler):
        subscription = FakeSubscription(handler)
        self.creation_watches.append(subscription)
        return subscription

    @property
    def active(self):
        return [s for s in self.subscriptions if not s.cancelled]

    def emit(self, flags):
        for subscription in self.active:
            subscription.handler(flags)

    def announce_creation(self):
        for subscription in self.creation_watches:
            if not subscription.cancelled:
                subscription.handler()


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def immediate():
    return ImmediateExecutor()


@pytest.fixture
def event_source():
    return FakeEventSource()
