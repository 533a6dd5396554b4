import gc
import threading
import time
import weakref

import mock
import pytest
import requests
from requests.structures import CaseInsensitiveDict

from sourcewatch.watcher.remote import (
    RemoteWatcher,
    SessionHandler,
    create_session,
)
from sourcewatch.watcher.shared import (
    AlreadyStarted,
    AlreadyStopped,
    NO_CHANGES,
    NotStarted,
    RefreshFailed,
    Updated,
)
from tests.conftest import wait_for


URL = 'https://example.com/settings.json'


def response(status_code=200, content=b'', headers=None):
    resp = mock.Mock(spec=requests.Response)
    resp.status_code = status_code
    resp.content = content
    resp.headers = CaseInsensitiveDict(headers or {})
    return resp


def sent_headers(session, index):
    return session.get.call_args_list[index][1]['headers']


@pytest.fixture
def session():
    return mock.Mock(spec=requests.Session)


@pytest.fixture
def failures():
    return []


@pytest.fixture
def handler(session, collector, failures):
    handler = SessionHandler(
        URL, session, collector,
        lambda source, cause: failures.append((source, cause)), timeout=3)
    yield handler
    handler.invalidate()


def test_first_poll_sends_empty_validators(handler, session):
    session.get.return_value = response(200, b'X')
    handler.poll()

    session.get.assert_called_once_with(
        URL, headers={'If-Modified-Since': '', 'If-None-Match': ''},
        timeout=3)


def test_modified_response_is_delivered(handler, session, collector):
    session.get.return_value = response(
        200, b'X', {'ETag': '"e1"',
                    'Last-Modified': 'Wed, 21 Oct 2015 07:28:00 GMT'})
    handler.poll()

    assert collector.updates == [Updated(b'X')]
    assert handler.etag == '"e1"'
    assert handler.last_modified == 'Wed, 21 Oct 2015 07:28:00 GMT'


def test_not_modified_keeps_validators(handler, session, collector):
    session.get.return_value = response(304)
    handler.poll()
    handler.poll()

    assert collector.updates == [NO_CHANGES, NO_CHANGES]
    assert handler.etag == ''
    assert handler.last_modified == ''
    assert sent_headers(session, 1) == {
        'If-Modified-Since': '', 'If-None-Match': ''}


def test_etag_is_sent_back(handler, session, collector):
    session.get.side_effect = [
        response(200, b'X', {'ETag': '"e1"'}),
        response(304),
    ]
    handler.poll()
    handler.poll()

    assert collector.updates == [Updated(b'X'), NO_CHANGES]
    assert sent_headers(session, 1)['If-None-Match'] == '"e1"'
    assert sent_headers(session, 1)['If-Modified-Since'] == ''


def test_last_modified_is_sent_back(handler, session):
    session.get.side_effect = [
        response(200, b'X', {'last-modified': 'Wed, 21 Oct 2015 07:28:00 GMT'}),
        response(304),
    ]
    handler.poll()
    handler.poll()

    assert sent_headers(session, 1)['If-Modified-Since'] == \
        'Wed, 21 Oct 2015 07:28:00 GMT'


def test_missing_validators_keep_previous_ones(handler, session):
    session.get.side_effect = [
        response(200, b'X', {'ETag': '"e1"'}),
        response(200, b'Y'),
        response(304),
    ]
    handler.poll()
    handler.poll()
    handler.poll()

    assert sent_headers(session, 2)['If-None-Match'] == '"e1"'


def test_any_other_status_counts_as_modified(handler, session, collector):
    session.get.return_value = response(500, b'oops')
    handler.poll()

    assert collector.updates == [Updated(b'oops')]


def test_transport_failure_is_reported(handler, session, collector,
                                       failures):
    error = requests.ConnectionError('connection refused')
    session.get.side_effect = error
    handler.poll()

    assert collector.updates == []
    assert failures == [(URL, error)]


def test_response_after_invalidate_is_ignored(handler, session, collector,
                                              failures):
    def get(url, **kwargs):
        handler.invalidate()
        return response(200, b'X', {'ETag': '"late"'})

    session.get.side_effect = get
    handler.poll()

    assert collector.updates == []
    assert handler.etag == ''
    assert failures == []


def test_invalidate_closes_session(handler, session):
    handler.invalidate()
    handler.poll()
    handler.refresh()

    session.close.assert_called_once_with()
    assert not session.get.called


def test_create_session_disables_caching():
    session = create_session()
    try:
        assert session.headers['Cache-Control'] == 'no-cache'
        assert session.headers['Pragma'] == 'no-cache'
    finally:
        session.close()


class TestRemoteWatcher(object):
    @pytest.fixture
    def watcher(self, session):
        watcher = RemoteWatcher(URL, refresh_interval=60,
                                session_factory=lambda: session)
        yield watcher
        if watcher.is_started:
            watcher.stop()

    def test_start_polls_immediately(self, watcher, session, collector):
        session.get.return_value = response(200, b'X', {'ETag': '"e1"'})
        watcher.start(collector)

        assert wait_for(lambda: collector.updates == [Updated(b'X')])

    def test_refresh_polls_again_with_validators(self, watcher, session,
                                                 collector):
        session.get.side_effect = [
            response(200, b'X', {'ETag': '"e1"'}),
            response(304),
        ]
        watcher.start(collector)
        watcher.refresh()

        assert wait_for(
            lambda: collector.updates == [Updated(b'X'), NO_CHANGES])
        assert sent_headers(session, 1)['If-None-Match'] == '"e1"'

    def test_timer_keeps_polling(self, session, collector):
        session.get.return_value = response(304)
        watcher = RemoteWatcher(URL, refresh_interval=0.01,
                                session_factory=lambda: session)
        watcher.start(collector)
        try:
            assert wait_for(lambda: len(collector.updates) >= 3)
        finally:
            watcher.stop()

    def test_cannot_start_twice(self, watcher, session, collector):
        session.get.return_value = response(304)
        watcher.start(collector)

        with pytest.raises(AlreadyStarted):
            watcher.start(collector)
        assert watcher.is_started

    def test_cannot_stop_twice(self, watcher, session, collector):
        session.get.return_value = response(304)
        watcher.start(collector)
        watcher.stop()

        with pytest.raises(AlreadyStopped):
            watcher.stop()

    def test_refresh_requires_start(self, watcher):
        with pytest.raises(NotStarted):
            watcher.refresh()

    def test_stop_closes_session(self, watcher, session, collector):
        session.get.return_value = response(304)
        watcher.start(collector)
        watcher.stop()

        assert not watcher.is_started
        session.close.assert_called_once_with()
        with pytest.raises(NotStarted):
            watcher.refresh()

    def test_transport_failure_goes_to_error_observer(self, session,
                                                      collector):
        errors = []
        session.get.side_effect = requests.Timeout('too slow')
        watcher = RemoteWatcher(URL, refresh_interval=60,
                                session_factory=lambda: session,
                                on_error=errors.append)
        watcher.start(collector)
        try:
            assert wait_for(lambda: len(errors) == 1)
        finally:
            watcher.stop()

        assert isinstance(errors[0], RefreshFailed)
        assert isinstance(errors[0].cause, requests.Timeout)
        assert errors[0].source == URL
        assert collector.updates == []

    def test_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv('SOURCEWATCH_REMOTE_TIMEOUT', '2.5')
        assert RemoteWatcher(URL).timeout == 2.5

    def test_dropped_watcher_is_stopped(self, session, collector):
        session.get.return_value = response(304)
        watcher = RemoteWatcher(URL, refresh_interval=0.01,
                                session_factory=lambda: session)
        watcher.start(collector)
        assert wait_for(lambda: len(collector.updates) >= 2)
        ref = weakref.ref(watcher)

        del watcher
        gc.collect()

        assert ref() is None
        session.close.assert_called_once_with()
        count = len(collector.updates)
        time.sleep(0.1)
        assert len(collector.updates) == count

    def test_stop_waits_for_running_callback(self, watcher, session):
        session.get.return_value = response(200, b'X')
        entered = threading.Event()
        release = threading.Event()
        updates = []

        def callback(update):
            entered.set()
            release.wait(5)
            updates.append(update)

        watcher.start(callback)
        assert entered.wait(5)

        stopper = threading.Thread(target=watcher.stop)
        stopper.start()
        stopper.join(0.1)
        assert stopper.is_alive()

        release.set()
        stopper.join(5)
        assert not stopper.is_alive()
        assert updates == [Updated(b'X')]


def test_failure_after_invalidate_is_not_reported(handler, session,
                                                  failures):
    def get(url, **kwargs):
        handler.invalidate()
        raise requests.ConnectionError('connection reset')

    session.get.side_effect = get
    handler.poll()

    assert failures == []
