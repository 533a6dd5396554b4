import pytest

from sourcewatch.config import WATCHER_CONFIG, get_setting


def test_defaults_without_environment(monkeypatch):
    monkeypatch.delenv('SOURCEWATCH_REMOTE_REFRESH_INTERVAL', raising=False)
    assert get_setting('remote_refresh_interval') == 1.0
    assert get_setting('local_refresh_interval') == pytest.approx(1.0 / 60)


def test_environment_overrides_are_coerced(monkeypatch):
    monkeypatch.setenv('SOURCEWATCH_REMOTE_REFRESH_INTERVAL', '30')
    value = get_setting('remote_refresh_interval')
    assert value == 30.0
    assert isinstance(value, float)


def test_invalid_override_names_the_variable(monkeypatch):
    monkeypatch.setenv('SOURCEWATCH_STAT_POLL_INTERVAL', 'often')
    with pytest.raises(ValueError) as excinfo:
        get_setting('stat_poll_interval')
    assert 'SOURCEWATCH_STAT_POLL_INTERVAL' in str(excinfo.value)


def test_unknown_key():
    with pytest.raises(KeyError):
        get_setting('not_a_setting')


def test_every_setting_has_a_default():
    for key in WATCHER_CONFIG:
        assert get_setting(key) is not None
