"""
Default settings for watchers.

Every key of ``WATCHER_CONFIG`` can be overridden from the environment with
``SOURCEWATCH_<KEY>``, e.g. ``SOURCEWATCH_REMOTE_TIMEOUT=30``.  Arguments
passed to a watcher's constructor always take precedence.
"""

import os

from typing import Any  # noqa

ENV_PREFIX = 'SOURCEWATCH_'

WATCHER_CONFIG = {
    # Some editors save in several steps (truncate, write, touch), 60 Hz
    # collapses those without anyone noticing the delay.
    "local_refresh_interval": 1.0 / 60,
    "remote_refresh_interval": 1.0,  # Seconds between two polls of a URL
    "remote_timeout": 10.0,  # Seconds before a poll is abandoned
    "stat_poll_interval": 0.25,  # Seconds between two stat() calls
    "event_source": "watchdog",  # "watchdog" or "stat"
}


def get_setting(key):
    # type: (str) -> Any
    """Return the configured value for ``key``.

    The environment override is coerced to the type of the default so
    callers always get back what ``WATCHER_CONFIG`` declares.
    """
    default = WATCHER_CONFIG[key]
    raw = os.environ.get(ENV_PREFIX + key.upper())
    if raw is None:
        return default
    try:
        return type(default)(raw)
    except ValueError:
        raise ValueError(
            "Invalid value for %s%s: %r" % (ENV_PREFIX, key.upper(), raw))
