from loguru import logger

from sourcewatch.watcher.local import LocalWatcher
from sourcewatch.watcher.remote import RemoteWatcher
from sourcewatch.watcher.shared import (
    AlreadyStarted,
    AlreadyStopped,
    FailedToStart,
    NO_CHANGES,
    NoChanges,
    NotStarted,
    RefreshFailed,
    Update,
    Updated,
    Watcher,
    WatcherError,
)

__version__ = '0.1.0'

__all__ = [
    'AlreadyStarted',
    'AlreadyStopped',
    'FailedToStart',
    'LocalWatcher',
    'NO_CHANGES',
    'NoChanges',
    'NotStarted',
    'RefreshFailed',
    'RemoteWatcher',
    'Update',
    'Updated',
    'Watcher',
    'WatcherError',
]

# Library code stays silent unless the application opts in, see
# sourcewatch.logging_config.setup_logging.
logger.disable('sourcewatch')
