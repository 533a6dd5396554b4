"""This module provides watchers that report when a content source changes.

A content source is either a local file or a remote URL.  Both watchers
share the lifecycle defined in ``shared``: ``start`` with a callback,
``stop`` to release everything, and ``refresh`` to check right away.  The
callback receives ``Updated`` with the new bytes when the content differs
from what was last delivered, ``NoChanges`` otherwise.

Local files are observed through an event source.  Two implementations are
provided.  One that uses the watchdog event system, and a backup that simply
uses stat to poll the file, for file systems where native notifications
are not delivered.

Remote files are polled with conditional GET requests, the server's
``ETag`` and ``Last-Modified`` validators decide whether anything changed.
"""
