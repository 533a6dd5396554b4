import io
import os

from typing import Optional  # noqa


class OSUtils(object):
    def file_exists(self, filename):
        # type: (str) -> bool
        return os.path.isfile(filename)

    def open_handle(self, filename):
        # type: (str) -> int
        # A read-only descriptor is enough to pin the file's identity, we
        # never read through it.
        return os.open(filename, os.O_RDONLY)

    def close_handle(self, handle):
        # type: (int) -> None
        os.close(handle)

    def stat(self, path):
        # type: (str) -> Optional[os.stat_result]
        try:
            return os.stat(path)
        except FileNotFoundError:
            return None

    def get_uncached_file_contents(self, filename):
        # type: (str) -> bytes
        """Read the whole file, dropping it from the page cache first.

        Right after a write some file systems can still serve the previous
        pages, asking the kernel to drop them forces the read to go back to
        the file.  Platforms without ``posix_fadvise`` get a plain read.
        """
        with io.open(filename, 'rb') as f:
            fadvise = getattr(os, 'posix_fadvise', None)
            if fadvise is not None:
                try:
                    fadvise(f.fileno(), 0, 0, os.POSIX_FADV_DONTNEED)
                except OSError:
                    # Not every file system supports the advice.
                    pass
            return f.read()
