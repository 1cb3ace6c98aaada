"""Seekable reader over ranged GETs of one object.

Two fetch algorithms are available, selected by version number:

* version 1 fetches a fixed window of ``buffer_size`` bytes starting at
  the position being read,
* version 2 starts with a small window that doubles while reads stay
  sequential (up to ``buffer_size``), and keeps the previous window so
  short backward seeks do not go back to the store.

A seek never fetches anything by itself; the next read outside the
current window does.
"""
from s3nativefs.exceptions import StreamClosedError
from s3nativefs.exceptions import UnsupportedConfigurationError

import io
import logging
import threading


logger = logging.getLogger(__name__)

DEFAULT_READ_BUFFER_SIZE = 64 * 1024 * 1024
MAX_READ_BUFFER_SIZE = 256 * 1024 * 1024
DEFAULT_ALGORITHM_VERSION = 1
ALGORITHM_VERSIONS = (1, 2)
INITIAL_READ_AHEAD = 1024 * 1024


class FixedWindowFetcher:
    def __init__(self, store, key, length, window_size):
        self._store = store
        self._key = key
        self._length = length
        self._window_size = window_size

    def fetch(self, pos):
        end = min(pos + self._window_size, self._length) - 1
        logger.debug("Fetching bytes %d-%d of key '%s'", pos, end, self._key)
        return pos, self._store.retrieve(self._key, pos, end)

    def release(self):
        pass


class ReadAheadFetcher:
    def __init__(self, store, key, length, window_size):
        self._store = store
        self._key = key
        self._length = length
        self._max_window = window_size
        self._window = min(INITIAL_READ_AHEAD, window_size)
        self._current = None
        self._previous = None

    def fetch(self, pos):
        previous = self._previous
        if previous is not None and previous[0] <= pos < previous[0] + len(previous[1]):
            self._previous, self._current = self._current, previous
            return previous

        current = self._current
        if current is not None and pos == current[0] + len(current[1]):
            self._window = min(self._window * 2, self._max_window)
        else:
            self._window = min(INITIAL_READ_AHEAD, self._max_window)

        end = min(pos + self._window, self._length) - 1
        logger.debug("Fetching bytes %d-%d of key '%s'", pos, end, self._key)
        window = (pos, self._store.retrieve(self._key, pos, end))
        self._previous, self._current = current, window
        return window

    def release(self):
        self._current = None
        self._previous = None


_FETCHERS = {1: FixedWindowFetcher, 2: ReadAheadFetcher}


def check_algorithm_version(version):
    if version not in ALGORITHM_VERSIONS:
        raise UnsupportedConfigurationError(
            f"Only 1 or 2 algorithm version is supported, got {version!r}"
        )
    return version


class BlockInputStream(io.RawIOBase):
    """Read-only, seekable stream over the object stored under ``key``."""

    def __init__(
        self,
        store,
        key,
        length,
        buffer_size=DEFAULT_READ_BUFFER_SIZE,
        algorithm_version=DEFAULT_ALGORITHM_VERSION,
    ):
        super().__init__()
        self._lock = threading.RLock()
        self._fetcher = None
        self._buffer = b""
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        fetcher_class = _FETCHERS[check_algorithm_version(algorithm_version)]
        self.key = key
        self.length = length
        self._fetcher = fetcher_class(store, key, length, buffer_size)
        self._pos = 0
        self._buffer_start = 0

    def _check_open(self):
        if self.closed:
            raise StreamClosedError(f"Stream closed for key '{self.key}'")

    def readable(self):
        return True

    def seekable(self):
        return True

    def readinto(self, b):
        with self._lock:
            self._check_open()
            view = memoryview(b).cast("B")
            if not len(view) or self._pos >= self.length:
                return 0
            offset = self._pos - self._buffer_start
            if not 0 <= offset < len(self._buffer):
                self._buffer_start, self._buffer = self._fetcher.fetch(self._pos)
                offset = self._pos - self._buffer_start
                if offset >= len(self._buffer):
                    # object shrank since it was opened
                    return 0
            n = min(len(view), len(self._buffer) - offset)
            view[:n] = self._buffer[offset : offset + n]
            self._pos += n
            return n

    def seek(self, pos, whence=io.SEEK_SET):
        with self._lock:
            self._check_open()
            if whence == io.SEEK_SET:
                target = pos
            elif whence == io.SEEK_CUR:
                target = self._pos + pos
            elif whence == io.SEEK_END:
                target = self.length + pos
            else:
                raise ValueError(f"invalid whence ({whence!r})")
            if target < 0:
                raise ValueError(f"negative seek position {target}")
            self._pos = target
            return target

    def tell(self):
        with self._lock:
            self._check_open()
            return self._pos

    def seek_to_new_source(self, target_pos):
        return False

    def close(self):
        with self._lock:
            if self.closed:
                return
            self._buffer = b""
            if self._fetcher is not None:
                self._fetcher.release()
            super().close()

    def __repr__(self):
        return f"<BlockInputStream key={self.key!r} length={self.length}>"
