from s3nativefs.exceptions import StreamClosedError

import contextlib
import logging
import os
import tempfile
import threading
import weakref


logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 128 * 1024 * 1024


def _remove_files(paths):
    """Last-chance removal of block files left behind by an unclosed writer."""
    for path in paths:
        with contextlib.suppress(OSError):
            os.remove(path)


class BlockOutputStream:
    """Write-only stream spilling its data to local block files.

    Each block file holds at most ``block_size`` bytes. Nothing reaches
    the object store before ``close()``, which uploads all blocks in
    order as one object and then removes them.
    """

    def __init__(
        self, store, key, append=False, block_size=DEFAULT_BLOCK_SIZE, buffer_dir=None
    ):
        if block_size <= 0:
            raise ValueError(f"block_size must be positive, got {block_size}")
        self._store = store
        self.key = key
        self.append = append
        self.block_size = block_size
        self._buffer_dir = buffer_dir or tempfile.gettempdir()
        self._lock = threading.RLock()
        self._closed = False
        self._block_files = []
        self._block_id = 0
        self._block_written = 0
        self._finalizer = weakref.finalize(self, _remove_files, self._block_files)
        self._block_stream = self._new_block()

    def _new_block(self):
        try:
            os.makedirs(self._buffer_dir, exist_ok=True, mode=0o700)
        except OSError as e:
            raise OSError(f"Cannot create buffer directory: {self._buffer_dir}") from e
        fd, path = tempfile.mkstemp(prefix="output-", suffix=".data", dir=self._buffer_dir)
        self._block_files.append(path)
        logger.info(
            "OutputStream for key '%s' writing to tempfile '%s' for block %d",
            self.key,
            path,
            self._block_id,
        )
        return os.fdopen(fd, "wb")

    def _roll(self):
        self._block_stream.close()
        self._block_id += 1
        self._block_written = 0
        self._block_stream = self._new_block()

    def _check_open(self):
        if self._closed:
            raise StreamClosedError(f"Stream closed for key '{self.key}'")

    @property
    def closed(self):
        return self._closed

    @property
    def block_files(self):
        """Paths of the block files, in upload order."""
        return list(self._block_files)

    def writable(self):
        return True

    def write(self, data):
        with self._lock:
            self._check_open()
            view = memoryview(data).cast("B")
            offset = 0
            while offset < len(view):
                if self._block_written >= self.block_size:
                    self._roll()
                n = min(len(view) - offset, self.block_size - self._block_written)
                self._block_stream.write(view[offset : offset + n])
                self._block_written += n
                offset += n
            return len(view)

    def flush(self):
        with self._lock:
            self._check_open()
            self._block_stream.flush()

    def close(self):
        with self._lock:
            if self._closed:
                return
            try:
                self._block_stream.close()
                logger.info(
                    "OutputStream for key '%s' closed. Now beginning upload", self.key
                )
                self._store.store_files(self.key, list(self._block_files), self.append)
            finally:
                self._delete_block_files()
                self._closed = True
            logger.info("OutputStream for key '%s' upload complete", self.key)

    def _delete_block_files(self):
        for path in self._block_files:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning(
                    "Could not delete temporary block file: %s", path, exc_info=True
                )
        self._finalizer.detach()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def __repr__(self):
        return f"<BlockOutputStream key={self.key!r} append={self.append}>"
