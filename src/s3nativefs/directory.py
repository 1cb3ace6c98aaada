"""Directory emulation on a flat object store.

A directory exists when any of these hold, checked in this order:

1. an explicit marker object ``<key>/`` exists,
2. a legacy marker object ``<key>_$folder$`` exists,
3. some object key starts with ``<key>/``.

The root always exists.
"""
from dataclasses import dataclass
from pathlib import PurePosixPath
from s3nativefs.exceptions import PathExistsError
from s3nativefs.exceptions import PathNotFoundError
from s3nativefs.listing import MAX_FILE_SIZE
from s3nativefs.paths import lineage
from s3nativefs.paths import parent_of
from s3nativefs.paths import path_to_key
from s3nativefs.paths import SEPARATOR
from s3nativefs.paths import to_path

import logging


logger = logging.getLogger(__name__)

FOLDER_SUFFIX = "_$folder$"
MARKER_SUFFIXES = (SEPARATOR, FOLDER_SUFFIX)


@dataclass(frozen=True, order=True)
class FileStatus:
    """Status of a file or directory. Ordered and compared by path first."""

    path: PurePosixPath
    length: int = 0
    is_dir: bool = False
    modification_time: float = 0
    block_size: int = MAX_FILE_SIZE

    @property
    def name(self):
        return self.path.name

    @property
    def is_file(self):
        return not self.is_dir


def new_file(meta, path):
    return FileStatus(
        path=to_path(path), length=meta.length, modification_time=meta.last_modified
    )


def new_directory(path):
    return FileStatus(path=to_path(path), is_dir=True)


class DirectoryEmulator:
    """Resolves file/directory status and maintains directory markers."""

    def __init__(self, store):
        self._store = store

    def get_file_status(self, path):
        path = to_path(path)
        key = path_to_key(path)

        if not key:
            return new_directory(path)

        logger.debug("getFileStatus retrieving metadata for key '%s'", key)
        meta = self._store.retrieve_metadata(key)
        if meta is not None:
            logger.debug("getFileStatus returning 'file' for key '%s'", key)
            return new_file(meta, path)

        for suffix in MARKER_SUFFIXES:
            if self._store.retrieve_metadata(key + suffix) is not None:
                logger.debug(
                    "getFileStatus returning 'directory' for key '%s' as '%s' exists",
                    key,
                    key + suffix,
                )
                return new_directory(path)

        logger.debug("getFileStatus listing key '%s'", key)
        if not self._store.list(key, 1).is_empty:
            logger.debug(
                "getFileStatus returning 'directory' for key '%s' as it has contents",
                key,
            )
            return new_directory(path)

        logger.debug("getFileStatus could not find key '%s'", key)
        raise PathNotFoundError(f"No such file or directory '{path}'")

    def mkdir(self, path):
        path = to_path(path)
        try:
            status = self.get_file_status(path)
        except PathNotFoundError:
            logger.debug("Making dir '%s'", path)
            self._store.store_empty_file(path_to_key(path) + SEPARATOR)
            return True
        if not status.is_dir:
            raise PathExistsError(
                f"Can't make directory for path '{path}' since it is a file."
            )
        return True

    def mkdirs(self, path):
        result = True
        for p in lineage(path):
            result = self.mkdir(p) and result
        return result

    def create_parent(self, path):
        """Store the parent's marker so the parent survives its last child."""
        parent = parent_of(path)
        if parent is None:
            return
        key = path_to_key(parent)
        if key:
            self._store.store_empty_file(key + SEPARATOR)
