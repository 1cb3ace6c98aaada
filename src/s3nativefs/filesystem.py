from dataclasses import dataclass
from s3nativefs.directory import DirectoryEmulator
from s3nativefs.directory import FOLDER_SUFFIX
from s3nativefs.directory import MARKER_SUFFIXES
from s3nativefs.directory import new_directory
from s3nativefs.directory import new_file
from s3nativefs.exceptions import DirectoryNotEmptyError
from s3nativefs.exceptions import PathExistsError
from s3nativefs.exceptions import PathIsDirectoryError
from s3nativefs.exceptions import PathIsFileError
from s3nativefs.exceptions import PathNotFoundError
from s3nativefs.input import BlockInputStream
from s3nativefs.input import check_algorithm_version
from s3nativefs.input import DEFAULT_ALGORITHM_VERSION
from s3nativefs.input import DEFAULT_READ_BUFFER_SIZE
from s3nativefs.input import MAX_READ_BUFFER_SIZE
from s3nativefs.interfaces import INativeFileSystem
from s3nativefs.listing import iter_files
from s3nativefs.listing import iter_pages
from s3nativefs.output import BlockOutputStream
from s3nativefs.output import DEFAULT_BLOCK_SIZE
from s3nativefs.paths import key_to_path
from s3nativefs.paths import parent_of
from s3nativefs.paths import path_to_key
from s3nativefs.paths import resolve
from s3nativefs.paths import ROOT
from s3nativefs.paths import SEPARATOR
from s3nativefs.retry import build_policy_table
from s3nativefs.retry import DEFAULT_MAX_RETRIES
from s3nativefs.retry import DEFAULT_SLEEP_SECONDS
from s3nativefs.retry import RetryingObjectStore
from s3nativefs.s3client import S3Client
from zope.interface import implementer

import logging


logger = logging.getLogger(__name__)

SCHEME = "s3n"


@dataclass
class FileSystemOptions:
    """Tunables of a NativeS3FileSystem. ``buffer_dir`` None means the temp dir."""

    block_size: int = DEFAULT_BLOCK_SIZE
    read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    sleep_seconds: float = DEFAULT_SLEEP_SECONDS
    algorithm_version: int = DEFAULT_ALGORITHM_VERSION
    buffer_dir: str = None


def create_default_store(bucket_name, options=None, **s3_kwargs):
    """Return an S3Client for the bucket wrapped in the retry policies."""
    options = options or FileSystemOptions()
    return RetryingObjectStore(
        S3Client(bucket_name, **s3_kwargs),
        build_policy_table(options.max_retries, options.sleep_seconds),
    )


@implementer(INativeFileSystem)
class NativeS3FileSystem:
    """Hierarchical filesystem on top of a flat object store.

    Paths may be given as strings, ``PurePosixPath`` objects or
    ``s3n://bucket/...`` URIs. Relative paths are resolved against the
    working directory, which starts at the root.
    """

    scheme = SCHEME

    def __init__(self, store, bucket="", options=None):
        self.options = options or FileSystemOptions()
        self.store = store
        self.uri = f"{SCHEME}://{bucket}"
        self.algorithm_version = check_algorithm_version(
            self.options.algorithm_version
        )
        self.read_buffer_size = self.options.read_buffer_size
        # large buffers are held in memory by every open reader
        if self.read_buffer_size >= MAX_READ_BUFFER_SIZE:
            logger.warning(
                "read buffer size is %d, it's too large and will be suppressed "
                "down to %d automatically.",
                self.read_buffer_size,
                MAX_READ_BUFFER_SIZE,
            )
            self.read_buffer_size = MAX_READ_BUFFER_SIZE
        self._directories = DirectoryEmulator(store)
        self._working_directory = ROOT

    @classmethod
    def for_bucket(cls, bucket_name, options=None, **s3_kwargs):
        """Filesystem over an S3 bucket with the default retry policies."""
        store = create_default_store(bucket_name, options, **s3_kwargs)
        return cls(store, bucket_name, options)

    def __repr__(self):
        return f"<NativeS3FileSystem {self.uri}>"

    # -- Paths --

    def _resolve(self, path):
        return resolve(path, self._working_directory)

    def get_working_directory(self):
        return self._working_directory

    def set_working_directory(self, path):
        path = self._resolve(path)
        if self.is_file(path):
            raise PathIsFileError(f"'{path}' is not a directory")
        self._working_directory = path

    def qualify(self, path):
        return f"{self.uri}{self._resolve(path)}"

    # -- Status --

    def get_file_status(self, path):
        return self._directories.get_file_status(self._resolve(path))

    def exists(self, path):
        try:
            self.get_file_status(path)
        except PathNotFoundError:
            return False
        return True

    def is_directory(self, path):
        try:
            return self.get_file_status(path).is_dir
        except PathNotFoundError:
            return False

    def is_file(self, path):
        try:
            return self.get_file_status(path).is_file
        except PathNotFoundError:
            return False

    def list_status(self, path):
        """Return the sorted entries of a directory, or the file itself.

        A directory with n direct children costs about n / 1000 + 2
        requests to the store.
        """
        path = self._resolve(path)
        key = path_to_key(path)

        if key:
            meta = self.store.retrieve_metadata(key)
            if meta is not None:
                return [new_file(meta, path)]

        own_marker = key + SEPARATOR
        entries = {}
        for page in iter_pages(self.store, key, recursive=False):
            for meta in page.files:
                if meta.key == own_marker:
                    continue
                if meta.key.endswith(FOLDER_SUFFIX):
                    status = new_directory(key_to_path(meta.key[: -len(FOLDER_SUFFIX)]))
                else:
                    status = new_file(meta, key_to_path(meta.key))
                entries.setdefault(status.path, status)
            for prefix in page.common_prefixes:
                status = new_directory(key_to_path(prefix.rstrip(SEPARATOR)))
                entries.setdefault(status.path, status)
        return sorted(entries.values())

    def mkdirs(self, path):
        return self._directories.mkdirs(self._resolve(path))

    # -- Streams --

    def open(self, path):
        path = self._resolve(path)
        status = self.get_file_status(path)
        if status.is_dir:
            raise PathIsDirectoryError(f"'{path}' is a directory")
        logger.info("Opening '%s' for reading", path)
        return BlockInputStream(
            self.store,
            path_to_key(path),
            status.length,
            buffer_size=self.read_buffer_size,
            algorithm_version=self.algorithm_version,
        )

    def create(self, path, overwrite=True):
        path = self._resolve(path)
        if not overwrite and self.exists(path):
            raise PathExistsError(f"File already exists: {path}")
        return self._new_output_stream(path, append=False)

    def append(self, path):
        return self._new_output_stream(self._resolve(path), append=True)

    def _new_output_stream(self, path, append):
        key = path_to_key(path)
        if not key:
            raise PathIsDirectoryError(f"'{path}' is a directory")
        return BlockOutputStream(
            self.store,
            key,
            append=append,
            block_size=self.options.block_size,
            buffer_dir=self.options.buffer_dir,
        )

    # -- Mutations --

    def delete(self, path, recursive=True):
        path = self._resolve(path)
        try:
            status = self.get_file_status(path)
        except PathNotFoundError:
            logger.debug(
                "Delete called for '%s' but file does not exist, so returning false",
                path,
            )
            return False

        key = path_to_key(path)
        if status.is_file:
            logger.debug("Deleting file '%s'", path)
            self._directories.create_parent(path)
            self.store.delete(key)
            return True

        if not recursive and self.list_status(path):
            raise DirectoryNotEmptyError(
                f"Can not delete {path} as it is a not empty directory "
                "and recurse option is false"
            )
        self._directories.create_parent(path)
        logger.debug("Deleting directory '%s'", path)
        for meta in iter_files(self.store, key, recursive=True):
            self.store.delete(meta.key)
        if key:
            for suffix in MARKER_SUFFIXES:
                self._delete_marker(key + suffix)
        return True

    def _delete_marker(self, key):
        try:
            self.store.delete(key)
        except PathNotFoundError:
            pass

    def rename(self, src, dst):
        """Move src to dst, or into dst when dst is a directory.

        Built from copy and delete, so a failure part way through a
        directory rename leaves part of the tree at both places.
        """
        src = self._resolve(src)
        dst = self._resolve(dst)
        src_key = path_to_key(src)

        if not src_key:
            logger.debug("Cannot rename the root of the filesystem")
            return False

        preamble = f"Renaming '{src}' to '{dst}' - "

        try:
            dst_status = self.get_file_status(dst)
        except PathNotFoundError:
            logger.debug("%susing dst as output destination", preamble)
            dst_key = path_to_key(dst)
            try:
                if not self.get_file_status(parent_of(dst)).is_dir:
                    logger.debug("%sreturning false as dst parent is a file", preamble)
                    return False
            except PathNotFoundError:
                logger.debug("%sreturning false as dst parent does not exist", preamble)
                return False
        else:
            if dst_status.is_file:
                logger.debug("%sreturning false as dst is an existing file", preamble)
                return False
            logger.debug("%susing dst as output directory", preamble)
            dst_key = path_to_key(dst / src.name)

        try:
            src_status = self.get_file_status(src)
        except PathNotFoundError:
            logger.debug("%sreturning false as src does not exist", preamble)
            return False

        if dst_key == src_key:
            logger.debug("%ssrc and dst are the same", preamble)
            return True
        if dst_key.startswith(src_key + SEPARATOR):
            logger.debug("%sreturning false as dst is inside src", preamble)
            return False

        self._directories.create_parent(src)
        if src_status.is_file:
            logger.debug("%ssrc is file, so doing copy then delete", preamble)
            self.store.copy(src_key, dst_key)
            self.store.delete(src_key)
            return True

        logger.debug("%ssrc is directory, so copying contents", preamble)
        self.store.store_empty_file(dst_key + SEPARATOR)
        keys_to_delete = []
        for meta in iter_files(self.store, src_key, recursive=True):
            keys_to_delete.append(meta.key)
            self.store.copy(meta.key, dst_key + meta.key[len(src_key) :])

        logger.debug("%sall files in src copied, now removing src files", preamble)
        for key in keys_to_delete:
            self.store.delete(key)
        self._delete_marker(src_key + FOLDER_SUFFIX)
        logger.debug("%sdone", preamble)
        return True
