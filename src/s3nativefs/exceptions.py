"""Errors raised by the filesystem layer.

Each error also derives from the builtin exception a local filesystem
would raise in the same situation, so ``except FileNotFoundError`` and
friends work as expected.
"""


class NativeFileSystemError(OSError):
    """Base class of filesystem errors."""


class PathNotFoundError(NativeFileSystemError, FileNotFoundError):
    """No file or directory at the given path."""


class ObjectNotFound(PathNotFoundError):
    """The object store has no object under the given key."""


class PathExistsError(NativeFileSystemError, FileExistsError):
    """Something already occupies the given path."""


class DirectoryNotEmptyError(NativeFileSystemError):
    """A non-recursive delete was attempted on a populated directory."""


class PathIsDirectoryError(NativeFileSystemError, IsADirectoryError):
    """A file operation was attempted on a directory."""


class PathIsFileError(NativeFileSystemError, NotADirectoryError):
    """A directory operation was attempted on a file."""


class StorageFailure(NativeFileSystemError):
    """The object store failed and retries did not help."""


class S3OperationError(StorageFailure):
    """Wraps boto3 ClientError to avoid leaking AWS infrastructure details."""


class InvalidPathError(ValueError):
    """The path cannot be translated into an object key."""


class UnsupportedConfigurationError(ValueError):
    """A configuration option holds a value that is not supported."""


class StreamClosedError(ValueError):
    """I/O was attempted on a closed stream."""
