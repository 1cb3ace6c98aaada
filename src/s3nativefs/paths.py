"""Translation between absolute filesystem paths and object keys.

An object key is the path without its leading separator: ``/a/b.txt``
is stored under ``a/b.txt`` and the root maps to the empty key.
"""
from pathlib import PurePosixPath
from s3nativefs.exceptions import InvalidPathError
from urllib.parse import urlsplit

import posixpath


SEPARATOR = "/"
ROOT = PurePosixPath(SEPARATOR)


def to_path(path):
    """Coerce a str, ``scheme://bucket/...`` URI or PurePosixPath into a path."""
    if isinstance(path, PurePosixPath):
        text = str(path)
    else:
        text = str(path)
        if "://" in text:
            text = urlsplit(text).path or SEPARATOR
    if text.startswith(SEPARATOR):
        # normpath keeps a POSIX "//" root, which is meaningless for keys
        return PurePosixPath(SEPARATOR + posixpath.normpath(text).lstrip(SEPARATOR))
    return PurePosixPath(text)


def path_to_key(path):
    p = to_path(path)
    if not p.is_absolute():
        raise InvalidPathError(f"Path must be absolute: {path}")
    return str(p)[1:]


def key_to_path(key):
    return PurePosixPath(SEPARATOR + key)


def resolve(path, working_directory):
    """Make a path absolute against the working directory."""
    p = to_path(path)
    if p.is_absolute():
        return p
    return to_path(str(PurePosixPath(working_directory) / p))


def parent_of(path):
    """Return the parent directory, or None for the root."""
    p = to_path(path)
    if p == ROOT:
        return None
    return p.parent


def lineage(path):
    """Return the path and all of its ancestors, root first."""
    p = to_path(path)
    return [*reversed(p.parents), p]
