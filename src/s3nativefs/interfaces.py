from zope.interface import Attribute
from zope.interface import Interface


class IObjectStore(Interface):
    """Primitive operations of a flat key/value object store."""

    def retrieve_metadata(key):
        """Return FileMetadata for the key, or None if not found."""

    def retrieve(key, start=0, end=None):
        """Return the bytes of the inclusive range [start, end] of an object."""

    def store_file(key, local_path, append=False):
        """Upload one local file as the object's content."""

    def store_files(key, local_paths, append=False):
        """Upload the ordered local files as one object's content."""

    def store_empty_file(key):
        """Store a zero-length object."""

    def list(prefix, max_keys=1000, continuation_token=None, recursive=False):
        """Return one PartialListing page for the prefix."""

    def copy(src_key, dst_key):
        """Server-side copy of an object."""

    def delete(key):
        """Delete an object, raising ObjectNotFound if it is absent."""

    def does_object_exist(key):
        """Return True if the object exists."""

    def purge(prefix):
        """Delete every object under the prefix."""

    def dump():
        """Log every key of the store."""


class INativeFileSystem(Interface):
    """Hierarchical filesystem emulated on top of an IObjectStore."""

    scheme = Attribute("URI scheme of the filesystem")
    uri = Attribute("URI of the filesystem root")

    def open(path):
        """Return a seekable binary reader for a file."""

    def create(path, overwrite=True):
        """Return a binary writer replacing the file on close."""

    def append(path):
        """Return a binary writer appending to the file on close."""

    def delete(path, recursive=True):
        """Delete a file or directory, returning False if absent."""

    def rename(src, dst):
        """Move a file or directory, returning False on failed preconditions."""

    def mkdirs(path):
        """Create a directory and all missing ancestors."""

    def list_status(path):
        """Return the sorted FileStatus entries of a directory."""

    def get_file_status(path):
        """Return the FileStatus of a path."""

    def get_working_directory():
        """Return the directory relative paths are resolved against."""

    def set_working_directory(path):
        """Change the directory relative paths are resolved against.

        Raises PathIsFileError when path is an existing file.
        """
