from dataclasses import dataclass


# Largest page the store hands out per list request.
MAX_LISTING_LENGTH = 1000
# Largest object a single store operation handles.
MAX_FILE_SIZE = 5 * 1024 * 1024 * 1024


@dataclass(frozen=True)
class FileMetadata:
    """Length and modification time (epoch seconds) of one object."""

    key: str
    length: int
    last_modified: float


@dataclass(frozen=True)
class PartialListing:
    """One page of a listing.

    ``continuation_token`` is None exactly when no further pages remain.
    """

    files: tuple = ()
    common_prefixes: tuple = ()
    continuation_token: str = None

    @property
    def is_empty(self):
        return not self.files and not self.common_prefixes


def iter_pages(store, prefix, recursive=False, page_size=MAX_LISTING_LENGTH):
    """Yield listing pages under prefix, chaining continuation tokens."""
    token = None
    while True:
        page = store.list(prefix, page_size, token, recursive)
        yield page
        token = page.continuation_token
        if token is None:
            return


def iter_files(store, prefix, recursive=False, page_size=MAX_LISTING_LENGTH):
    for page in iter_pages(store, prefix, recursive, page_size):
        yield from page.files
