"""Bounded retries around the object store primitives.

Every store operation is looked up by name in a policy table. The table
entry maps the kind of the raised error to a fixed-delay policy; errors
of any other kind, and operations with no entry, are tried once.
"""
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError
from dataclasses import dataclass
from s3nativefs.exceptions import PathNotFoundError
from s3nativefs.exceptions import StorageFailure
from s3nativefs.interfaces import IObjectStore
from s3nativefs.listing import MAX_LISTING_LENGTH
from types import MappingProxyType
from zope.interface import implementer

import enum
import logging
import time


logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 4
DEFAULT_SLEEP_SECONDS = 10

RETRIED_OPERATIONS = (
    "store_file",
    "store_files",
    "store_empty_file",
    "retrieve_metadata",
    "retrieve",
    "purge",
    "dump",
    "does_object_exist",
    "copy",
    "list",
    "delete",
)


class ErrorKind(enum.Enum):
    IO = "io"
    STORAGE = "storage"


def classify(exc):
    """Return the ErrorKind of an exception, or None if it is never retried."""
    if isinstance(exc, PathNotFoundError):
        return None
    if isinstance(exc, (StorageFailure, Boto3Error, BotoCoreError, ClientError)):
        return ErrorKind.STORAGE
    if isinstance(exc, OSError):
        return ErrorKind.IO
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """Retry up to max_retries times, sleeping sleep_seconds in between."""

    max_retries: int
    sleep_seconds: float = 0


TRY_ONCE_THEN_FAIL = RetryPolicy(max_retries=0)


def build_policy_table(
    max_retries=DEFAULT_MAX_RETRIES, sleep_seconds=DEFAULT_SLEEP_SECONDS
):
    """Map every retried operation to the same error-kind policy table."""
    base = RetryPolicy(max_retries, sleep_seconds)
    by_kind = MappingProxyType({kind: base for kind in ErrorKind})
    return MappingProxyType({name: by_kind for name in RETRIED_OPERATIONS})


@implementer(IObjectStore)
class RetryingObjectStore:
    """IObjectStore that re-invokes failed calls on the wrapped store.

    Attributes outside the store interface are proxied without retries.
    """

    def __init__(self, store, policies=None, sleep=time.sleep):
        self._store = store
        self._policies = build_policy_table() if policies is None else policies
        self._sleep = sleep

    def __getattr__(self, name):
        return getattr(self._store, name)

    def __repr__(self):
        return f"<RetryingObjectStore for {self._store!r}>"

    def policy_for(self, operation, exc):
        by_kind = self._policies.get(operation)
        if by_kind is None:
            return TRY_ONCE_THEN_FAIL
        return by_kind.get(classify(exc), TRY_ONCE_THEN_FAIL)

    def _invoke(self, operation, *args, **kwargs):
        func = getattr(self._store, operation)
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                policy = self.policy_for(operation, e)
                if attempt >= policy.max_retries:
                    raise
                attempt += 1
                logger.warning(
                    "Store %s failed: %s. Retry %d/%d in %ss",
                    operation,
                    e,
                    attempt,
                    policy.max_retries,
                    policy.sleep_seconds,
                )
                self._sleep(policy.sleep_seconds)

    def retrieve_metadata(self, key):
        return self._invoke("retrieve_metadata", key)

    def retrieve(self, key, start=0, end=None):
        return self._invoke("retrieve", key, start, end)

    def store_file(self, key, local_path, append=False):
        return self._invoke("store_file", key, local_path, append)

    def store_files(self, key, local_paths, append=False):
        return self._invoke("store_files", key, local_paths, append)

    def store_empty_file(self, key):
        return self._invoke("store_empty_file", key)

    def list(
        self,
        prefix,
        max_keys=MAX_LISTING_LENGTH,
        continuation_token=None,
        recursive=False,
    ):
        return self._invoke("list", prefix, max_keys, continuation_token, recursive)

    def copy(self, src_key, dst_key):
        return self._invoke("copy", src_key, dst_key)

    def delete(self, key):
        return self._invoke("delete", key)

    def does_object_exist(self, key):
        return self._invoke("does_object_exist", key)

    def purge(self, prefix):
        return self._invoke("purge", prefix)

    def dump(self):
        return self._invoke("dump")
