from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError
from moto import mock_aws
from s3nativefs.exceptions import ObjectNotFound
from s3nativefs.exceptions import S3OperationError
from s3nativefs.exceptions import StorageFailure
from s3nativefs.interfaces import IObjectStore
from s3nativefs.retry import build_policy_table
from s3nativefs.retry import classify
from s3nativefs.retry import ErrorKind
from s3nativefs.retry import RETRIED_OPERATIONS
from s3nativefs.retry import RetryingObjectStore
from s3nativefs.retry import RetryPolicy
from s3nativefs.retry import TRY_ONCE_THEN_FAIL
from s3nativefs.s3client import S3Client

import pytest


class FlakyStore:
    """Fails the first ``failures`` calls of every operation with ``error``."""

    bucket_name = "flaky-bucket"

    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = []

    def _call(self, name, result):
        self.calls.append(name)
        if len(self.calls) <= self.failures:
            raise self.error
        return result

    def retrieve_metadata(self, key):
        return self._call("retrieve_metadata", f"meta:{key}")

    def list(self, prefix, max_keys=1000, continuation_token=None, recursive=False):
        return self._call("list", (prefix, max_keys, continuation_token, recursive))

    def delete(self, key):
        return self._call("delete", None)

    def store_files(self, key, local_paths, append=False):
        return self._call("store_files", (key, tuple(local_paths), append))

    def unlisted_operation(self):
        return self._call("unlisted_operation", "done")


def _client_error(code="SlowDown"):
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "HeadObject")


@pytest.fixture
def sleeps():
    return []


def _wrap(store, sleeps, max_retries=4, sleep_seconds=10):
    return RetryingObjectStore(
        store, build_policy_table(max_retries, sleep_seconds), sleep=sleeps.append
    )


class TestInterface:
    def test_interface_provided(self, sleeps):
        assert IObjectStore.providedBy(_wrap(FlakyStore(0, None), sleeps))


class TestClassify:
    def test_storage_failure(self):
        assert classify(S3OperationError("x")) is ErrorKind.STORAGE

    def test_client_error(self):
        assert classify(_client_error()) is ErrorKind.STORAGE

    def test_managed_transfer_error(self):
        assert classify(S3UploadFailedError("x")) is ErrorKind.STORAGE

    def test_io_error(self):
        assert classify(OSError("disk")) is ErrorKind.IO

    def test_not_found_is_never_retried(self):
        assert classify(ObjectNotFound("x")) is None
        assert classify(FileNotFoundError("x")) is None

    def test_unrelated_error(self):
        assert classify(KeyError("x")) is None


class TestPolicyTable:
    def test_defaults(self):
        table = build_policy_table()
        assert set(table) == set(RETRIED_OPERATIONS)
        assert table["list"][ErrorKind.IO] == RetryPolicy(4, 10)
        assert table["delete"][ErrorKind.STORAGE] == RetryPolicy(4, 10)

    def test_table_is_read_only(self):
        table = build_policy_table()
        with pytest.raises(TypeError):
            table["list"] = TRY_ONCE_THEN_FAIL
        with pytest.raises(TypeError):
            table["list"][ErrorKind.IO] = TRY_ONCE_THEN_FAIL


class TestRetries:
    def test_success_needs_no_retry(self, sleeps):
        store = FlakyStore(0, None)
        assert _wrap(store, sleeps).retrieve_metadata("k") == "meta:k"
        assert store.calls == ["retrieve_metadata"]
        assert sleeps == []

    def test_transient_failures_are_retried(self, sleeps):
        store = FlakyStore(3, S3OperationError("slow down"))
        wrapped = _wrap(store, sleeps)
        assert wrapped.list("p", 10, "tok", True) == ("p", 10, "tok", True)
        assert len(store.calls) == 4
        assert sleeps == [10, 10, 10]

    def test_io_failures_are_retried(self, sleeps):
        store = FlakyStore(1, ConnectionResetError("reset"))
        assert _wrap(store, sleeps).delete("k") is None
        assert len(store.calls) == 2

    def test_exhausted_retries_surface_last_error(self, sleeps):
        error = S3OperationError("down")
        store = FlakyStore(100, error)
        with pytest.raises(S3OperationError) as exc_info:
            _wrap(store, sleeps, max_retries=4, sleep_seconds=2).retrieve_metadata("k")
        assert exc_info.value is error
        assert len(store.calls) == 5
        assert sleeps == [2, 2, 2, 2]

    def test_not_found_fails_immediately(self, sleeps):
        store = FlakyStore(100, ObjectNotFound("gone"))
        with pytest.raises(ObjectNotFound):
            _wrap(store, sleeps).delete("k")
        assert len(store.calls) == 1
        assert sleeps == []

    def test_unregistered_error_fails_immediately(self, sleeps):
        store = FlakyStore(100, RuntimeError("bug"))
        with pytest.raises(RuntimeError):
            _wrap(store, sleeps).list("p")
        assert len(store.calls) == 1

    def test_arguments_forwarded(self, sleeps):
        store = FlakyStore(0, None)
        result = _wrap(store, sleeps).store_files("k", ["a", "b"], True)
        assert result == ("k", ("a", "b"), True)

    def test_zero_retries_tries_once(self, sleeps):
        store = FlakyStore(1, S3OperationError("x"))
        with pytest.raises(S3OperationError):
            _wrap(store, sleeps, max_retries=0).list("p")
        assert len(store.calls) == 1


class TestProxy:
    def test_attributes_delegate_to_store(self, sleeps):
        assert _wrap(FlakyStore(0, None), sleeps).bucket_name == "flaky-bucket"

    def test_operations_outside_table_are_tried_once(self, sleeps):
        store = FlakyStore(1, S3OperationError("x"))
        with pytest.raises(S3OperationError):
            _wrap(store, sleeps).unlisted_operation()
        assert len(store.calls) == 1

    def test_policy_for_unknown_operation(self, sleeps):
        wrapped = _wrap(FlakyStore(0, None), sleeps)
        assert wrapped.policy_for("nope", OSError()) is TRY_ONCE_THEN_FAIL

    def test_repr(self, sleeps):
        assert "RetryingObjectStore" in repr(_wrap(FlakyStore(0, None), sleeps))


class TestS3Failures:
    @pytest.fixture
    def missing_bucket(self):
        with mock_aws():
            yield S3Client(bucket_name="missing-bucket", region_name="us-east-1")

    def test_failed_upload_is_retried(self, missing_bucket, sleeps, tmp_path):
        block = tmp_path / "block"
        block.write_bytes(b"data")
        wrapped = _wrap(missing_bucket, sleeps, max_retries=4, sleep_seconds=0)

        with pytest.raises(StorageFailure):
            wrapped.store_files("k", [str(block)])

        assert sleeps == [0, 0, 0, 0]

    def test_failed_list_is_retried(self, missing_bucket, sleeps):
        wrapped = _wrap(missing_bucket, sleeps, max_retries=2, sleep_seconds=0)
        with pytest.raises(StorageFailure):
            wrapped.list("p")
        assert sleeps == [0, 0]
