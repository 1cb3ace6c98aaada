from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import ClientError
from s3nativefs.exceptions import ObjectNotFound
from s3nativefs.exceptions import S3OperationError
from s3nativefs.interfaces import IObjectStore
from s3nativefs.listing import FileMetadata
from s3nativefs.listing import MAX_LISTING_LENGTH
from s3nativefs.listing import PartialListing
from zope.interface import implementer

import boto3
import contextlib
import logging
import os
import re
import shutil
import tempfile


logger = logging.getLogger(__name__)

# S3 rejects multipart uploads whose non-final parts are smaller than this.
MIN_PART_SIZE = 5 * 1024 * 1024
_NOT_FOUND_CODES = frozenset(("404", "NoSuchKey", "NotFound"))


def _error_code(e):
    return e.response.get("Error", {}).get("Code", "Unknown")


@implementer(IObjectStore)
class S3Client:
    """boto3 implementation of the object store primitives."""

    def __init__(
        self,
        bucket_name,
        prefix="",
        endpoint_url=None,
        region_name=None,
        aws_access_key_id=None,
        aws_secret_access_key=None,
        use_ssl=True,
        addressing_style="auto",
        connect_timeout=60,
        read_timeout=60,
    ):
        self.bucket_name = bucket_name
        self._prefix = prefix.strip("/") if prefix else ""

        if self._prefix:
            if not re.fullmatch(r"[a-zA-Z0-9._/-]*", self._prefix):
                raise ValueError(
                    f"s3-prefix contains invalid characters: {self._prefix!r}. "
                    "Only alphanumeric characters, dots, hyphens, underscores, "
                    "and slashes are allowed."
                )
            if ".." in self._prefix:
                raise ValueError(f"s3-prefix must not contain '..': {self._prefix!r}")

        config = Config(
            s3={"addressing_style": addressing_style},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
        )

        kwargs = {"config": config}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        if region_name:
            kwargs["region_name"] = region_name
        if aws_access_key_id:
            kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        kwargs["use_ssl"] = use_ssl
        if not use_ssl:
            logger.warning(
                "S3 SSL is disabled, data and credentials are transmitted in cleartext"
            )

        self._client = boto3.client("s3", **kwargs)

    def _full_key(self, key):
        if self._prefix:
            return f"{self._prefix}/{key}"
        return key

    def _logical_key(self, full_key):
        if self._prefix:
            return full_key[len(self._prefix) + 1 :]
        return full_key

    def _wrap_client_error(self, e, operation, key):
        """Wrap ClientError in a generic error, logging the original at DEBUG."""
        logger.debug("S3 %s failed for key=%s: %s", operation, key, e)
        if _error_code(e) in _NOT_FOUND_CODES:
            raise ObjectNotFound(f"No such object: {key!r}") from e
        raise S3OperationError(
            f"S3 {operation} failed for key={key}: {_error_code(e)}"
        ) from e

    # -- Metadata --

    def retrieve_metadata(self, key):
        try:
            resp = self._client.head_object(
                Bucket=self.bucket_name, Key=self._full_key(key)
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            self._wrap_client_error(e, "head", key)
        return FileMetadata(
            key=key,
            length=resp["ContentLength"],
            last_modified=resp["LastModified"].timestamp(),
        )

    def does_object_exist(self, key):
        return self.retrieve_metadata(key) is not None

    # -- Content --

    def retrieve(self, key, start=0, end=None):
        byte_range = f"bytes={start}-" if end is None else f"bytes={start}-{end}"
        try:
            resp = self._client.get_object(
                Bucket=self.bucket_name, Key=self._full_key(key), Range=byte_range
            )
        except ClientError as e:
            if _error_code(e) == "InvalidRange":
                return b""
            self._wrap_client_error(e, "get", key)
        with contextlib.closing(resp["Body"]) as body:
            return body.read()

    def store_empty_file(self, key):
        try:
            self._client.put_object(
                Bucket=self.bucket_name, Key=self._full_key(key), Body=b""
            )
        except ClientError as e:
            self._wrap_client_error(e, "put", key)

    def store_file(self, key, local_path, append=False):
        self.store_files(key, [local_path], append)

    def store_files(self, key, local_paths, append=False):
        """Upload the local files, in order, as the content of one object.

        With ``append`` the current content of the object (if any) comes
        first. Multipart upload is used when every part but the last is
        large enough for it, otherwise the parts are concatenated locally.
        """
        existing = self.retrieve_metadata(key) if append else None
        sizes = [os.path.getsize(p) for p in local_paths]
        if existing is not None:
            sizes.insert(0, existing.length)

        if existing is None and len(local_paths) == 1:
            self._upload_file(local_paths[0], key)
        elif len(sizes) > 1 and all(s >= MIN_PART_SIZE for s in sizes[:-1]):
            logger.debug("Multipart upload of %d parts to key=%s", len(sizes), key)
            self._multipart_upload(key, local_paths, existing is not None)
        elif sizes:
            logger.debug("Concatenated upload of %d parts to key=%s", len(sizes), key)
            self._concatenated_upload(key, local_paths, existing is not None)
        else:
            self.store_empty_file(key)

    def _upload_file(self, local_path, key):
        try:
            self._client.upload_file(local_path, self.bucket_name, self._full_key(key))
        except ClientError as e:
            self._wrap_client_error(e, "upload", key)
        except S3UploadFailedError as e:
            # managed transfers report every failure this way
            logger.debug("S3 upload failed for key=%s: %s", key, e)
            raise S3OperationError(f"S3 upload failed for key={key}") from e

    def _concatenated_upload(self, key, local_paths, include_existing):
        target_dir = os.path.dirname(local_paths[0]) if local_paths else None
        fd, tmp_path = tempfile.mkstemp(dir=target_dir, suffix=".upload.tmp")
        try:
            with os.fdopen(fd, "wb") as out:
                if include_existing:
                    try:
                        self._client.download_fileobj(
                            self.bucket_name, self._full_key(key), out
                        )
                    except ClientError as e:
                        self._wrap_client_error(e, "download", key)
                for path in local_paths:
                    with open(path, "rb") as src:
                        shutil.copyfileobj(src, out)
            self._upload_file(tmp_path, key)
        finally:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)

    def _multipart_upload(self, key, local_paths, include_existing):
        full_key = self._full_key(key)
        try:
            upload_id = self._client.create_multipart_upload(
                Bucket=self.bucket_name, Key=full_key
            )["UploadId"]
        except ClientError as e:
            self._wrap_client_error(e, "upload", key)

        parts = []
        try:
            if include_existing:
                resp = self._client.upload_part_copy(
                    Bucket=self.bucket_name,
                    Key=full_key,
                    UploadId=upload_id,
                    PartNumber=1,
                    CopySource={"Bucket": self.bucket_name, "Key": full_key},
                )
                parts.append({"ETag": resp["CopyPartResult"]["ETag"], "PartNumber": 1})
            for path in local_paths:
                number = len(parts) + 1
                with open(path, "rb") as body:
                    resp = self._client.upload_part(
                        Bucket=self.bucket_name,
                        Key=full_key,
                        UploadId=upload_id,
                        PartNumber=number,
                        Body=body,
                    )
                parts.append({"ETag": resp["ETag"], "PartNumber": number})
            self._client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=full_key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except ClientError as e:
            self._abort_multipart_upload(full_key, upload_id)
            self._wrap_client_error(e, "upload", key)
        except BaseException:
            self._abort_multipart_upload(full_key, upload_id)
            raise

    def _abort_multipart_upload(self, full_key, upload_id):
        try:
            self._client.abort_multipart_upload(
                Bucket=self.bucket_name, Key=full_key, UploadId=upload_id
            )
        except ClientError:
            logger.warning(
                "Failed to abort multipart upload %s", upload_id, exc_info=True
            )

    # -- Namespace --

    def list(
        self,
        prefix,
        max_keys=MAX_LISTING_LENGTH,
        continuation_token=None,
        recursive=False,
    ):
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        kwargs = {
            "Bucket": self.bucket_name,
            "Prefix": self._full_key(prefix),
            "MaxKeys": max_keys,
        }
        if not recursive:
            kwargs["Delimiter"] = "/"
        if continuation_token is not None:
            kwargs["ContinuationToken"] = continuation_token
        try:
            resp = self._client.list_objects_v2(**kwargs)
        except ClientError as e:
            self._wrap_client_error(e, "list", prefix)

        files = tuple(
            FileMetadata(
                key=self._logical_key(obj["Key"]),
                length=obj["Size"],
                last_modified=obj["LastModified"].timestamp(),
            )
            for obj in resp.get("Contents", [])
        )
        common_prefixes = tuple(
            self._logical_key(cp["Prefix"]) for cp in resp.get("CommonPrefixes", [])
        )
        token = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        return PartialListing(files, common_prefixes, token)

    def iter_keys(self, prefix=""):
        """Yield every logical key starting with prefix."""
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(
                Bucket=self.bucket_name, Prefix=self._full_key(prefix)
            ):
                for obj in page.get("Contents", []):
                    yield self._logical_key(obj["Key"])
        except ClientError as e:
            self._wrap_client_error(e, "list", prefix)

    def copy(self, src_key, dst_key):
        try:
            self._client.copy(
                {"Bucket": self.bucket_name, "Key": self._full_key(src_key)},
                self.bucket_name,
                self._full_key(dst_key),
            )
        except ClientError as e:
            self._wrap_client_error(e, "copy", src_key)

    def delete(self, key):
        if self.retrieve_metadata(key) is None:
            raise ObjectNotFound(f"No such object: {key!r}")
        try:
            self._client.delete_object(Bucket=self.bucket_name, Key=self._full_key(key))
        except ClientError as e:
            self._wrap_client_error(e, "delete", key)

    def purge(self, prefix):
        batch = []
        for key in self.iter_keys(prefix):
            batch.append({"Key": self._full_key(key)})
            if len(batch) == MAX_LISTING_LENGTH:
                self._delete_batch(batch, prefix)
                batch = []
        if batch:
            self._delete_batch(batch, prefix)

    def _delete_batch(self, batch, prefix):
        try:
            self._client.delete_objects(
                Bucket=self.bucket_name, Delete={"Objects": batch, "Quiet": True}
            )
        except ClientError as e:
            self._wrap_client_error(e, "purge", prefix)

    def dump(self):
        count = 0
        logger.info("Contents of bucket %s:", self.bucket_name)
        for key in self.iter_keys():
            logger.info("  %s", key)
            count += 1
        return count
