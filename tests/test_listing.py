from moto import mock_aws
from s3nativefs.listing import iter_files
from s3nativefs.listing import iter_pages
from s3nativefs.listing import PartialListing
from s3nativefs.s3client import S3Client

import boto3
import pytest


@pytest.fixture
def s3_env():
    with mock_aws():
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="test-bucket")
        yield


@pytest.fixture
def client(s3_env):
    return S3Client(bucket_name="test-bucket", region_name="us-east-1")


def _populate(client, keys):
    for key in keys:
        client.store_empty_file(key)


def _merge(pages):
    files = []
    prefixes = []
    for page in pages:
        files.extend(meta.key for meta in page.files)
        prefixes.extend(page.common_prefixes)
    return files, prefixes


class TestPartialListing:
    def test_empty_page(self):
        assert PartialListing().is_empty
        assert PartialListing().continuation_token is None

    def test_page_with_prefix_is_not_empty(self):
        assert not PartialListing(common_prefixes=("a/",)).is_empty


class TestPagination:
    def test_all_entries_across_pages(self, client):
        keys = [f"dir/file-{i:02d}" for i in range(10)]
        _populate(client, keys)

        found = [
            meta.key for meta in iter_files(client, "dir", recursive=True, page_size=3)
        ]
        assert sorted(found) == keys
        assert len(found) == len(set(found))

    def test_pages_chain_until_token_is_none(self, client):
        _populate(client, [f"dir/f{i}" for i in range(7)])

        pages = list(iter_pages(client, "dir", recursive=True, page_size=3))

        assert [len(p.files) for p in pages] == [3, 3, 1]
        assert all(p.continuation_token is not None for p in pages[:-1])
        assert pages[-1].continuation_token is None

    def test_single_page_when_under_limit(self, client):
        _populate(client, ["dir/a", "dir/b"])
        pages = list(iter_pages(client, "dir", recursive=True))
        assert len(pages) == 1
        assert pages[0].continuation_token is None

    def test_empty_prefix_yields_one_empty_page(self, client):
        pages = list(iter_pages(client, "nothing", recursive=True))
        assert len(pages) == 1
        assert pages[0].is_empty

    def test_iter_files(self, client):
        _populate(client, ["dir/a", "dir/sub/b"])
        keys = [meta.key for meta in iter_files(client, "dir", recursive=True)]
        assert keys == ["dir/a", "dir/sub/b"]


class TestFolding:
    def test_non_recursive_folds_next_segment(self, client):
        _populate(client, ["dir/a", "dir/sub/x", "dir/sub/y", "dir/other/z"])

        files, prefixes = _merge(iter_pages(client, "dir", recursive=False))

        assert files == ["dir/a"]
        assert sorted(prefixes) == ["dir/other/", "dir/sub/"]

    def test_recursive_lists_flat(self, client):
        _populate(client, ["dir/a", "dir/sub/x", "dir/sub/y"])

        files, prefixes = _merge(iter_pages(client, "dir", recursive=True))

        assert files == [
            "dir/a",
            "dir/sub/x",
            "dir/sub/y",
        ]
        assert prefixes == []

    def test_prefix_does_not_match_sibling_names(self, client):
        _populate(client, ["dir/a", "dirt/b"])
        keys = [meta.key for meta in iter_files(client, "dir", recursive=True)]
        assert keys == ["dir/a"]
