"""Tests for the content stores."""
import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from errors import FileTooLarge, StorageError
from storage import LocalContentStore, MemoryContentStore, S3ContentStore, build_content_store

KEY = "transfer/rooms/AB3D5F/1700000000000__hello.txt"


class TestMemoryContentStore:
    def test_put_list_open(self, store, clock):
        obj = store.put(KEY, io.BytesIO(b"hello"))
        assert obj.size == 5
        assert obj.uploaded_at == clock()

        listed = store.list("transfer/rooms/AB3D5F/")
        assert [o.key for o in listed] == [KEY]
        assert store.list("transfer/rooms/OTHER1/") == []
        assert store.open(KEY).read() == b"hello"
        assert store.open("missing") is None

    def test_rejects_oversized(self, clock):
        small = MemoryContentStore(clock=clock, max_size=3)
        with pytest.raises(FileTooLarge):
            small.put(KEY, io.BytesIO(b"hello"))
        assert small.list("") == []

    def test_urls_point_at_files_route(self, store):
        assert store.url(KEY, "http://testserver/") == f"http://testserver/files/{KEY}"
        assert store.url(KEY, "http://testserver", download=True).endswith("?download=1")


class TestLocalContentStore:
    def test_put_list_open(self, tmp_path, clock):
        local = LocalContentStore(str(tmp_path), clock=clock)
        obj = local.put(KEY, io.BytesIO(b"hello"))
        assert obj.size == 5
        assert (tmp_path / KEY).read_bytes() == b"hello"

        listed = local.list("transfer/rooms/AB3D5F/")
        assert len(listed) == 1
        assert listed[0].key == KEY
        assert listed[0].uploaded_at == pytest.approx(clock())

        with local.open(KEY) as fh:
            assert fh.read() == b"hello"

    def test_missing_prefix_lists_nothing(self, tmp_path, clock):
        local = LocalContentStore(str(tmp_path), clock=clock)
        assert local.list("transfer/rooms/ZZZZZZ/") == []
        assert local.open("transfer/rooms/ZZZZZZ/nothing") is None

    def test_keys_cannot_escape_root(self, tmp_path, clock):
        local = LocalContentStore(str(tmp_path / "root"), clock=clock)
        with pytest.raises(StorageError):
            local.put("../escape.txt", io.BytesIO(b"x"))
        assert local.open("../../etc/passwd") is None
        assert local.list("../") == []

    def test_rejects_oversized(self, tmp_path, clock):
        local = LocalContentStore(str(tmp_path), clock=clock, max_size=2)
        with pytest.raises(FileTooLarge):
            local.put(KEY, io.BytesIO(b"hello"))
        assert not (tmp_path / KEY).exists()


class TestS3ContentStore:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": KEY, "Size": 5, "LastModified": datetime(2023, 11, 14, tzinfo=timezone.utc)}]},
            {},
        ]
        client.get_paginator.return_value = paginator
        client.generate_presigned_url.return_value = "https://bucket.s3/presigned"
        return client

    @pytest.fixture
    def s3_store(self, client, clock):
        return S3ContentStore("test-bucket", client=client, clock=clock)

    def test_put_uploads_stream(self, s3_store, client, clock):
        stream = io.BytesIO(b"hello")
        obj = s3_store.put(KEY, stream)
        client.upload_fileobj.assert_called_once_with(stream, "test-bucket", KEY)
        assert obj.size == 5
        assert obj.uploaded_at == clock()

    def test_list_paginates(self, s3_store, client):
        objects = s3_store.list("transfer/rooms/AB3D5F/")
        client.get_paginator.assert_called_once_with("list_objects_v2")
        client.get_paginator.return_value.paginate.assert_called_once_with(
            Bucket="test-bucket", Prefix="transfer/rooms/AB3D5F/"
        )
        assert [o.key for o in objects] == [KEY]
        assert objects[0].uploaded_at == datetime(2023, 11, 14, tzinfo=timezone.utc).timestamp()

    def test_presigned_urls(self, s3_store, client):
        assert s3_store.url(KEY, "http://ignored") == "https://bucket.s3/presigned"
        client.generate_presigned_url.assert_called_with(
            "get_object", Params={"Bucket": "test-bucket", "Key": KEY}, ExpiresIn=600
        )

        s3_store.url(KEY, "http://ignored", download=True)
        params = client.generate_presigned_url.call_args.kwargs["Params"]
        assert params["ResponseContentDisposition"] == "attachment; filename*=UTF-8''hello.txt"

    def test_client_errors_become_storage_errors(self, s3_store, client):
        client.upload_fileobj.side_effect = ClientError({"Error": {"Code": "500"}}, "PutObject")
        with pytest.raises(StorageError):
            s3_store.put(KEY, io.BytesIO(b"x"))

    def test_open_missing_key(self, s3_store, client):
        client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        assert s3_store.open(KEY) is None

    def test_rejects_oversized(self, client, clock):
        s3_store = S3ContentStore("test-bucket", client=client, clock=clock, max_size=1)
        with pytest.raises(FileTooLarge):
            s3_store.put(KEY, io.BytesIO(b"hello"))
        client.upload_fileobj.assert_not_called()


def test_build_content_store(tmp_path, monkeypatch):
    assert isinstance(build_content_store("memory"), MemoryContentStore)
    monkeypatch.setattr("storage.UPLOAD_DIR", str(tmp_path))
    assert isinstance(build_content_store("local"), LocalContentStore)
    with pytest.raises(ValueError):
        build_content_store("s3")
    with pytest.raises(ValueError):
        build_content_store("ftp")
