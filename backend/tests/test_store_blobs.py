import time
from unittest.mock import MagicMock
from urllib.parse import parse_qs, unquote, urlparse

import pytest
from botocore.exceptions import ClientError

from audiobox.errors import BlobExistsError, TransientBackendError
from audiobox.stores.blobs import LocalBlobStore, S3BlobStore


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore("audio-files", root=tmp_path, signing_secret="test-secret", base_url="http://api.test/")


def signed_parts(url):
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    path = unquote(parsed.path[len("/api/storage/"):])
    return path, int(query["expires"][0]), query["signature"][0]


@pytest.mark.asyncio
async def test_put_writes_below_bucket(store, tmp_path):
    await store.put("u1/1-abc.mp3", b"ID3", "audio/mpeg")

    assert (tmp_path / "audio-files" / "u1" / "1-abc.mp3").read_bytes() == b"ID3"


@pytest.mark.asyncio
async def test_put_never_overwrites(store, tmp_path):
    await store.put("u1/a.mp3", b"first", "audio/mpeg")

    with pytest.raises(BlobExistsError):
        await store.put("u1/a.mp3", b"second", "audio/mpeg")

    assert store.resolve("u1/a.mp3").read_bytes() == b"first"


@pytest.mark.asyncio
async def test_put_with_overwrite_replaces(store):
    await store.put("u1/a.mp3", b"first", "audio/mpeg")
    await store.put("u1/a.mp3", b"second", "audio/mpeg", overwrite=True)

    assert store.resolve("u1/a.mp3").read_bytes() == b"second"


@pytest.mark.asyncio
async def test_remove_is_idempotent(store):
    await store.put("u1/a.mp3", b"x", "audio/mpeg")

    await store.remove("u1/a.mp3")
    await store.remove("u1/a.mp3")

    assert not store.resolve("u1/a.mp3").exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", ["../etc/passwd", "/abs/path.mp3", "u1//a.mp3", "u1/./a.mp3", ""])
async def test_paths_escaping_the_bucket_are_refused(store, bad):
    with pytest.raises(TransientBackendError):
        await store.put(bad, b"x", "audio/mpeg")


@pytest.mark.asyncio
async def test_signed_url_verifies(store):
    url = await store.issue_signed_url("u1/my take.mp3", 60)

    assert url.startswith("http://api.test/api/storage/")
    path, expires, signature = signed_parts(url)
    assert path == "u1/my take.mp3"
    assert store.verify_signature(path, expires, signature)


@pytest.mark.asyncio
async def test_tampered_signed_url_is_rejected(store):
    path, expires, signature = signed_parts(await store.issue_signed_url("u1/a.mp3", 60))

    assert not store.verify_signature("u1/b.mp3", expires, signature)
    assert not store.verify_signature(path, expires + 1, signature)
    assert not store.verify_signature(path, expires, "0" * len(signature))


@pytest.mark.asyncio
async def test_signed_url_expires(store):
    path, expires, signature = signed_parts(await store.issue_signed_url("u1/a.mp3", 60))

    assert store.verify_signature(path, expires, signature, now=time.time() + 30)
    assert not store.verify_signature(path, expires, signature, now=time.time() + 120)


@pytest.mark.asyncio
async def test_signatures_differ_per_secret(tmp_path):
    a = LocalBlobStore("audio-files", root=tmp_path, signing_secret="one", base_url="")
    b = LocalBlobStore("audio-files", root=tmp_path, signing_secret="two", base_url="")

    path, expires, signature = signed_parts(await a.issue_signed_url("u1/a.mp3", 60))

    assert not b.verify_signature(path, expires, signature)


@pytest.fixture
def s3_store():
    store = S3BlobStore("audio-files", endpoint="http://minio.test:9000", access_key="k", secret_key="s")
    store.client = MagicMock()
    return store


@pytest.mark.asyncio
async def test_s3_put_refuses_existing_keys(s3_store):
    await s3_store.put("u1/a.mp3", b"data", "audio/mpeg")

    kwargs = s3_store.client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "audio-files"
    assert kwargs["Key"] == "u1/a.mp3"
    assert kwargs["ContentType"] == "audio/mpeg"
    assert kwargs["IfNoneMatch"] == "*"


@pytest.mark.asyncio
async def test_s3_precondition_failure_maps_to_exists(s3_store):
    s3_store.client.put_object.side_effect = ClientError(
        {"Error": {"Code": "PreconditionFailed", "Message": "At least one of the pre-conditions failed"}},
        "PutObject",
    )

    with pytest.raises(BlobExistsError):
        await s3_store.put("u1/a.mp3", b"data", "audio/mpeg")


@pytest.mark.asyncio
async def test_s3_errors_are_transient(s3_store):
    s3_store.client.delete_object.side_effect = ClientError(
        {"Error": {"Code": "InternalError", "Message": "We encountered an internal error"}},
        "DeleteObject",
    )

    with pytest.raises(TransientBackendError):
        await s3_store.remove("u1/a.mp3")


@pytest.mark.asyncio
async def test_s3_signed_url_uses_presigned_get(s3_store):
    s3_store.client.generate_presigned_url.return_value = "https://minio.test/audio-files/u1/a.mp3?X-Amz-Signature=abc"

    url = await s3_store.issue_signed_url("u1/a.mp3", 3600)

    assert "X-Amz-Signature" in url
    s3_store.client.generate_presigned_url.assert_called_once_with(
        ClientMethod="get_object",
        Params={"Bucket": "audio-files", "Key": "u1/a.mp3"},
        ExpiresIn=3600,
    )
