import asyncio

import pytest
from fastapi.testclient import TestClient

from audiobox.api import deps
from audiobox.main import app
from audiobox.stores.blobs import LocalBlobStore
from tests.fakes import InMemoryBlobStore


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore("audio-files", root=tmp_path, signing_secret="storage-secret", base_url="")


@pytest.fixture
def client(store):
    app.dependency_overrides[deps.get_blob_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def signed(store, path, ttl=60):
    return asyncio.run(store.issue_signed_url(path, ttl))


def test_signed_url_serves_the_blob(client, store):
    asyncio.run(store.put("u1/a.mp3", b"ID3-bytes", "audio/mpeg"))

    response = client.get(signed(store, "u1/a.mp3"))

    assert response.status_code == 200
    assert response.content == b"ID3-bytes"
    assert response.headers["content-type"] == "audio/mpeg"


def test_tampered_signature_is_forbidden(client, store):
    asyncio.run(store.put("u1/a.mp3", b"x", "audio/mpeg"))
    url = signed(store, "u1/a.mp3")

    response = client.get(url.replace("u1/a.mp3", "u1/b.mp3"))

    assert response.status_code == 403


def test_expired_url_is_forbidden(client, store):
    asyncio.run(store.put("u1/a.mp3", b"x", "audio/mpeg"))

    response = client.get(signed(store, "u1/a.mp3", ttl=-1))

    assert response.status_code == 403


def test_missing_blob_is_not_found(client, store):
    response = client.get(signed(store, "u1/gone.mp3"))

    assert response.status_code == 404


def test_object_store_backends_do_not_serve_blobs():
    app.dependency_overrides[deps.get_blob_store] = lambda: InMemoryBlobStore()
    try:
        response = TestClient(app).get("/api/storage/u1/a.mp3", params={"expires": 1, "signature": "x"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404
