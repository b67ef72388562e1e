from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from audiobox.db.base import Base
from audiobox.errors import RecordNotFoundError, TransientBackendError
from audiobox.models.audio import AudioFile, NewAudioFile
from audiobox.stores.records import SqlRecordStore


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlRecordStore(session_factory)


def new_file(user_id="u1", name="song.mp3", path=None):
    return NewAudioFile(
        user_id=user_id,
        file_name=name,
        file_path=path or f"{user_id}/{name}",
        file_size=2048,
        duration=61.0,
        mime_type="audio/mpeg",
    )


def set_created_at(session_factory, record_id, when):
    db = session_factory()
    try:
        db.get(AudioFile, record_id).created_at = when
        db.commit()
    finally:
        db.close()


@pytest.mark.asyncio
async def test_insert_assigns_id_and_timestamp(store):
    record = await store.insert(new_file())

    assert record.id
    assert record.created_at is not None
    assert record.created_at.utcoffset() == timedelta(0)
    assert record.file_path == "u1/song.mp3"
    assert record.duration == 61.0


@pytest.mark.asyncio
async def test_select_is_owner_scoped_and_newest_first(store, session_factory):
    old = await store.insert(new_file(name="old.mp3"))
    new = await store.insert(new_file(name="new.mp3"))
    await store.insert(new_file(user_id="u2", name="theirs.mp3"))
    set_created_at(session_factory, old.id, datetime(2024, 1, 1, tzinfo=timezone.utc))
    set_created_at(session_factory, new.id, datetime(2024, 6, 1, tzinfo=timezone.utc))

    rows = await store.select_where("u1")

    assert [r.file_name for r in rows] == ["new.mp3", "old.mp3"]


@pytest.mark.asyncio
async def test_duplicate_path_is_a_backend_error(store):
    await store.insert(new_file(path="u1/same.mp3"))

    with pytest.raises(TransientBackendError):
        await store.insert(new_file(name="other.mp3", path="u1/same.mp3"))


@pytest.mark.asyncio
async def test_update_only_changes_the_name(store):
    record = await store.insert(new_file())

    updated = await store.update(record.id, "u1", "renamed.mp3")

    assert updated.file_name == "renamed.mp3"
    assert updated.file_path == record.file_path
    assert updated.file_size == record.file_size
    assert (await store.get(record.id, "u1")).file_name == "renamed.mp3"


@pytest.mark.asyncio
async def test_other_users_cannot_touch_a_record(store):
    record = await store.insert(new_file())

    with pytest.raises(RecordNotFoundError):
        await store.get(record.id, "intruder")
    with pytest.raises(RecordNotFoundError):
        await store.update(record.id, "intruder", "mine.mp3")
    with pytest.raises(RecordNotFoundError):
        await store.delete_by_id(record.id, "intruder")

    assert (await store.get(record.id, "u1")).file_name == "song.mp3"


@pytest.mark.asyncio
async def test_delete_removes_the_row(store):
    record = await store.insert(new_file())

    await store.delete_by_id(record.id, "u1")

    assert await store.select_where("u1") == []
    with pytest.raises(RecordNotFoundError):
        await store.delete_by_id(record.id, "u1")


@pytest.mark.asyncio
async def test_timestamps_read_back_as_utc(store, session_factory):
    record = await store.insert(new_file())
    set_created_at(session_factory, record.id, datetime(2024, 3, 1, 12, 30))

    (row,) = await store.select_where("u1")

    assert row.created_at == datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
