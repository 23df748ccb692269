"""Tests for streaming ingest into a repository."""

import hashlib
import os

import anyio
import pytest

from blobcas import (
    AliasConflict,
    ContentIngestor,
    InvalidAlias,
    NoContent,
    NotFound,
    ProtectedEntry,
    StorageCommitFailure,
    StreamReadFailure,
)
from tests.conftest import HELLO, HELLO_ID, chunks, entry_names, staged_files

pytestmark = pytest.mark.anyio


async def read(repository, identifier: str) -> bytes:
    async with await repository.open(identifier) as file:
        return await file.read()


@pytest.mark.parametrize(
    "content",
    [HELLO, b"\x00", bytes(range(256)) * 1000, os.urandom(3 * 1024 * 1024 + 7)],
    ids=["hello", "nul", "pattern", "large"],
)
async def test_ingest_then_fetch_returns_content(ingestor, repository, data_dir, content):
    entry = await ingestor.ingest(chunks(content))

    assert await read(repository, entry.identifier) == content
    assert staged_files(data_dir) == []


async def test_ingest_hello(ingestor, data_dir):
    entry = await ingestor.ingest(chunks(b"hel", b"lo"))

    assert entry.identifier == HELLO_ID
    assert entry.size == len(HELLO)
    assert entry_names(data_dir) == [HELLO_ID]


async def test_ingest_twice_returns_same_identifier(ingestor, data_dir):
    first = await ingestor.ingest(chunks(HELLO))
    second = await ingestor.ingest(chunks(HELLO))

    assert first.identifier == second.identifier == HELLO_ID
    assert not first.is_duplicate
    assert second.is_duplicate
    assert entry_names(data_dir) == [HELLO_ID]


async def test_concurrent_ingests_converge(ingestor, data_dir):
    world_id = hashlib.sha256(b"world").hexdigest()[:10]
    results = []

    async def ingest(content, alias):
        results.append(await ingestor.ingest(chunks(content[:2], content[2:]), alias))

    async with anyio.create_task_group() as tg:
        for _ in range(10):
            tg.start_soon(ingest, HELLO, None)
            tg.start_soon(ingest, b"world", "abc123")

    assert {entry.identifier for entry in results} == {HELLO_ID, world_id}
    assert len(results) == 20
    assert entry_names(data_dir) == sorted([HELLO_ID, world_id, f"{world_id}-abc123"])
    assert staged_files(data_dir) == []


async def test_ingest_with_alias(ingestor, repository, data_dir):
    entry = await ingestor.ingest(chunks(HELLO), alias="abc123")

    assert entry.identifier == HELLO_ID
    assert entry.name == f"{HELLO_ID}-abc123"
    assert entry_names(data_dir) == [HELLO_ID, f"{HELLO_ID}-abc123"]
    assert (data_dir / HELLO_ID).is_symlink()
    assert await read(repository, HELLO_ID) == HELLO
    assert await read(repository, f"{HELLO_ID}-abc123") == HELLO


async def test_aliased_content_is_only_deletable_by_alias(ingestor, repository):
    await ingestor.ingest(chunks(HELLO), alias="abc123")

    with pytest.raises(ProtectedEntry):
        await repository.delete(HELLO_ID)
    assert await read(repository, HELLO_ID) == HELLO

    await repository.delete(f"{HELLO_ID}-abc123")
    with pytest.raises(NotFound):
        await repository.fetch(HELLO_ID)


async def test_same_alias_under_different_identifiers(ingestor, data_dir):
    first = await ingestor.ingest(chunks(b"one"), alias="shared")
    second = await ingestor.ingest(chunks(b"two"), alias="shared")

    assert first.identifier != second.identifier
    assert len(entry_names(data_dir)) == 4


async def test_alias_conflict_still_stores_content(ingestor, repository):
    await ingestor.ingest(chunks(HELLO))

    with pytest.raises(AliasConflict) as excinfo:
        await ingestor.ingest(chunks(HELLO), alias="abc123")

    assert excinfo.value.entry.identifier == HELLO_ID
    assert await read(repository, f"{HELLO_ID}-abc123") == HELLO


@pytest.mark.parametrize("alias", ["a b", "a-b", "", "../x"])
async def test_invalid_alias_stores_nothing(ingestor, data_dir, alias):
    consumed = []

    async def stream():
        consumed.append(True)
        yield HELLO

    with pytest.raises(InvalidAlias):
        await ingestor.ingest(stream(), alias=alias)

    assert consumed == []
    assert entry_names(data_dir) == []
    assert staged_files(data_dir) == []


@pytest.mark.parametrize(
    "make_source", [lambda: None, lambda: chunks(), lambda: chunks(b"", b"")]
)
async def test_no_content(ingestor, data_dir, make_source):
    with pytest.raises(NoContent):
        await ingestor.ingest(make_source())

    assert entry_names(data_dir) == []
    assert staged_files(data_dir) == []


async def test_stream_read_failure_cleans_up(ingestor, data_dir):
    async def broken():
        yield b"partial"
        raise ConnectionResetError("peer went away")

    with pytest.raises(StreamReadFailure):
        await ingestor.ingest(broken())

    assert entry_names(data_dir) == []
    assert staged_files(data_dir) == []


async def test_storage_commit_failure_cleans_up(repository, data_dir, monkeypatch):
    async def failing_link(self, target):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(anyio.Path, "hardlink_to", failing_link)
    ingestor = ContentIngestor(repository)

    with pytest.raises(StorageCommitFailure):
        await ingestor.ingest(chunks(HELLO))

    assert entry_names(data_dir) == []
    assert staged_files(data_dir) == []


async def test_cancelled_ingest_removes_staging_file(ingestor, data_dir):
    staged = anyio.Event()

    async def stalled():
        yield b"partial"
        staged.set()
        await anyio.sleep_forever()

    async with anyio.create_task_group() as tg:
        tg.start_soon(ingestor.ingest, stalled())
        await staged.wait()
        assert len(staged_files(data_dir)) == 1
        tg.cancel_scope.cancel()

    assert entry_names(data_dir) == []
    assert staged_files(data_dir) == []


async def test_ingest_path_leaves_source_in_place(ingestor, tmp_path):
    source = tmp_path / "hello.txt"
    source.write_bytes(HELLO)
    progress = []

    entry = await ingestor.ingest_path(
        source, progress_callback=lambda name, done: progress.append((name, done))
    )

    assert entry.identifier == HELLO_ID
    assert source.read_bytes() == HELLO
    assert progress == [(str(source), (len(HELLO), len(HELLO)))]


async def test_ingest_missing_path_is_read_failure(ingestor, tmp_path, data_dir):
    with pytest.raises(StreamReadFailure):
        await ingestor.ingest_path(tmp_path / "missing")

    assert staged_files(data_dir) == []
