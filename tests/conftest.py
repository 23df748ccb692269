"""Shared pytest fixtures for blobcas tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from blobcas import BlobRepository, ContentIngestor

HELLO = b"hello"
HELLO_ID = "2cf24dba5f"
HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def repository(data_dir: Path) -> BlobRepository:
    return BlobRepository(data_dir)


@pytest.fixture
def ingestor(repository: BlobRepository) -> ContentIngestor:
    return ContentIngestor(repository)


async def chunks(*parts: bytes) -> AsyncIterator[bytes]:
    """Async byte stream yielding `parts` one by one."""
    for part in parts:
        yield part


def entry_names(data_dir: Path) -> list[str]:
    """Names in the store directory, the staging directory excluded."""
    return sorted(p.name for p in data_dir.iterdir() if p.name != ".scratch")


def staged_files(data_dir: Path) -> list[str]:
    return sorted(p.name for p in (data_dir / ".scratch").iterdir())
