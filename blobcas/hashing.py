from __future__ import annotations

import hashlib

import anyio

from ._utils import IDENTIFIER_LENGTH, AsyncByteReader, ByteSource

DEFAULT_CHUNK_SIZE = 1024 * 1024


async def compute_checksum(
    source: AsyncByteReader | ByteSource, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> str:
    """Compute the SHA-256 hexdigest of `source`, consuming it exactly once.

    source: File path, async iterable of chunks or reader to checksum
    """

    if not isinstance(source, AsyncByteReader):
        source = AsyncByteReader(source)

    if source.source_path is not None and chunk_size == DEFAULT_CHUNK_SIZE:
        try:
            blksize = (await source.source_path.stat()).st_blksize or 4096
            # block-aligned size closest to the default
            chunk_size = max(blksize, (chunk_size // blksize) * blksize)
        except OSError:
            pass

    hasher = hashlib.sha256()
    async for data in source.read(chunk_size):
        hasher.update(data)

    return hasher.hexdigest()


def canonical_identifier(checksum: str) -> str:
    """Return the canonical identifier for a full hexdigest."""
    if len(checksum) < IDENTIFIER_LENGTH:
        raise ValueError(f"checksum must be at least {IDENTIFIER_LENGTH} characters")
    return checksum[:IDENTIFIER_LENGTH].lower()


async def identifier_of(path: anyio.Path) -> str:
    """Recompute the canonical identifier of a stored file."""
    return canonical_identifier(await compute_checksum(path))
