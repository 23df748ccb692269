from __future__ import annotations

import logging

import anyio

from ._utils import (
    AsyncByteReader,
    ByteSource,
    ProgressAsyncByteReader,
    ProgressCallback,
    TeeAsyncByteReader,
    validate_alias,
)
from .errors import NoContent
from .hashing import DEFAULT_CHUNK_SIZE, canonical_identifier, compute_checksum
from .repository import BlobRepository, PathLikeArg
from .store_entry import StoreEntry

logger = logging.getLogger(__name__)


class ContentIngestor:
    """Turns byte streams into committed blobs of a
    [`BlobRepository`][blobcas.repository.BlobRepository].

    The stream is copied to a staging file inside the repository while it is
    checksummed, so it is consumed exactly once and never held in memory. The
    staging file is then committed under the name derived from the checksum.

    Exactly one staging file is created per ingest and it never outlives the
    call, also when the caller is cancelled.

    Args:
        repository: Repository to commit into
        chunk_size: Size of reads from file sources
    """

    def __init__(
        self, repository: BlobRepository, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> None:
        self._repository = repository
        self._chunk_size = chunk_size

    @property
    def repository(self) -> BlobRepository:
        return self._repository

    async def ingest(
        self,
        source: ByteSource | AsyncByteReader | None,
        alias: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> StoreEntry:
        """Store the content of `source`, optionally under `alias`.

        Args:
            source: Async iterable of chunks, file path or reader
            alias: Optional alphanumeric alias
            progress_callback: Callback to receive progress

        Returns:
            StoreEntry: The committed entry. Its `identifier` is the canonical
            identifier, whether or not the content was already stored.

        Raises:
            InvalidAlias: If `alias` is not alphanumeric. Nothing is staged.
            NoContent: If `source` is missing or empty.
            StreamReadFailure: If reading `source` fails.
            StorageCommitFailure: If the content couldn't be staged or placed.
            AliasConflict: If the content was stored but not aliased.
        """
        if source is None:
            raise NoContent()
        if alias is not None:
            validate_alias(alias)

        scratch_path = self._repository.staging_path()

        try:
            tee = TeeAsyncByteReader(source, dest_path=scratch_path)
            checksum = await compute_checksum(
                ProgressAsyncByteReader(tee, progress_callback), self._chunk_size
            )

            if tee.bytes_written == 0:
                raise NoContent()

            identifier = canonical_identifier(checksum)
            logger.debug(
                "Staged %d bytes with checksum %s", tee.bytes_written, checksum
            )
            return await self._repository.commit(identifier, scratch_path, alias)
        finally:
            await self._discard(scratch_path)

    async def ingest_path(
        self,
        pathlike: PathLikeArg,
        alias: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> StoreEntry:
        """Store the content of a local file. The file itself is left in place.

        Args:
            pathlike: Path to file
            alias: Optional alphanumeric alias
            progress_callback: Callback to receive progress
        """
        return await self.ingest(anyio.Path(pathlike), alias, progress_callback)

    @staticmethod
    async def _discard(scratch_path: anyio.Path) -> None:
        # runs even when the surrounding scope was cancelled
        with anyio.CancelScope(shield=True):
            try:
                await scratch_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove staging file %s: %s", scratch_path, exc)
