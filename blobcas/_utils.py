from __future__ import annotations

import re
from typing import Any, AsyncGenerator, AsyncIterable, Callable

import anyio

from .errors import InvalidAlias, StorageCommitFailure, StreamReadFailure

IDENTIFIER_LENGTH = 10

ALIAS_RE = re.compile(r"^[A-Za-z0-9]+$")
NAME_RE = re.compile(rf"^([0-9a-f]{{{IDENTIFIER_LENGTH}}})(?:-([A-Za-z0-9]+))?$")

ByteSource = anyio.Path | AsyncIterable[bytes]
ProgressCallback = Callable[[str, tuple[int, int | None]], Any]


def validate_alias(alias: str) -> str:
    if not isinstance(alias, str) or not ALIAS_RE.fullmatch(alias):
        raise InvalidAlias(f"Invalid alias {alias!r}: must match {ALIAS_RE.pattern}")
    return alias


def entry_name(identifier: str, alias: str | None = None) -> str:
    """Return the name of the primary entry for `identifier` and `alias`."""
    if alias is None:
        return identifier
    return f"{identifier}-{alias}"


def split_name(name: str) -> tuple[str, str | None] | None:
    """Split an entry name into `(identifier, alias)`.

    Returns `None` for anything that can't name a store entry.
    """
    # fullmatch, since `$` accepts a trailing newline
    match = NAME_RE.fullmatch(name)
    if match is None:
        return None
    return match.group(1), match.group(2)


class AsyncByteReader:
    """Reads a byte source, either a file or an async iterable of chunks.

    `size` is honored for files only; iterables yield chunks as they come.
    """

    def __init__(self, source: ByteSource | AsyncByteReader) -> None:
        self._source = source

    @property
    def source_path(self) -> anyio.Path | None:
        if isinstance(self._source, anyio.Path):
            return self._source
        if isinstance(self._source, AsyncByteReader):
            return self._source.source_path
        return None

    @property
    def source_name(self) -> str:
        path = self.source_path
        return "<stream>" if path is None else str(path)

    async def read(self, size: int = -1) -> AsyncGenerator[bytes, None]:
        if isinstance(self._source, anyio.Path):
            async with await self._source.open("rb") as file:
                while True:
                    data = await file.read(size)
                    if not data:
                        break
                    yield data
        elif isinstance(self._source, AsyncByteReader):
            async for data in self._source.read(size):
                yield data
        else:
            async for data in self._source:
                if data:
                    yield bytes(data)


class TeeAsyncByteReader(AsyncByteReader):
    """Copies everything read from `source` into `dest_path`.

    The destination is created exclusively, so an existing file is never
    clobbered. Failures reading the source raise
    [`StreamReadFailure`][blobcas.errors.StreamReadFailure], failures writing
    the copy raise [`StorageCommitFailure`][blobcas.errors.StorageCommitFailure].
    """

    def __init__(self, source: ByteSource | AsyncByteReader, dest_path: anyio.Path):
        super().__init__(source)
        self._destination_path = dest_path
        self._bytes_written = 0

    @property
    def destination_path(self) -> anyio.Path:
        return self._destination_path

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    async def read(self, size: int = -1) -> AsyncGenerator[bytes, None]:
        try:
            await self._destination_path.parent.mkdir(parents=True, exist_ok=True)
            dest_file = await self._destination_path.open("xb")
        except OSError as exc:
            raise StorageCommitFailure(
                f"Could not create staging file {self._destination_path}"
            ) from exc

        async with dest_file:
            chunks = super().read(size).__aiter__()
            while True:
                try:
                    data = await chunks.__anext__()
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    raise StreamReadFailure(
                        f"Failed reading {self.source_name}: {exc}"
                    ) from exc

                try:
                    await dest_file.write(data)
                except OSError as exc:
                    raise StorageCommitFailure(
                        f"Failed writing {self._destination_path}"
                    ) from exc

                self._bytes_written += len(data)
                yield data


class ProgressAsyncByteReader(AsyncByteReader):
    def __init__(
        self,
        source: ByteSource | AsyncByteReader,
        progress_callback: ProgressCallback | None,
    ):
        super().__init__(source)
        self._progress_callback = progress_callback

    async def read(self, size: int = -1) -> AsyncGenerator[bytes, None]:
        total_bytes = None

        if self._progress_callback is not None and self.source_path is not None:
            try:
                stat = await self.source_path.stat()
                total_bytes = stat.st_size
            except OSError:
                # progress is reported without a total
                pass

        curr_bytes = 0
        async for data in super().read(size):
            if self._progress_callback is not None:
                curr_bytes += len(data)
                self._progress_callback(self.source_name, (curr_bytes, total_bytes))
            yield data
