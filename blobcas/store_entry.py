from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StoreEntry:
    """Named entry in a [`BlobRepository`][blobcas.repository.BlobRepository].

    Attributes:
        identifier: Canonical identifier, the first characters of the content
            digest.
        name: Name of the entry holding the bytes, either `identifier` or
            `identifier-alias`.
        alias: Alias carried by the entry, if any.
        size: Size in bytes of the stored content, if known.
        is_duplicate: Whether the newly returned StoreEntry represents content
            that was already stored. Can only be `True` after a commit.
    """

    identifier: str
    name: str
    alias: str | None = None
    size: int | None = None
    is_duplicate: bool = False

    def __post_init__(self) -> None:
        if "/" in self.name or self.name.startswith("."):
            raise ValueError(f"Entry name {self.name!r} must be a bare file name")
