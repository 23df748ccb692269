from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from blobcas.store_entry import StoreEntry


class BlobStoreError(Exception):
    """Base class for every error surfaced by the store.

    Attributes:
        code: Short machine-readable error code.
        status_code: HTTP status the error maps to.
    """

    code = "blob_store_error"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class InvalidAlias(BlobStoreError):
    """Alias must be a non-empty alphanumeric string"""

    code = "invalid_alias"
    status_code = 400


class NoContent(BlobStoreError):
    """No content was uploaded"""

    code = "no_content"
    status_code = 400


class StreamReadFailure(BlobStoreError):
    """Failed to read the uploaded stream"""

    code = "stream_read_failure"
    status_code = 500


class StorageCommitFailure(BlobStoreError):
    """Failed to commit content to storage"""

    code = "storage_commit_failure"
    status_code = 500


class AliasConflict(BlobStoreError):
    """Content was stored but the alias link could not be created.

    `entry` is the primary entry that was durably committed before the
    conflict was detected.
    """

    code = "alias_conflict"
    status_code = 409

    def __init__(self, entry: StoreEntry, message: str | None = None) -> None:
        super().__init__(
            message
            or f"{entry.identifier} is already taken by an unaliased entry; "
            f"content is stored as {entry.name}"
        )
        self.entry = entry


class NotFound(BlobStoreError):
    """File not found"""

    code = "not_found"
    status_code = 404


class ProtectedEntry(BlobStoreError):
    """Entry is only reachable through an alias link and cannot be deleted by it"""

    code = "protected_entry"
    status_code = 403
