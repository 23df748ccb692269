# -*- coding: utf-8 -*-
"""blobcas is a content-addressed blob store. Uploaded content is saved in a
flat directory under a short identifier derived from its SHA-256 digest, and
can be fetched or deleted by that identifier.

An upload may carry an alias. Aliased content is stored as
`identifier-alias` and stays reachable through `identifier`, but can only be
deleted by whoever knows the alias.

Typical use cases for this kind of system are ones where:

- Files are written once and never change (e.g. pastebins, image hosting).
- It's desirable to have no duplicate files (e.g. user uploads).
- File metadata is stored elsewhere, or not at all.
"""

from .__meta__ import __version__
from .errors import (
    AliasConflict,
    BlobStoreError,
    InvalidAlias,
    NoContent,
    NotFound,
    ProtectedEntry,
    StorageCommitFailure,
    StreamReadFailure,
)
from .ingestor import ContentIngestor
from .repository import BlobRepository
from .store_entry import StoreEntry

__all__ = (
    "__version__",
    "AliasConflict",
    "BlobRepository",
    "BlobStoreError",
    "ContentIngestor",
    "InvalidAlias",
    "NoContent",
    "NotFound",
    "ProtectedEntry",
    "StorageCommitFailure",
    "StoreEntry",
    "StreamReadFailure",
)
