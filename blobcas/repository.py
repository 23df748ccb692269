from __future__ import annotations

import logging
import os
import pathlib
import stat
import time
from typing import AsyncGenerator
from uuid import uuid4

import anyio
from anyio import AsyncFile

from ._utils import entry_name, split_name, validate_alias
from .errors import (
    AliasConflict,
    NotFound,
    ProtectedEntry,
    StorageCommitFailure,
)
from .hashing import identifier_of
from .store_entry import StoreEntry

logger = logging.getLogger(__name__)

PathLikeArg = str | os.PathLike[str]

SCRATCH_DIR_NAME = ".scratch"


def _alias_of_link(canonical: str, target: str) -> str | None:
    # links only ever point at a sibling aliased entry
    parts = split_name(target)
    if parts is None or parts[0] != canonical or parts[1] is None:
        return None
    return parts[1]


class BlobRepository:
    """Owns the naming scheme of a flat directory of content-addressed blobs.

    Every blob is stored as a *primary entry* named after its canonical
    identifier, or `identifier-alias` when it was committed with an alias.
    Aliased entries are also reachable through an *alias link*: a relative
    symbolic link named `identifier` pointing at `identifier-alias`.

    Alias links resolve transparently on fetch but are never deletion
    targets, so aliased content can only be removed by whoever knows the
    alias.

    No index is kept in memory; every operation consults the directory, so
    several processes may safely share one root.

    Unless otherwise indicated, filesystem errors are surfaced as
    [`BlobStoreError`][blobcas.errors.BlobStoreError] subclasses.

    Attributes:
        root: Directory holding the entries
        fmode: Permissions set on committed files

    Parameters:
        root: Directory path used as root of storage space. Created if missing.
        fmode: File mode set on new entries. Defaults to owner read only, which
            avoids accidental overwrites of immutable content.
        dmode: Directory mode used when creating `root`.
    """

    def __init__(self, root: PathLikeArg, fmode: int = 0o400, dmode: int = 0o700):
        sync_root = pathlib.Path(root).expanduser().resolve()
        sync_root.mkdir(parents=True, mode=dmode, exist_ok=True)
        sync_root.joinpath(SCRATCH_DIR_NAME).mkdir(mode=dmode, exist_ok=True)

        self._sync_root = sync_root
        self._root = anyio.Path(sync_root)
        self._fmode = fmode

    @property
    def root(self) -> str:
        """The store's root directory path"""
        return str(self._root)

    @property
    def fmode(self) -> int:
        """The mode set on *new* files in the store"""
        return self._fmode

    @property
    def scratch_path(self) -> anyio.Path:
        """Staging directory, on the same filesystem as the entries"""
        return self._root.joinpath(SCRATCH_DIR_NAME)

    def staging_path(self) -> anyio.Path:
        """Return a fresh, unused path for staging an upload."""
        return self.scratch_path.joinpath(uuid4().hex)

    async def commit(
        self,
        identifier: str,
        staged_path: anyio.Path,
        alias: str | None = None,
    ) -> StoreEntry:
        """Place a staged file under `identifier` or `identifier-alias`.

        The entry is hard linked into place, which atomically fails rather than
        replacing an existing name, and the staged file is then removed.

        An entry that already exists under the target name is kept as is and
        the staged file is discarded; identical content shares the same name,
        so re-committing is an idempotent success.

        When `alias` is given an alias link named `identifier` is created too.
        An existing alias link is left untouched.

        Parameters:
            identifier: Canonical identifier of the staged content.
            staged_path: Staged file, on the same filesystem as the store.
            alias: Optional alphanumeric alias.

        Returns:
            StoreEntry: The committed primary entry.

        Raises:
            InvalidAlias: If `alias` is not alphanumeric.
            AliasConflict: If an unaliased entry already occupies `identifier`.
                The primary entry has been committed nonetheless.
            StorageCommitFailure: If the entry couldn't be placed.
        """
        parts = split_name(identifier)
        if parts is None or parts[1] is not None:
            raise ValueError(f"{identifier!r} is not a canonical identifier")
        if alias is not None:
            validate_alias(alias)

        name = entry_name(identifier, alias)
        dest_path = self._root.joinpath(name)

        try:
            is_duplicate = await self._place(staged_path, dest_path)
            size = (await dest_path.stat()).st_size
        except OSError as exc:
            raise StorageCommitFailure(f"Could not commit {name}: {exc}") from exc

        entry = StoreEntry(identifier, name, alias, size, is_duplicate)

        if alias is not None:
            await self._link_alias(entry)

        return entry

    async def _place(self, staged_path: anyio.Path, dest_path: anyio.Path) -> bool:
        await staged_path.chmod(self._fmode)

        # at most one retry, after replacing a dangling link
        for _ in range(2):
            try:
                # this is the atomic part, linking never clobbers an existing name
                await dest_path.hardlink_to(staged_path)
            except FileExistsError:
                if await dest_path.is_symlink() and not await dest_path.exists():
                    await self._discard_dangling_link(dest_path)
                    continue
                await staged_path.unlink(missing_ok=True)
                logger.debug("%s is already stored", dest_path.name)
                return True

            await staged_path.unlink(missing_ok=True)
            logger.info("Stored %s", dest_path.name)
            return False

        raise FileExistsError(f"Could not replace dangling link {dest_path.name}")

    async def _link_alias(self, entry: StoreEntry) -> None:
        link_path = self._root.joinpath(entry.identifier)

        # at most one retry, after replacing a dangling link
        for _ in range(2):
            try:
                await link_path.symlink_to(entry.name)
                logger.info("Linked %s -> %s", entry.identifier, entry.name)
                return
            except FileExistsError:
                pass
            except OSError as exc:
                raise StorageCommitFailure(
                    f"{entry.name} was stored but linking {entry.identifier} "
                    f"failed: {exc}"
                ) from exc

            if not await link_path.is_symlink():
                logger.warning(
                    "Unaliased %s already exists, not linking %s",
                    entry.identifier,
                    entry.name,
                )
                raise AliasConflict(entry)

            if await link_path.exists():
                logger.debug("Alias link %s already exists", entry.identifier)
                return

            await self._discard_dangling_link(link_path)

        raise AliasConflict(entry, f"Could not replace alias link {entry.identifier}")

    async def get(self, identifier: str) -> StoreEntry | None:
        """Return the `StoreEntry` `identifier` resolves to, following alias
        links. If it does not resolve to a stored file, `None` is returned.

        Parameters:
            identifier: Canonical identifier or `identifier-alias` name.
        """
        parts = split_name(identifier)
        if parts is None:
            return None

        canonical, alias = parts
        name = identifier
        path = self._root.joinpath(name)

        try:
            if await path.is_symlink():
                alias = _alias_of_link(canonical, (await path.readlink()).as_posix())
                if alias is None:
                    return None
                name = entry_name(canonical, alias)

            file_stat = await self._root.joinpath(name).stat()
        except FileNotFoundError:
            return None

        if not stat.S_ISREG(file_stat.st_mode):
            return None

        return StoreEntry(canonical, name, alias, file_stat.st_size)

    async def fetch(self, identifier: str) -> StoreEntry:
        """Resolve `identifier` to its primary entry.

        Raises:
            NotFound: If nothing resolves.
        """
        entry = await self.get(identifier)
        if entry is None:
            raise NotFound(f"{identifier} not found")
        return entry

    def path_of(self, entry: StoreEntry) -> str:
        """Absolute path of the file holding `entry`'s bytes"""
        return str(self._sync_root.joinpath(entry.name))

    async def open(self, identifier: str) -> AsyncFile[bytes]:
        """Return an open binary file for `identifier`.

        Raises:
            NotFound: If nothing resolves.
        """
        entry = await self.fetch(identifier)
        try:
            return await self._root.joinpath(entry.name).open("rb")
        except FileNotFoundError as exc:
            raise NotFound(f"{identifier} not found") from exc

    async def delete(self, identifier: str) -> None:
        """Delete the primary entry named `identifier`.

        Deleting an aliased entry also removes the alias link that pointed at
        it. Failing to remove the link does not fail the delete.

        Raises:
            ProtectedEntry: If `identifier` names an alias link.
            NotFound: If `identifier` names nothing.
        """
        parts = split_name(identifier)
        if parts is None:
            raise NotFound(f"{identifier} not found")

        canonical, alias = parts
        path = self._root.joinpath(identifier)

        if await path.is_symlink():
            if await path.exists():
                raise ProtectedEntry(
                    f"{identifier} is an alias link, delete it by its aliased name"
                )
            await self._discard_dangling_link(path)
            raise NotFound(f"{identifier} not found")

        if not await path.is_file():
            raise NotFound(f"{identifier} not found")

        try:
            await path.unlink()
        except FileNotFoundError as exc:
            raise NotFound(f"{identifier} not found") from exc

        logger.info("Deleted %s", identifier)

        if alias is not None:
            await self._discard_dangling_link(self._root.joinpath(canonical))

    async def _discard_dangling_link(self, link_path: anyio.Path) -> bool:
        try:
            if await link_path.is_symlink() and not await link_path.exists():
                await link_path.unlink()
                logger.debug("Removed dangling alias link %s", link_path.name)
                return True
        except OSError as exc:
            logger.warning(
                "Could not remove dangling alias link %s: %s", link_path.name, exc
            )
        return False

    async def exists(self, identifier: str) -> bool:
        """Check whether `identifier` resolves to stored content."""
        return await self.get(identifier) is not None

    async def get_all(self) -> AsyncGenerator[StoreEntry, None]:
        """Return async generator that yields all primary entries

        Alias links and staging files are skipped.

        Yields:
            entry (StoreEntry):
        """
        async for path in self._root.iterdir():
            parts = split_name(path.name)
            if parts is None or await path.is_symlink():
                continue
            try:
                file_stat = await path.stat()
            except FileNotFoundError:
                continue
            if stat.S_ISREG(file_stat.st_mode):
                yield StoreEntry(parts[0], path.name, parts[1], file_stat.st_size)

    async def count(self) -> int:
        """Return the number of primary entries."""
        count = 0
        async for _ in self.get_all():
            count += 1
        return count

    async def size(self) -> int:
        """Return the total size in bytes of all primary entries."""
        total = 0
        async for entry in self.get_all():
            total += entry.size or 0
        return total

    async def corrupted(self) -> AsyncGenerator[tuple[StoreEntry, str], None]:
        """Return generator that yields `(entry, actual_identifier)` for every
        entry whose content no longer matches the identifier in its name.
        """
        async for entry in self.get_all():
            actual = await identifier_of(self._root.joinpath(entry.name))
            if actual != entry.identifier:
                yield entry, actual

    async def dangling_links(self) -> AsyncGenerator[str, None]:
        """Yield names of alias links whose target no longer exists."""
        async for path in self._root.iterdir():
            if split_name(path.name) is None:
                continue
            if await path.is_symlink() and not await path.exists():
                yield path.name

    async def prune(self, scratch_max_age: float = 3600) -> int:
        """Remove dangling alias links and staging files older than
        `scratch_max_age` seconds. Staging files of in-flight uploads are
        younger and left alone.

        Returns:
            Number of removed files.
        """
        removed = 0

        async for name in self.dangling_links():
            if await self._discard_dangling_link(self._root.joinpath(name)):
                removed += 1

        cutoff = time.time() - scratch_max_age
        async for path in self.scratch_path.iterdir():
            try:
                if (await path.stat()).st_mtime < cutoff:
                    await path.unlink()
                    logger.info("Removed stale staging file %s", path.name)
                    removed += 1
            except FileNotFoundError:
                continue

        return removed

    def __contains__(self, identifier: str) -> bool:
        """Return whether `identifier` resolves to stored content."""
        parts = split_name(identifier)
        if parts is None:
            return False

        path = self._sync_root.joinpath(identifier)
        try:
            if path.is_symlink():
                alias = _alias_of_link(parts[0], os.readlink(path))
                if alias is None:
                    return False
                path = self._sync_root.joinpath(entry_name(parts[0], alias))
        except FileNotFoundError:
            return False

        return path.is_file()

    def __aiter__(self) -> AsyncGenerator[StoreEntry, None]:
        """Iterate over all primary entries in the store."""
        return self.get_all()
