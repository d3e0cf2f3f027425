"""
Directory listing and recursive search for clouddisk-py
"""

import asyncio
import os
import stat
import logging
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from .content_types import classify, matches_categories, normalize_categories
from .errors import ErrorKind, IOFailureError, NotADirError, NotFoundError
from .models import FileEntry, Listing, WalkError, CATEGORY_OTHER
from .paths import is_addressable_name, parent_of, resolve_path, to_relative

logger = logging.getLogger(__name__)

# (name, lstat result or None, error or None)
Child = Tuple[str, Optional[os.stat_result], Optional[OSError]]


def _scan(dir_path: str) -> List[Child]:
    """Read one directory and lstat every child (runs in a worker thread)"""
    children: List[Child] = []
    with os.scandir(dir_path) as it:
        for entry in it:
            try:
                children.append((entry.name, entry.stat(follow_symlinks=False), None))
            except OSError as e:
                children.append((entry.name, None, e))
    children.sort(key=lambda child: (child[0].casefold(), child[0]))
    return children


def _error_kind(error: OSError) -> ErrorKind:
    if isinstance(error, FileNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(error, NotADirectoryError):
        return ErrorKind.NOT_A_DIRECTORY
    return ErrorKind.IO_FAILURE


class DirectoryWalker:
    """Lists and searches the tree below a storage root.

    Symbolic links are neither reported nor followed, and neither are
    names with a drive-letter prefix such as ``x:y.txt``. Nothing is cached;
    every call reads the filesystem again.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _entry(self, name: str, rel_path: str, st: os.stat_result) -> FileEntry:
        if stat.S_ISDIR(st.st_mode):
            return FileEntry(
                name=name,
                path=rel_path,
                size=0,
                is_dir=True,
                modified=st.st_mtime,
                category=CATEGORY_OTHER,
            )

        content = classify(name)
        return FileEntry(
            name=name,
            path=rel_path,
            size=st.st_size,
            is_dir=False,
            modified=st.st_mtime,
            category=content.category,
            mime_type=content.mime_type,
        )

    async def _open_directory(self, rel_path: str) -> Tuple[Path, List[Child]]:
        """Resolve, check and read the directory a call starts from"""
        dir_path = resolve_path(self.root, rel_path)

        try:
            children = await asyncio.to_thread(_scan, os.fspath(dir_path))
        except FileNotFoundError:
            raise NotFoundError(f"Directory not found: {rel_path}")
        except NotADirectoryError:
            raise NotADirError(f"Not a directory: {rel_path}")
        except OSError as e:
            logger.error(f"Failed to read directory {dir_path}: {e}")
            raise IOFailureError(f"Failed to read directory: {rel_path}")

        return dir_path, children

    async def list_directory(self, rel_path: str = "") -> Listing:
        """
        List the direct children of a directory

        Args:
            rel_path: Directory relative to the storage root

        Returns:
            Listing with directories first, then files, by name

        Raises:
            InvalidPathError, NotFoundError, NotADirError, IOFailureError
        """
        dir_path, children = await self._open_directory(rel_path)
        base = to_relative(self.root, dir_path)

        entries = []
        for name, st, error in children:
            if error is not None:
                # Vanished or unreadable between readdir and stat
                logger.warning(f"Failed to stat {dir_path / name}: {error}")
                continue
            if stat.S_ISLNK(st.st_mode) or not is_addressable_name(name):
                continue
            child_rel = f"{base}/{name}" if base else name
            entries.append(self._entry(name, child_rel, st))

        # Sort: directories first, then files, both alphabetically
        entries.sort(key=lambda x: (not x.is_dir, x.name.lower()))

        return Listing(path=base, parent_path=parent_of(base), entries=entries)

    async def iter_directory(self, rel_path: str = "") -> AsyncIterator[FileEntry]:
        """Yield the entries of ``list_directory`` one at a time"""
        listing = await self.list_directory(rel_path)
        for entry in listing.entries:
            yield entry

    async def search(
        self,
        start_path: str = "",
        query: str = "",
        categories: Optional[Iterable[str]] = None,
        *,
        errors: Optional[List[WalkError]] = None,
        max_results: Optional[int] = None,
    ) -> AsyncIterator[FileEntry]:
        """
        Depth-first search below start_path, yielding matches as found

        Files match when their name contains ``query`` (case-insensitive,
        empty matches everything) and their category is one of
        ``categories`` (no filter when empty). Directories are only
        descended into, never matched.

        A subdirectory that cannot be read is appended to ``errors`` and
        skipped; its siblings are still searched. Failing to read
        start_path itself raises.
        """
        start_dir, children = await self._open_directory(start_path)
        needle = (query or "").strip().casefold()
        wanted = normalize_categories(categories)

        root_stat = await asyncio.to_thread(os.stat, start_dir)
        visited = {(root_stat.st_dev, root_stat.st_ino)}

        # Explicit stack of (directory, remaining children) keeps the
        # pre-order of a recursive walk without recursion depth limits
        stack = [(start_dir, iter(children))]
        found = 0

        while stack:
            dir_path, pending = stack[-1]
            child = next(pending, None)
            if child is None:
                stack.pop()
                continue

            name, st, error = child
            if not is_addressable_name(name):
                # "x:y" reads as a drive prefix; no request could reach it
                continue
            full_path = dir_path / name
            rel_path = to_relative(self.root, full_path)

            if error is not None:
                self._record(errors, rel_path, error)
                continue
            if stat.S_ISLNK(st.st_mode):
                continue

            if stat.S_ISDIR(st.st_mode):
                key = (st.st_dev, st.st_ino)
                if key in visited:
                    continue
                visited.add(key)
                try:
                    grandchildren = await asyncio.to_thread(_scan, os.fspath(full_path))
                except OSError as e:
                    self._record(errors, rel_path, e)
                    continue
                stack.append((full_path, iter(grandchildren)))
                continue

            if not stat.S_ISREG(st.st_mode):
                continue
            if needle and needle not in name.casefold():
                continue
            if not matches_categories(name, wanted):
                continue

            yield self._entry(name, rel_path, st)
            found += 1
            if max_results is not None and found >= max_results:
                return

    def _record(self, errors: Optional[List[WalkError]], rel_path: str, error: OSError) -> None:
        kind = _error_kind(error)
        logger.warning(f"Skipping {rel_path} during search: {error}")
        if errors is not None:
            errors.append(WalkError(
                path=rel_path,
                kind=kind.value,
                message=f"Failed to read: {rel_path}",
            ))
