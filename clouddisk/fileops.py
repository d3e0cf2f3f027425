"""
Mutating file operations for clouddisk-py

Every public method resolves its paths again right before touching the
filesystem; nothing resolved by an earlier request is reused.
"""

import asyncio
import shutil
import stat
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple

import aiofiles
import aiofiles.os

from .errors import (
    InvalidPathError,
    IOFailureError,
    NameConflictExhaustedError,
    NotADirError,
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
)
from .models import BatchMoveResult, MoveResult
from .naming import DEFAULT_MAX_ATTEMPTS, allocate_name
from .paths import parent_of, resolve_path, to_relative
from .utils import fix_filename_encoding, format_file_size, join_relative, sanitize_filename, validate_filename

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024

# Times an exclusive create may lose a race before giving up
CLAIM_RETRIES = 16


class FileOperations:
    """mkdir / rename / move / delete / upload below one storage root"""

    def __init__(self, root: Path, max_name_attempts: Optional[int] = DEFAULT_MAX_ATTEMPTS):
        self.root = Path(root)
        self.max_name_attempts = max_name_attempts

    def _resolve(self, rel_path: Optional[str]) -> Tuple[Path, str]:
        path = resolve_path(self.root, rel_path)
        return path, to_relative(self.root, path)

    async def _lstat(self, path: Path, rel_path: str):
        try:
            return await aiofiles.os.stat(path, follow_symlinks=False)
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(f"Path not found: {rel_path}")
        except OSError as e:
            logger.error(f"Failed to stat {path}: {e}")
            raise IOFailureError(f"Failed to access: {rel_path}")

    async def _ensure_directory(self, path: Path, rel_path: str, create: bool = False) -> None:
        """Check that path is a directory, creating it (and parents) if asked"""
        try:
            st = await aiofiles.os.stat(path)
        except FileNotFoundError:
            if not create:
                raise NotFoundError(f"Directory not found: {rel_path}")
            try:
                await aiofiles.os.makedirs(path, exist_ok=True)
            except (NotADirectoryError, FileExistsError):
                raise NotADirError(f"Not a directory: {rel_path}")
            except OSError as e:
                logger.error(f"Failed to create directory {path}: {e}")
                raise IOFailureError(f"Failed to create directory: {rel_path}")
            logger.info(f"Created directory: {rel_path}")
            return
        except NotADirectoryError:
            raise NotADirError(f"Not a directory: {rel_path}")
        except OSError as e:
            logger.error(f"Failed to stat {path}: {e}")
            raise IOFailureError(f"Failed to access: {rel_path}")

        if not stat.S_ISDIR(st.st_mode):
            raise NotADirError(f"Not a directory: {rel_path}")

    async def _allocate(self, dest_dir: Path, desired_name: str) -> str:
        return await asyncio.to_thread(allocate_name, dest_dir, desired_name, self.max_name_attempts)

    async def _claim(
        self,
        dest_rel: str,
        desired_name: str,
        create: Callable[[Path], Awaitable[Any]],
    ) -> Tuple[str, Path, Any]:
        """Allocate a name and create it exclusively, asking again on a lost race"""
        dest_dir, dest_rel = self._resolve(dest_rel)
        for _ in range(CLAIM_RETRIES):
            name = await self._allocate(dest_dir, desired_name)
            target, _ = self._resolve(join_relative(dest_rel, name))
            try:
                return name, target, await create(target)
            except FileExistsError:
                logger.debug(f"Lost race for {join_relative(dest_rel, name)}, allocating again")

        raise NameConflictExhaustedError(f"No free name for {desired_name} in {dest_rel or '/'}")

    async def make_directory(self, parent_rel: str, name: str) -> str:
        """
        Create a directory, suffixing the name if it is taken

        Args:
            parent_rel: Parent directory; created if missing
            name: Requested folder name (a single path component)

        Returns:
            The name actually created
        """
        name = (name or "").strip()
        if not validate_filename(name):
            raise InvalidPathError(f"Invalid folder name: {name}")

        parent, parent_rel = self._resolve(parent_rel)
        await self._ensure_directory(parent, parent_rel, create=True)

        try:
            final_name, _, _ = await self._claim(parent_rel, name, aiofiles.os.mkdir)
        except OSError as e:
            logger.error(f"Failed to create directory {name} in {parent}: {e}")
            raise IOFailureError(f"Failed to create directory: {join_relative(parent_rel, name)}")

        logger.info(f"Created directory: {join_relative(parent_rel, final_name)}")
        return final_name

    async def rename(self, rel_path: str, new_name: str) -> Tuple[str, str]:
        """
        Rename a file or directory within its parent

        Args:
            rel_path: Item to rename
            new_name: New name (filename only, not path)

        Returns:
            (final_name, new_rel_path)

        Raises:
            InvalidPathError: If new_name is not a single safe component, or
                rel_path is the root
        """
        # Validate before anything touches the filesystem
        new_name = (new_name or "").strip()
        if not validate_filename(new_name):
            raise InvalidPathError(f"Invalid name: {new_name}")

        source, source_rel = self._resolve(rel_path)
        if not source_rel:
            raise InvalidPathError("Cannot rename the storage root")

        await self._lstat(source, source_rel)

        if source.name == new_name:
            return new_name, source_rel

        parent_rel = parent_of(source_rel) or ""
        final_name = await self._allocate(source.parent, new_name)
        target, target_rel = self._resolve(join_relative(parent_rel, final_name))

        try:
            await aiofiles.os.rename(source, target)
        except FileNotFoundError:
            raise NotFoundError(f"Path not found: {source_rel}")
        except OSError as e:
            logger.error(f"Failed to rename {source} -> {target}: {e}")
            raise IOFailureError(f"Failed to rename: {source_rel}")

        logger.info(f"Renamed: {source_rel} -> {target_rel}")
        return final_name, target_rel

    async def move(self, rel_path: str, dest_dir_rel: str) -> str:
        """
        Move an item into another directory

        Returns:
            New relative path of the item
        """
        source, source_rel = self._resolve(rel_path)
        if not source_rel:
            raise InvalidPathError("Cannot move the storage root")

        st = await self._lstat(source, source_rel)

        dest_dir, dest_rel = self._resolve(dest_dir_rel)
        if stat.S_ISDIR(st.st_mode) and (dest_rel == source_rel or dest_rel.startswith(source_rel + "/")):
            raise InvalidPathError(f"Cannot move {source_rel} into itself")

        await self._ensure_directory(dest_dir, dest_rel, create=True)

        if dest_dir == source.parent:
            # Already there
            return source_rel

        final_name = await self._allocate(dest_dir, source.name)
        target, target_rel = self._resolve(join_relative(dest_rel, final_name))

        try:
            await asyncio.to_thread(shutil.move, str(source), str(target))
        except FileNotFoundError:
            raise NotFoundError(f"Path not found: {source_rel}")
        except OSError as e:
            logger.error(f"Failed to move {source} -> {target}: {e}")
            raise IOFailureError(f"Failed to move: {source_rel}")

        logger.info(f"Moved: {source_rel} -> {target_rel}")
        return target_rel

    async def batch_move(self, items: Iterable[str], dest_dir_rel: str) -> BatchMoveResult:
        """Move items one by one; a failing item does not stop the others"""
        batch = BatchMoveResult()
        for item in items:
            try:
                new_rel = await self.move(item, dest_dir_rel)
            except StorageError as e:
                logger.warning(f"Move of {item!r} failed: {e.message}")
                batch.results.append(MoveResult(
                    item=item, success=False, message=e.message, kind=e.kind.value
                ))
                continue
            batch.results.append(MoveResult(item=item, success=True, dest=new_rel))
        return batch

    async def delete(self, rel_path: str) -> None:
        """
        Delete a file or directory recursively

        Symbolic links are removed themselves; their targets are untouched.
        """
        target, target_rel = self._resolve(rel_path)
        if not target_rel:
            raise InvalidPathError("Cannot delete the storage root")

        st = await self._lstat(target, target_rel)

        try:
            if stat.S_ISDIR(st.st_mode):
                await asyncio.to_thread(shutil.rmtree, target)
            else:
                await aiofiles.os.remove(target)
        except FileNotFoundError:
            raise NotFoundError(f"Path not found: {target_rel}")
        except OSError as e:
            logger.error(f"Failed to delete {target}: {e}")
            raise IOFailureError(f"Failed to delete: {target_rel}")

        logger.info(f"Deleted: {target_rel}")

    async def save_upload(
        self,
        dest_dir_rel: str,
        original_filename: str,
        source,
        max_size: Optional[int] = None,
    ) -> Tuple[str, str, int]:
        """
        Save an uploaded file without overwriting anything

        Args:
            dest_dir_rel: Target directory; created if missing
            original_filename: Client-supplied filename
            source: Object with an async ``read(size)`` (e.g. UploadFile)
            max_size: Optional maximum file size in bytes

        Returns:
            (stored_name, stored_rel_path, bytes_written)

        Raises:
            PayloadTooLargeError: If the upload exceeds max_size
        """
        filename = sanitize_filename(fix_filename_encoding(original_filename or ""))

        dest_dir, dest_rel = self._resolve(dest_dir_rel)
        await self._ensure_directory(dest_dir, dest_rel, create=True)

        try:
            name, target, handle = await self._claim(
                dest_rel, filename, lambda path: aiofiles.open(path, 'xb')
            )
        except OSError as e:
            logger.error(f"Failed to create {filename} in {dest_dir}: {e}")
            raise IOFailureError(f"Failed to save file: {join_relative(dest_rel, filename)}")

        target_rel = join_relative(dest_rel, name)
        bytes_written = 0
        try:
            try:
                while True:
                    chunk = await source.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break

                    bytes_written += len(chunk)
                    if max_size is not None and bytes_written > max_size:
                        raise PayloadTooLargeError(
                            f"File too large (max: {format_file_size(max_size)})", limit=max_size
                        )

                    await handle.write(chunk)
            finally:
                await handle.close()

        except OSError as e:
            await self._discard(target)
            logger.error(f"Failed to write {target}: {e}")
            raise IOFailureError(f"Failed to save file: {target_rel}")
        except BaseException:
            # Size limit, client disconnect or cancellation: no partial files
            await self._discard(target)
            raise

        logger.info(f"Uploaded file: {target_rel} ({bytes_written} bytes)")
        return name, target_rel, bytes_written

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove partial upload {path}: {e}")
