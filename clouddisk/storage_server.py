"""Server-side storage orchestration layer."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from .errors import StorageError
from .fileops import FileOperations
from .models import BatchMoveResult, Config, FileEntry, Listing, WalkError
from .paths import resolve_path, to_relative
from .streaming import FileStream, RangeStreamer
from .walker import DirectoryWalker

logger = logging.getLogger(__name__)


class StorageServer:
    """Binds one storage root to the walker, streamer and file operations."""

    def __init__(self, config: Config):
        self.root: Path = config.storage.root
        self.walker = DirectoryWalker(self.root)
        self.streamer = RangeStreamer(config.streaming)
        self.ops = FileOperations(self.root, config.storage.maxNameAttempts)
        self.max_upload_size: Optional[int] = config.storage.maxUploadSize
        self.max_results: Optional[int] = config.search.maxResults

    def apply_config(self, config: Config) -> None:
        """Pick up reloadable settings; the root itself never changes"""
        self.streamer.config = config.streaming
        self.ops.max_name_attempts = config.storage.maxNameAttempts
        self.max_upload_size = config.storage.maxUploadSize
        self.max_results = config.search.maxResults
        logger.info("Storage settings reloaded")

    def resolve(self, rel_path: Optional[str]) -> Path:
        return resolve_path(self.root, rel_path)

    async def list_files(self, rel_path: str) -> Listing:
        logger.debug(f"Listing files: {rel_path!r}")
        return await self.walker.list_directory(rel_path)

    async def search(
        self,
        rel_path: str,
        query: str,
        categories: Optional[Iterable[str]] = None,
    ) -> Tuple[List[FileEntry], List[WalkError], bool]:
        """Collect search results; the flag is True when max_results cut the walk short"""
        errors: List[WalkError] = []
        limit = self.max_results
        entries: List[FileEntry] = []

        # One extra result tells a full page apart from a truncated one
        async for entry in self.walker.search(
            rel_path,
            query,
            categories,
            errors=errors,
            max_results=limit + 1 if limit is not None else None,
        ):
            entries.append(entry)

        truncated = limit is not None and len(entries) > limit
        if truncated:
            entries = entries[:limit]

        logger.debug(
            f"Search {query!r} in {rel_path!r}: {len(entries)} results, "
            f"{len(errors)} errors, truncated={truncated}"
        )
        return entries, errors, truncated

    async def make_directory(self, parent_rel: str, name: str) -> Tuple[str, str]:
        final_name = await self.ops.make_directory(parent_rel, name)
        parent = to_relative(self.root, self.resolve(parent_rel))
        return final_name, f"{parent}/{final_name}" if parent else final_name

    async def upload_file(self, dest_rel: str, filename: str, source) -> Tuple[str, str, int]:
        return await self.ops.save_upload(dest_rel, filename, source, max_size=self.max_upload_size)

    async def open_download(
        self,
        rel_path: str,
        range_header: Optional[str] = None,
        inline: bool = False,
    ) -> FileStream:
        path = self.resolve(rel_path)
        return await self.streamer.open(
            path,
            range_header,
            inline,
            display_path=to_relative(self.root, path),
        )

    async def rename(self, rel_path: str, new_name: str) -> Tuple[str, str]:
        return await self.ops.rename(rel_path, new_name)

    async def move_items(self, items: Iterable[str], dest_rel: str) -> BatchMoveResult:
        return await self.ops.batch_move(items, dest_rel)

    async def delete_paths(self, paths: Iterable[str]) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Delete each path independently, collecting successes and failures"""
        deleted: List[str] = []
        failed: List[Dict[str, Any]] = []
        for rel_path in paths:
            try:
                await self.ops.delete(rel_path)
            except StorageError as e:
                logger.warning(f"Delete of {rel_path!r} failed: {e.message}")
                failed.append({"path": rel_path, "message": e.message, "kind": e.kind.value})
                continue
            deleted.append(rel_path)
        return deleted, failed
