"""
MIME type and category classification for clouddisk-py
"""

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, Optional, Union

from .models import (
    MIME_TYPES, DEFAULT_MIME_TYPE, VIDEO_MIME_OVERRIDES, VIDEO_EXTENSIONS,
    CATEGORY_EXTENSIONS, CATEGORY_OTHER, CATEGORY_ALIASES,
)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class ContentType:
    """Result of classifying a file"""
    mime_type: str
    category: str


def _suffix(path: PathLike) -> str:
    return Path(path).suffix.lower()


def _with_charset(mime_type: str) -> str:
    if mime_type.startswith('text/') and 'charset=' not in mime_type.lower():
        return f"{mime_type}; charset=utf-8"
    return mime_type


def get_mime_type(path: PathLike) -> str:
    """Get MIME type for file"""
    suffix = _suffix(path)

    # Check our custom MIME types first
    mime_type = MIME_TYPES.get(suffix)

    # Fall back to system mimetypes
    if mime_type is None:
        mime_type, _ = mimetypes.guess_type(Path(path).name)
        mime_type = mime_type or DEFAULT_MIME_TYPE

    # Overrides run last so a generic answer cannot win for known video
    if suffix in VIDEO_MIME_OVERRIDES:
        mime_type = VIDEO_MIME_OVERRIDES[suffix]

    return _with_charset(mime_type)


def get_category(path: PathLike) -> str:
    """Coarse category from the extension alone"""
    suffix = _suffix(path)
    for category, extensions in CATEGORY_EXTENSIONS.items():
        if suffix in extensions:
            return category
    return CATEGORY_OTHER


def classify(path: PathLike) -> ContentType:
    return ContentType(mime_type=get_mime_type(path), category=get_category(path))


def is_video(mime_type: str, path: PathLike) -> bool:
    """Whether a file is served with the video chunk policy.

    Must agree with ``classify``: anything classified as ``video/*``, any
    extension the override table corrects, and any common container.
    """
    suffix = _suffix(path)
    if mime_type.lower().startswith('video/'):
        return True
    return suffix in VIDEO_MIME_OVERRIDES or suffix in VIDEO_EXTENSIONS


def normalize_categories(values: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    """Lowercase and resolve aliases.

    Returns None when no filter was requested. Unknown names are dropped, so
    a filter made only of unknown names is empty and matches nothing.
    """
    requested = [value for value in (values or ()) if value and value.strip()]
    if not requested:
        return None

    categories = set()
    for value in requested:
        name = value.strip().lower()
        name = CATEGORY_ALIASES.get(name, name)
        if name in CATEGORY_EXTENSIONS or name == CATEGORY_OTHER:
            categories.add(name)
    return frozenset(categories)


def matches_categories(path: PathLike, categories: Optional[FrozenSet[str]]) -> bool:
    """True if no filter is set or the file falls into one of the categories"""
    if categories is None:
        return True
    return get_category(path) in categories
