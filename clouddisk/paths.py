"""
Sandboxed path resolution for clouddisk-py

Every client-supplied path goes through ``resolve_path`` before the
filesystem is touched, and mutations call it again right before acting.
Results are never cached: the tree may change between any two requests.
"""

import ntpath
import os
import posixpath
import logging
from pathlib import Path
from typing import Optional, Union

from .errors import InvalidPathError
from .utils import normalize_path

logger = logging.getLogger(__name__)


def _escapes(relative: str) -> bool:
    """True if a root-relative path leaves the root or is absolute"""
    if relative in ("", "."):
        return False

    first = normalize_path(relative).split('/', 1)[0]
    if first == '..':
        return True

    # Drive letters and UNC prefixes count as absolute on every host
    return (
        os.path.isabs(relative)
        or posixpath.isabs(relative)
        or ntpath.isabs(relative)
        or bool(ntpath.splitdrive(relative)[0])
    )


def _lexical_join(root: str, user_path: str) -> str:
    if '\x00' in user_path:
        raise ValueError("embedded null byte")

    # Drive-qualified input ("C:foo", "C:\\x", "\\\\host\\share") never
    # denotes a location under the root
    if ntpath.splitdrive(user_path)[0]:
        raise ValueError("drive or UNC prefix")

    # Parent segments are refused outright, even when they would stay inside
    if '..' in normalize_path(user_path).split('/'):
        raise ValueError("parent directory segment")

    joined = os.path.abspath(os.path.join(root, normalize_path(user_path)))
    relative = os.path.relpath(joined, root)
    if _escapes(relative):
        raise ValueError("outside storage root")
    return joined


def resolve_path(root: Union[str, Path], user_path: Optional[str]) -> Path:
    """
    Resolve a client path against the storage root

    Args:
        root: Storage root (absolute)
        user_path: Untrusted relative path; empty or None means the root

    Returns:
        Absolute, normalized path inside the root. Symlinks are not
        followed, so the result names the link itself when there is one.

    Raises:
        InvalidPathError: If the path escapes the root or is malformed
    """
    display = user_path if isinstance(user_path, str) else ""

    try:
        base = os.path.abspath(os.fspath(root))
        if user_path is None:
            user_path = ""
        if not isinstance(user_path, str):
            raise TypeError("path must be a string")

        joined = _lexical_join(base, user_path.strip())

        # The real target must stay below the real root as well, which
        # rejects symlinks pointing outside the sandbox
        real_root = os.path.realpath(base)
        real_target = os.path.realpath(joined)
        if _escapes(os.path.relpath(real_target, real_root)):
            raise ValueError("symlink escapes storage root")

    except (TypeError, ValueError, OSError) as e:
        logger.warning(f"Rejected path {display!r}: {e}")
        raise InvalidPathError(f"Invalid path: {display}")

    return Path(joined)


def is_addressable_name(name: str) -> bool:
    """False for a child name ``resolve_path`` would read as a drive prefix ("x:y.txt")"""
    return not ntpath.splitdrive(name)[0]


def is_valid_path(root: Union[str, Path], user_path: Optional[str]) -> bool:
    """Predicate form of ``resolve_path``"""
    try:
        resolve_path(root, user_path)
    except InvalidPathError:
        return False
    return True


def to_relative(root: Union[str, Path], path: Union[str, Path]) -> str:
    """Root-relative path with '/' separators; '' for the root itself"""
    relative = os.path.relpath(os.fspath(path), os.path.abspath(os.fspath(root)))
    if relative == ".":
        return ""
    return normalize_path(relative)


def parent_of(relative: str) -> Optional[str]:
    """Parent of a root-relative path: None for the root, '' for top level"""
    relative = normalize_path(relative or "").strip('/')
    if not relative or relative == ".":
        return None
    parent = posixpath.dirname(relative)
    return parent
