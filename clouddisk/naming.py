"""
Collision-free name allocation for writes into a shared directory

``allocate_name`` is a plain check-then-use probe: it holds no lock and
reserves nothing. Two writers racing on the same directory can both see a
name as free and the second write replaces the first. Uploads close that
window by creating the file exclusively and asking again on conflict
(see ``fileops.FileOperations.save_upload``); rename and move do not.
"""

import os
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from .errors import NameConflictExhaustedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10000


def split_name(name: str) -> Tuple[str, str]:
    """Split a filename into stem and extension.

    The extension starts at the last dot, unless that dot is the first
    character (``.bashrc`` has no extension).
    """
    index = name.rfind('.')
    if index <= 0:
        return name, ""
    return name[:index], name[index:]


def candidate_name(stem: str, ext: str, n: int) -> str:
    """The n-th probe: ``stem.ext`` for 0, ``stem (n).ext`` afterwards"""
    if n == 0:
        return f"{stem}{ext}"
    return f"{stem} ({n}){ext}"


def allocate_name(
    dest_dir: Union[str, Path],
    desired_name: str,
    max_attempts: Optional[int] = DEFAULT_MAX_ATTEMPTS,
) -> str:
    """
    Return a name that does not exist in dest_dir at the time of the check

    Args:
        dest_dir: Absolute directory the name will be created in
        desired_name: Requested name (a single path component)
        max_attempts: Number of suffixes to try; None probes without bound

    Returns:
        ``desired_name`` if free, else the first free ``stem (n).ext``

    Raises:
        NameConflictExhaustedError: If every probe within max_attempts exists
    """
    stem, ext = split_name(desired_name)
    dest_dir = os.fspath(dest_dir)

    n = 0
    while max_attempts is None or n <= max_attempts:
        name = candidate_name(stem, ext, n)
        # lexists: a dangling symlink still occupies the name
        if not os.path.lexists(os.path.join(dest_dir, name)):
            if n:
                logger.debug(f"Name conflict for {desired_name!r}, using {name!r}")
            return name
        n += 1

    raise NameConflictExhaustedError(
        f"No free name for {desired_name} after {max_attempts} attempts"
    )
