"""
Utility functions for clouddisk-py
"""

import re
from pathlib import Path
from typing import Optional
from urllib.parse import quote
import logging

from .models import HttpRange

logger = logging.getLogger(__name__)


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(size_bytes)

    while size >= 1024.0 and i < len(size_names) - 1:
        size /= 1024.0
        i += 1

    if i == 0:
        return f"{int(size)} {size_names[i]}"
    else:
        return f"{size:.1f} {size_names[i]}"


def parse_http_range(range_header: str) -> Optional[HttpRange]:
    """
    Parse HTTP Range header

    Supports:
    - bytes=start-end
    - bytes=start-
    - bytes=-suffix

    Args:
        range_header: Range header value (e.g., "bytes=0-1023")

    Returns:
        HttpRange object or None if invalid
    """
    if not range_header:
        return None

    range_header = range_header.strip()

    # Must start with "bytes="
    if not range_header.startswith("bytes="):
        return None

    range_spec = range_header[6:].strip()  # Remove "bytes=" prefix

    # Handle multiple ranges (not supported, take first one)
    if ',' in range_spec:
        range_spec = range_spec.split(',')[0].strip()

    # Parse range specification
    if range_spec.startswith('-'):
        # Suffix range: bytes=-500
        try:
            suffix_length = int(range_spec[1:])
        except ValueError:
            return None
        if suffix_length < 0:
            return None
        return HttpRange(suffix_length=suffix_length)

    elif range_spec.endswith('-'):
        # Start range: bytes=500-
        try:
            start = int(range_spec[:-1])
        except ValueError:
            return None
        if start < 0:
            return None
        return HttpRange(start=start)

    elif '-' in range_spec:
        # Full range: bytes=0-1023
        try:
            start_str, end_str = range_spec.split('-', 1)
            start = int(start_str)
            end = int(end_str)
        except ValueError:
            return None
        if start < 0 or end < 0:
            return None
        return HttpRange(start=start, end=end)

    else:
        # Invalid format
        return None


def create_content_range_header(start: int, end: int, total: int) -> str:
    """Create Content-Range header value"""
    return f"bytes {start}-{end}/{total}"


def create_unsatisfied_range_header(total: int) -> str:
    """Create Content-Range header value for a 416 response"""
    return f"bytes */{total}"


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe filesystem storage"""
    # Remove or replace dangerous characters
    filename = re.sub(r'[<>:"/\\|?*]', '_', filename)

    # Remove control characters
    filename = re.sub(r'[\x00-\x1f\x7f]', '', filename)

    # Trim whitespace and dots
    filename = filename.strip(' .')

    # Ensure not empty
    if not filename:
        filename = "unnamed"

    # Limit length
    if len(filename) > 255:
        name, ext = Path(filename).stem, Path(filename).suffix
        max_name_len = 255 - len(ext)
        filename = name[:max_name_len] + ext

    return filename


def validate_filename(filename: str) -> bool:
    """Validate a single path component for basic safety"""
    if not filename or filename in ('.', '..'):
        return False

    # Check for dangerous characters, including both path separators
    dangerous_chars = '<>:"/\\|?*'
    if any(char in filename for char in dangerous_chars):
        return False

    # Check for control characters
    if any(ord(char) < 32 or ord(char) == 127 for char in filename):
        return False

    return True


def fix_filename_encoding(filename: str) -> str:
    """Repair UTF-8 filenames that were decoded as latin-1 by the transport.

    ``"æ\x8a¥å\x91\x8a.pdf"`` becomes ``"报告.pdf"``. Names that are not such
    mojibake (plain ASCII, or genuine latin-1 text) are returned unchanged.
    """
    if not filename:
        return filename

    try:
        repaired = filename.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return filename

    return repaired


def normalize_path(path: str) -> str:
    """Normalize path separators for cross-platform compatibility"""
    return path.replace('\\', '/')


def join_relative(parent: str, name: str) -> str:
    """Join a relative directory and a child name with '/' separators"""
    parent = normalize_path(parent or "").strip('/')
    return f"{parent}/{name}" if parent else name


def ascii_fallback_filename(filename: str) -> str:
    """ASCII-only variant of a filename for the legacy ``filename=`` parameter"""
    fallback = "".join(
        ch if 32 <= ord(ch) < 127 and ch not in {'"', '\\'} else "_"
        for ch in filename
    )
    return fallback or "download"


def content_disposition(filename: str, disposition: str = "attachment") -> str:
    """Build a Content-Disposition value carrying both ASCII and UTF-8 names"""
    return (
        f"{disposition}; filename=\"{ascii_fallback_filename(filename)}\"; "
        f"filename*=UTF-8''{quote(filename, safe='')}"
    )


def create_response_headers(
    content_length: Optional[int] = None,
    content_type: str = "application/octet-stream",
    cache_control: str = "no-cache"
) -> dict:
    """Create standard response headers"""
    headers = {
        "Content-Type": content_type,
        "Cache-Control": cache_control,
        "X-Content-Type-Options": "nosniff",
    }

    if content_length is not None:
        headers["Content-Length"] = str(content_length)

    return headers
