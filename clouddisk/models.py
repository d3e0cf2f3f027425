"""
Data models and constants for clouddisk-py
"""

from enum import Enum
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


class ResponseCode(Enum):
    """Standard response codes"""
    SUCCESS = 0
    ERROR = 1
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    NOT_FOUND = 404
    CONFLICT = 409
    PAYLOAD_TOO_LARGE = 413
    RANGE_NOT_SATISFIABLE = 416
    INTERNAL_ERROR = 500


@dataclass
class ApiResponse:
    """Standard API response format"""
    code: int = ResponseCode.SUCCESS.value
    msg: str = "success"
    data: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "msg": self.msg,
            "data": self.data
        }


@dataclass(frozen=True)
class FileEntry:
    """Snapshot of one filesystem object taken at listing time"""
    name: str
    path: str
    size: int
    is_dir: bool
    modified: float
    category: str = "other"
    mime_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "is_dir": self.is_dir,
            "modified": datetime.fromtimestamp(self.modified, tz=timezone.utc).isoformat(),
            "category": self.category,
            "mime_type": self.mime_type
        }


@dataclass
class Listing:
    """One-level directory listing"""
    path: str
    parent_path: Optional[str]
    entries: List[FileEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "parent_path": self.parent_path,
            "files": [entry.to_dict() for entry in self.entries]
        }


@dataclass
class WalkError:
    """A subtree the walker could not read"""
    path: str
    kind: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "kind": self.kind, "message": self.message}


@dataclass
class MoveResult:
    """Outcome of moving one item of a batch"""
    item: str
    success: bool
    dest: Optional[str] = None
    message: Optional[str] = None
    kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"item": self.item, "success": self.success}
        if self.dest is not None:
            result["dest"] = self.dest
        if self.message is not None:
            result["message"] = self.message
        if self.kind is not None:
            result["kind"] = self.kind
        return result


@dataclass
class BatchMoveResult:
    """Per-item results of a batch move plus the success count"""
    results: List[MoveResult] = field(default_factory=list)

    @property
    def moved(self) -> int:
        return sum(1 for result in self.results if result.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moved": self.moved,
            "results": [result.to_dict() for result in self.results]
        }


@dataclass
class TlsConfig:
    """TLS configuration"""
    enabled: bool = False
    certfile: str = ""
    keyfile: str = ""


@dataclass
class ServerConfig:
    """Server configuration"""
    addr: str = "0.0.0.0"
    port: int = 8080
    tls: TlsConfig = field(default_factory=TlsConfig)


@dataclass
class StorageConfig:
    """Storage root and write limits"""
    root: Path = field(default_factory=lambda: Path("cloud_data"))
    maxUploadSize: Optional[int] = 10 * 1024 * 1024 * 1024
    maxNameAttempts: Optional[int] = 10000

    def __post_init__(self):
        if isinstance(self.root, str):
            self.root = Path(self.root)
        self.root = self.root.expanduser().resolve()

        if self.maxUploadSize is not None and self.maxUploadSize <= 0:
            # Non-positive values mean no limit
            self.maxUploadSize = None


@dataclass
class AuthConfig:
    """Shared-secret configuration"""
    password: str = ""
    pass_bcrypt: bool = False


@dataclass
class StreamingConfig:
    """Read sizes and video chunk policy, all in bytes"""
    readChunkSize: int = 64 * 1024
    videoHeadChunk: int = 10 * 1024 * 1024
    videoTailWindow: int = 10 * 1024 * 1024
    videoTailChunk: int = 5 * 1024 * 1024
    videoMidChunk: int = 2 * 1024 * 1024


@dataclass
class SearchConfig:
    """Search configuration"""
    maxResults: Optional[int] = 1000


@dataclass
class StatusConfig:
    """System status cache configuration"""
    enabled: bool = True
    refreshInterval: float = 5.0


@dataclass
class LoggingConfig:
    """Logging configuration"""
    json: bool = False
    file: str = ""
    level: str = "INFO"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class HotReloadConfig:
    """Hot reload configuration"""
    enabled: bool = True
    watchConfig: bool = True
    debounceMs: int = 1000


@dataclass
class Config:
    """Main configuration container"""
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    status: StatusConfig = field(default_factory=StatusConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    hotReload: HotReloadConfig = field(default_factory=HotReloadConfig)


# HTTP Range parsing result
@dataclass
class HttpRange:
    """HTTP Range header parsing result"""
    start: Optional[int] = None
    end: Optional[int] = None
    suffix_length: Optional[int] = None

    def resolve(self, content_length: int) -> Tuple[int, int]:
        """Resolve to inclusive start/end offsets.

        The end is not clamped: ``bytes=0-999`` against a 10 byte file
        resolves to ``(0, 999)`` and fails validation upstream.
        """
        if self.suffix_length is not None:
            # bytes=-500 (last 500 bytes); bytes=-0 selects nothing
            if self.suffix_length == 0:
                return content_length, content_length - 1
            start = max(0, content_length - self.suffix_length)
            return start, content_length - 1

        start = self.start if self.start is not None else 0
        end = self.end if self.end is not None else content_length - 1
        return start, end


# Common MIME types, checked before the system table
MIME_TYPES = {
    '.txt': 'text/plain',
    '.md': 'text/markdown',
    '.log': 'text/plain',
    '.csv': 'text/csv',
    '.html': 'text/html',
    '.htm': 'text/html',
    '.css': 'text/css',
    '.js': 'application/javascript',
    '.json': 'application/json',
    '.xml': 'application/xml',
    '.pdf': 'application/pdf',
    '.epub': 'application/epub+zip',
    '.zip': 'application/zip',
    '.tar': 'application/x-tar',
    '.gz': 'application/gzip',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.bmp': 'image/bmp',
    '.webp': 'image/webp',
    '.ico': 'image/x-icon',
    '.svg': 'image/svg+xml',
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
    '.ogg': 'audio/ogg',
    '.flac': 'audio/flac',
    '.m4a': 'audio/mp4',
    '.aac': 'audio/aac',
    '.mp4': 'video/mp4',
    '.avi': 'video/x-msvideo',
    '.mov': 'video/quicktime',
    '.doc': 'application/msword',
    '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    '.xls': 'application/vnd.ms-excel',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    '.ppt': 'application/vnd.ms-powerpoint',
    '.pptx': 'application/vnd.openxmlformats-officedocument.presentationml.presentation',
}

# Default MIME type for unknown files
DEFAULT_MIME_TYPE = 'application/octet-stream'

# Applied after the generic lookup: these are always streamed as video even
# when a system table maps them to a binary container type
VIDEO_MIME_OVERRIDES = {
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
    '.flv': 'video/x-flv',
    '.m4v': 'video/x-m4v',
    '.3gp': 'video/3gpp',
    '.m2ts': 'video/mp2t',
    '.mts': 'video/mp2t',
    '.ogv': 'video/ogg',
    '.wmv': 'video/x-ms-wmv',
}

# Common video containers, independent of any MIME table
VIDEO_EXTENSIONS = frozenset({
    '.mp4', '.mkv', '.mov', '.avi', '.webm', '.m4v', '.flv', '.wmv',
    '.mpg', '.mpeg', '.3gp', '.m2ts', '.mts', '.ogv',
})

# Coarse categories used for listing and search filters
CATEGORY_EXTENSIONS = {
    'image': frozenset({'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.svg', '.ico', '.heic', '.tif', '.tiff'}),
    'video': VIDEO_EXTENSIONS,
    'audio': frozenset({'.mp3', '.wav', '.ogg', '.flac', '.m4a', '.aac', '.wma', '.opus'}),
    'text': frozenset({'.txt', '.md', '.json', '.xml', '.log', '.csv', '.yaml', '.yml', '.ini', '.conf'}),
    'document': frozenset({'.pdf', '.doc', '.docx', '.epub', '.xls', '.xlsx', '.ppt', '.pptx', '.odt', '.rtf'}),
}

CATEGORY_OTHER = 'other'

# Filter aliases accepted from clients
CATEGORY_ALIASES = {
    'doc': 'document',
    'docs': 'document',
    'images': 'image',
    'videos': 'video',
}
