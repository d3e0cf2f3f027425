"""
Configuration loading and management for clouddisk-py
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
import asyncio
import time

from .models import (
    Config, ServerConfig, StorageConfig, AuthConfig, StreamingConfig,
    SearchConfig, StatusConfig, TlsConfig, LoggingConfig, HotReloadConfig
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "clouddisk.yaml"
CONFIG_ENV_VAR = "CLOUDDISK_CONFIG"


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for config file changes"""

    def __init__(self, config_path: Path, callback):
        self.config_path = config_path.resolve()
        self.callback = callback
        self.last_modified = 0
        self.debounce_ms = 1000

    def on_modified(self, event):
        if event.is_directory:
            return

        file_path = Path(event.src_path).resolve()
        if file_path == self.config_path:
            # Debounce multiple events
            now = time.time() * 1000
            if now - self.last_modified < self.debounce_ms:
                return
            self.last_modified = now

            logger.info(f"Configuration file changed: {file_path}")
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Failed to reload configuration: {e}")


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


class ConfigManager:
    """Configuration manager with hot reload support"""

    def __init__(self, config_path: Optional[str] = None):
        if config_path is None:
            config_path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
        self.config_path = Path(config_path).resolve()
        self.config: Optional[Config] = None
        self.observer: Optional[Observer] = None
        self.reload_callbacks = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _read_config(self) -> Config:
        with open(self.config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("top level of the configuration must be a mapping")
        return self._parse_config(data)

    def load_config(self) -> Config:
        """Load configuration from YAML file"""
        if not self.config_path.exists():
            logger.warning(f"Configuration file not found: {self.config_path}, using defaults")
            self.config = Config()
            return self.config

        try:
            config = self._read_config()
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.error(f"Failed to load configuration: {e}")
            self.config = Config()
            return self.config

        self.config = config
        logger.info(f"Configuration loaded from {self.config_path}")
        return config

    def _parse_config(self, data: Dict[str, Any]) -> Config:
        """Parse configuration data into Config object"""

        # Server configuration
        server_data = _section(data, 'server')
        tls_data = _section(server_data, 'tls')
        server = ServerConfig(
            addr=server_data.get('addr', '0.0.0.0'),
            port=int(server_data.get('port', 8080)),
            tls=TlsConfig(
                enabled=tls_data.get('enabled', False),
                certfile=tls_data.get('certfile', ''),
                keyfile=tls_data.get('keyfile', '')
            )
        )

        # Storage root, resolved relative to the working directory
        storage_data = _section(data, 'storage')
        storage = StorageConfig(
            root=Path(storage_data.get('root', 'cloud_data')),
            maxUploadSize=_optional_int(storage_data.get('maxUploadSize', 10 * 1024 ** 3)),
            maxNameAttempts=_optional_int(storage_data.get('maxNameAttempts', 10000))
        )

        # Shared secret
        auth_data = _section(data, 'auth')
        auth = AuthConfig(
            password=str(auth_data.get('password', '') or ''),
            pass_bcrypt=bool(auth_data.get('pass_bcrypt', False))
        )

        # Streaming and video chunk policy
        streaming_data = _section(data, 'streaming')
        defaults = StreamingConfig()
        streaming = StreamingConfig(
            readChunkSize=int(streaming_data.get('readChunkSize', defaults.readChunkSize)),
            videoHeadChunk=int(streaming_data.get('videoHeadChunk', defaults.videoHeadChunk)),
            videoTailWindow=int(streaming_data.get('videoTailWindow', defaults.videoTailWindow)),
            videoTailChunk=int(streaming_data.get('videoTailChunk', defaults.videoTailChunk)),
            videoMidChunk=int(streaming_data.get('videoMidChunk', defaults.videoMidChunk))
        )
        for name in ('readChunkSize', 'videoHeadChunk', 'videoTailChunk', 'videoMidChunk'):
            if getattr(streaming, name) <= 0:
                raise ValueError(f"streaming.{name} must be positive")

        # Search
        search_data = _section(data, 'search')
        search = SearchConfig(
            maxResults=_optional_int(search_data.get('maxResults', 1000))
        )

        # System status cache
        status_data = _section(data, 'status')
        status = StatusConfig(
            enabled=status_data.get('enabled', True),
            refreshInterval=float(status_data.get('refreshInterval', 5.0))
        )

        # Logging
        logging_data = _section(data, 'logging')
        logging_config = LoggingConfig(
            json=logging_data.get('json', False),
            file=logging_data.get('file', ''),
            level=logging_data.get('level', 'INFO'),
            max_size_mb=logging_data.get('max_size_mb', 100),
            backup_count=logging_data.get('backup_count', 5)
        )

        # Hot reload
        reload_data = _section(data, 'hotReload')
        hot_reload = HotReloadConfig(
            enabled=reload_data.get('enabled', True),
            watchConfig=reload_data.get('watchConfig', True),
            debounceMs=reload_data.get('debounceMs', 1000)
        )

        return Config(
            server=server,
            storage=storage,
            auth=auth,
            streaming=streaming,
            search=search,
            status=status,
            logging=logging_config,
            hotReload=hot_reload
        )

    def start_watching(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Start watching configuration file for changes"""
        if not self.config or not self.config.hotReload.enabled or not self.config.hotReload.watchConfig:
            return

        if self.observer:
            return  # Already watching

        # Async callbacks are handed to this loop from the watcher thread
        self._loop = loop

        try:
            self.observer = Observer()
            handler = ConfigFileHandler(
                self.config_path,
                self._on_config_changed
            )
            handler.debounce_ms = self.config.hotReload.debounceMs

            watch_dir = self.config_path.parent
            self.observer.schedule(handler, str(watch_dir), recursive=False)
            self.observer.start()

            logger.info(f"Started watching configuration file: {self.config_path}")

        except OSError as e:
            self.observer = None
            logger.error(f"Failed to start configuration file watcher: {e}")

    def stop_watching(self):
        """Stop watching configuration file"""
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None
            logger.info("Stopped watching configuration file")

    def _on_config_changed(self):
        """Handle configuration file changes"""
        old_config = self.config
        try:
            new_config = self._read_config()
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.error(f"Failed to reload configuration, keeping previous: {e}")
            return

        # The storage root is fixed for the lifetime of the process
        if old_config is not None and new_config.storage.root != old_config.storage.root:
            logger.warning(
                f"storage.root changed to {new_config.storage.root}; "
                f"keeping {old_config.storage.root} until restart"
            )
            new_config.storage.root = old_config.storage.root

        self.config = new_config

        # Notify callbacks
        for callback in self.reload_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    if self._loop is None:
                        logger.warning("No event loop for async reload callback, skipping")
                        continue
                    asyncio.run_coroutine_threadsafe(callback(old_config, new_config), self._loop)
                else:
                    callback(old_config, new_config)
            except Exception as e:
                logger.error(f"Configuration reload callback failed: {e}")

        logger.info("Configuration reloaded successfully")

    def add_reload_callback(self, callback):
        """Add callback to be called when configuration is reloaded"""
        self.reload_callbacks.append(callback)

    def remove_reload_callback(self, callback):
        """Remove reload callback"""
        if callback in self.reload_callbacks:
            self.reload_callbacks.remove(callback)

    def get_config(self) -> Config:
        """Get current configuration"""
        if self.config is None:
            self.config = self.load_config()
        return self.config


# Global configuration manager instance
config_manager = ConfigManager()


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file"""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()


def get_config() -> Config:
    """Get current configuration"""
    return config_manager.get_config()
