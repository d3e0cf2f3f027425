"""
Main application factory for clouddisk-py
"""

import asyncio
import logging
import logging.handlers
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .auth import SecretVerifier
from .config import ConfigManager, CONFIG_ENV_VAR, load_config
from .models import Config
from .middleware import setup_middleware
from .api import setup_api_routes
from .metrics import metrics_manager
from .status import SystemStatusCache
from .storage_server import StorageServer


logger = logging.getLogger(__name__)


def setup_logging(config: Config):
    """Setup logging configuration"""
    log_config = config.logging

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(log_config.level).upper(), logging.INFO))

    # Clear existing handlers
    root_logger.handlers.clear()

    # Create formatter
    if log_config.json:
        formatter = logging.Formatter(
            '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","msg":"%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler if configured
    if log_config.file:
        log_file = Path(log_config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def create_directories(config: Config):
    """Create the storage root (and log directory) if missing"""
    config.storage.root.mkdir(parents=True, exist_ok=True)
    logger.info(f"Storage root: {config.storage.root}")

    if config.logging.file:
        Path(config.logging.file).parent.mkdir(parents=True, exist_ok=True)


def create_app(
    config_path: Optional[str] = None,
    verify_secret: Optional[Callable] = None,
) -> FastAPI:
    """
    Create FastAPI application

    Args:
        config_path: YAML config file; falls back to $CLOUDDISK_CONFIG, then clouddisk.yaml
        verify_secret: Credential predicate ``(secret) -> bool``, sync or async;
            defaults to one built from the ``auth`` config section
    """

    # Load configuration
    config_manager = ConfigManager(config_path)
    config = config_manager.load_config()

    # Setup logging
    setup_logging(config)

    # Create directories
    create_directories(config)

    storage = StorageServer(config)
    status_cache = SystemStatusCache(config.status.refreshInterval)
    verifier = verify_secret or SecretVerifier(config.auth)

    def on_reload(old_config: Config, new_config: Config):
        storage.apply_config(new_config)
        if isinstance(verifier, SecretVerifier):
            verifier.update(new_config.auth)
        app.state.config = new_config

    config_manager.add_reload_callback(on_reload)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"clouddisk-py starting on {config.server.addr}:{config.server.port}")
        logger.info(f"TLS: {'enabled' if config.server.tls.enabled else 'disabled'}")

        if config.status.enabled:
            await status_cache.start()
        config_manager.start_watching(asyncio.get_running_loop())

        yield

        config_manager.stop_watching()
        await status_cache.stop()
        logger.info("clouddisk-py shutdown complete")

    # Create FastAPI app
    app = FastAPI(
        title="clouddisk-py",
        description="Personal cloud drive with range streaming",
        version=__version__,
        docs_url="/docs" if os.getenv("CLOUDDISK_DEBUG") else None,
        redoc_url="/redoc" if os.getenv("CLOUDDISK_DEBUG") else None,
        lifespan=lifespan,
    )

    # Store shared state
    app.state.config = config
    app.state.config_manager = config_manager
    app.state.metrics = metrics_manager
    app.state.storage = storage
    app.state.status = status_cache
    app.state.verify_secret = verifier

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length", "Content-Disposition"],
    )

    # Setup custom middleware
    setup_middleware(app)

    # Setup routes
    setup_api_routes(app)

    # Health check endpoint
    @app.get("/healthz")
    async def health_check():
        return {"ok": True, "version": __version__}

    # Metrics endpoint
    @app.get("/metrics")
    async def get_metrics():
        return metrics_manager.get_metrics()

    return app


def main():
    """Main entry point for running the server"""
    import argparse

    parser = argparse.ArgumentParser(description="clouddisk-py personal cloud drive")
    parser.add_argument("--config", "-c", default=None, help="Configuration file path")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args()

    # Set debug environment
    if args.debug:
        os.environ["CLOUDDISK_DEBUG"] = "1"

    # The factory runs inside uvicorn and finds the file through the environment
    if args.config:
        os.environ[CONFIG_ENV_VAR] = args.config

    # Load config to get server settings
    config = load_config(args.config)

    # Override with command line args
    host = args.host or config.server.addr
    port = args.port or config.server.port

    # SSL context
    ssl_keyfile = None
    ssl_certfile = None
    if config.server.tls.enabled:
        ssl_keyfile = config.server.tls.keyfile
        ssl_certfile = config.server.tls.certfile

    # Run server
    uvicorn.run(
        "clouddisk.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=args.reload,
        ssl_keyfile=ssl_keyfile,
        ssl_certfile=ssl_certfile,
        access_log=False,  # We handle access logging ourselves
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    main()
