"""Server configuration supplied by the host application."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8765
DEFAULT_STORAGE_DIR = "shared"
MAX_UPLOAD_BYTES = 64 * 1024 * 1024  # 64 MB


@dataclass
class ServerConfig:
    """Settings for one transfer server instance."""

    storage_dir: Union[str, Path]
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    index_html: Optional[str] = None

    # Push settings
    send_timeout: float = 5.0  # seconds per push

    # Shutdown: grace for in-flight work, then extra time before hard exit
    stop_grace: float = 1.0
    stop_timeout: float = 2.0

    # Upload body limit: Content-Length check plus the multipart part limit
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    log_level: str = "info"

    def __post_init__(self):
        self.storage_dir = Path(self.storage_dir)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Build a config from ``HOTDROP_*`` environment variables."""
        return cls(
            storage_dir=os.environ.get("HOTDROP_STORAGE_DIR", DEFAULT_STORAGE_DIR),
            port=int(os.environ.get("HOTDROP_PORT", DEFAULT_PORT)),
            host=os.environ.get("HOTDROP_HOST", DEFAULT_HOST),
            log_level=os.environ.get("HOTDROP_LOG_LEVEL", "info"),
        )
