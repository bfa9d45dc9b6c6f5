"""File store gateway over the shared storage directory."""

import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Union

from hotdrop.core.exceptions import ClientError, NotFoundError, StartupError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_RESERVED_NAMES = {"", ".", ".."}
_TEMP_PREFIX = ".upload-"
_SEPARATORS = {"/", "\\", "\x00", os.sep} | ({os.altsep} if os.altsep else set())


class FileStore:
    """Flat directory of uploaded files addressed by sanitized name."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    @staticmethod
    def sanitize(name: str) -> str:
        """Trim a user-supplied name and replace unsafe characters with ``_``."""
        return _UNSAFE_CHARS.sub("_", name.strip())

    @staticmethod
    def default_name() -> str:
        return f"{int(time.time() * 1000)}.bin"

    def check_usable(self) -> None:
        """
        Verify the directory can be used for storage.

        Raises:
            StartupError: If the directory is missing or not writable
        """
        if not self.directory.is_dir():
            raise StartupError(f"Storage directory does not exist: {self.directory}")
        if not os.access(self.directory, os.W_OK | os.X_OK):
            raise StartupError(f"Storage directory is not writable: {self.directory}")

    def list(self) -> List[str]:
        """Names of stored files in lexicographic order."""
        return sorted(entry.name for entry in self.directory.iterdir()
                      if entry.is_file() and not entry.name.startswith(_TEMP_PREFIX))

    def write(self, name: Optional[str], data: bytes) -> str:
        """
        Create or overwrite a file.

        Args:
            name: Requested file name; a timestamped ``.bin`` name is used when blank
            data: File contents

        Returns:
            The sanitized name the file was stored under

        Raises:
            ClientError: If the name sanitizes to something unusable
        """
        if name is None or not name.strip():
            name = self.default_name()
        safe_name = self.sanitize(name)
        if safe_name in _RESERVED_NAMES:
            raise ClientError(f"Invalid file name: {name!r}")

        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=_TEMP_PREFIX)
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_path, self.directory / safe_name)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.info(f"stored {safe_name} ({len(data)} bytes)")
        return safe_name

    def read(self, name: str) -> bytes:
        """
        Read a file from the directory under the name as given.

        Raises:
            NotFoundError: If no regular file is stored under ``name``
        """
        if (name in _RESERVED_NAMES or name.startswith(_TEMP_PREFIX)
                or any(sep in name for sep in _SEPARATORS)):
            raise NotFoundError(f"Not found: {name}")
        path = self.directory / name
        if path.resolve().parent != self.directory.resolve() or not path.is_file():
            raise NotFoundError(f"Not found: {name}")
        return path.read_bytes()
