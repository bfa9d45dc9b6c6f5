"""Host-facing wrapper that runs the transfer server on a background thread."""

import logging
import socket
import threading
import time
from typing import Optional

import uvicorn

from hotdrop.config import ServerConfig
from hotdrop.core.exceptions import StartupError
from hotdrop.core.file_store import FileStore
from hotdrop.core.observer import TransferObserver
from hotdrop.core.outbox import Outbox
from hotdrop.core.registry import ClientRegistry
from hotdrop.core.sessions import SessionMultiplexer
from hotdrop.main import create_app

logger = logging.getLogger(__name__)


class LocalTransferServer:
    """
    Embeddable transfer server.

    The host application owns hotspot setup and the UI; it constructs this
    with a port and storage directory, calls ``start()``, and receives peer
    events through the observer.
    """

    def __init__(self, config: ServerConfig, observer: Optional[TransferObserver] = None):
        self.config = config
        self.app = create_app(config, observer)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None

    @property
    def registry(self) -> ClientRegistry:
        return self.app.state.registry

    @property
    def outbox(self) -> Outbox:
        return self.app.state.outbox

    @property
    def sessions(self) -> SessionMultiplexer:
        return self.app.state.sessions

    @property
    def files(self) -> FileStore:
        return self.app.state.files

    @property
    def port(self) -> int:
        """Port actually bound, which differs from the config when it asked for 0."""
        if self._socket is not None:
            return self._socket.getsockname()[1]
        return self.config.port

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, timeout: float = 5.0) -> None:
        """
        Bind the port and serve in the background. Does nothing if already started.

        Raises:
            StartupError: If the storage directory is unusable, the port cannot
                be bound, or the server does not come up within ``timeout``
        """
        if self._server is not None:
            return
        self.files.check_usable()
        try:
            sock = socket.create_server((self.config.host, self.config.port))
        except OSError as e:
            raise StartupError(f"Cannot listen on {self.config.host}:{self.config.port}: {e}") from e

        server = uvicorn.Server(uvicorn.Config(
            self.app,
            log_level=self.config.log_level,
            timeout_graceful_shutdown=self.config.stop_grace,
        ))
        thread = threading.Thread(target=server.run, kwargs={"sockets": [sock]},
                                  name="hotdrop-server", daemon=True)
        thread.start()

        deadline = time.monotonic() + timeout
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                server.should_exit = True
                thread.join(self.config.stop_timeout)
                sock.close()
                raise StartupError(f"Server failed to start on port {self.config.port}")
            time.sleep(0.01)

        self._server, self._thread, self._socket = server, thread, sock
        logger.info(f"listening on {self.config.host}:{self.port}, storing in {self.config.storage_dir}")

    def stop(self) -> None:
        """Stop serving, forcing exit once the grace period has passed."""
        server, thread = self._server, self._thread
        if server is None or thread is None:
            return
        server.should_exit = True
        thread.join(self.config.stop_grace + self.config.stop_timeout)
        if thread.is_alive():
            logger.warning("server did not stop in time, forcing exit")
            server.force_exit = True
            thread.join(self.config.stop_timeout)
        if self._socket is not None:
            self._socket.close()
        self._server = self._thread = self._socket = None
        logger.info("server stopped")

    def send_message_to(self, identity: str, text: str) -> None:
        """Push a message to a peer, or queue it until the peer connects. Thread-safe."""
        self.sessions.send_message_threadsafe(identity, text)
