"""Observer interface notified about peers and their messages."""

import logging
from typing import Callable, Optional

from hotdrop.models.client import ClientInfo

logger = logging.getLogger(__name__)


class TransferObserver:
    """
    Receives server events for the embedding application.

    Both hooks are invoked synchronously on the server's event loop, so
    implementations should return quickly.
    """

    def on_new_client(self, info: ClientInfo) -> None:
        """Called once per identity, on first contact."""

    def on_client_message(self, identity: str, text: str) -> None:
        """Called for every inbound message, whatever the transport."""


class CallbackObserver(TransferObserver):
    """Adapts two plain callables to the observer interface."""

    def __init__(self,
                 on_new_client: Optional[Callable[[ClientInfo], None]] = None,
                 on_client_message: Optional[Callable[[str, str], None]] = None):
        self._on_new_client = on_new_client
        self._on_client_message = on_client_message

    def on_new_client(self, info: ClientInfo) -> None:
        if self._on_new_client is not None:
            self._on_new_client(info)

    def on_client_message(self, identity: str, text: str) -> None:
        if self._on_client_message is not None:
            self._on_client_message(identity, text)


def notify_new_client(observer: TransferObserver, info: ClientInfo) -> None:
    try:
        observer.on_new_client(info)
    except Exception:
        logger.exception(f"on_new_client failed for {info.ip}")


def notify_client_message(observer: TransferObserver, identity: str, text: str) -> None:
    try:
        observer.on_client_message(identity, text)
    except Exception:
        logger.exception(f"on_client_message failed for {identity}")
