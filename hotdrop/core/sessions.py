"""Session multiplexer for persistent client channels."""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Optional, Set, Tuple

from starlette.websockets import WebSocket, WebSocketState

from hotdrop.core.exceptions import TransportError
from hotdrop.core.observer import TransferObserver, notify_client_message
from hotdrop.core.outbox import Outbox

logger = logging.getLogger(__name__)


class Channel(ABC):
    """A persistent connection that text messages can be pushed to."""

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Push one message, raising TransportError on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying connection."""


class WebSocketChannel(Channel):
    """Full-duplex channel backed by an accepted WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send_text(self, text: str) -> None:
        try:
            await self.websocket.send_text(text)
        except Exception as e:
            raise TransportError(f"websocket send failed: {e}") from e

    async def close(self) -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=1001)
        except RuntimeError as e:
            logger.debug(f"websocket already closed: {e}")

    def __repr__(self) -> str:
        return f"WebSocketChannel(client={self.websocket.client!r})"


class StreamChannel(Channel):
    """
    Push-only channel consumed as a Server-Sent Events stream.

    Messages are buffered in memory until the response generator yields
    them; closing the channel ends the stream.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_text(self, text: str) -> None:
        if self._closed:
            raise TransportError("event stream closed")
        self._queue.put_nowait(text)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[Dict[str, str]]:
        """Yield one SSE event per pushed message until the channel closes."""
        while True:
            text = await self._queue.get()
            if text is None:
                return
            yield {"event": "message", "data": text}


class SessionMultiplexer:
    """
    Tracks every open channel per identity and routes messages to them.

    Outbound messages go to all open channels of an identity at once; when
    an identity has no open channel they wait in the outbox and are flushed
    into the next channel that opens.
    """

    def __init__(self, outbox: Outbox, observer: Optional[TransferObserver] = None,
                 send_timeout: float = 5.0):
        self.outbox = outbox
        self.observer = observer or TransferObserver()
        self.send_timeout = send_timeout
        self._sessions: Dict[str, Set[Channel]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind the event loop used by send_message_threadsafe."""
        self._loop = loop

    def _lock_for(self, identity: str) -> threading.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks.setdefault(identity, threading.Lock())
        return lock

    def _channels(self, identity: str) -> Tuple[Channel, ...]:
        return tuple(self._sessions.get(identity, ()))

    async def open(self, identity: str, channel: Channel) -> Channel:
        """
        Register a newly opened channel and flush queued messages into it.

        Args:
            identity: Identity of the peer that opened the channel
            channel: The open channel

        Returns:
            The registered channel handle
        """
        self._loop = asyncio.get_running_loop()
        with self._lock_for(identity):
            channels = self._sessions.setdefault(identity, set())
            channels.add(channel)
            count = len(channels)
            pending = self.outbox.drain(identity)
        logger.info(f"channel open {identity} (sessions={count})")

        for text in pending:
            await self._push(identity, channel, text)
        if pending:
            logger.debug(f"flushed {len(pending)} queued messages to {identity}")
        return channel

    def close(self, identity: str, channel: Channel) -> None:
        """Forget a channel. Safe to call more than once."""
        with self._lock_for(identity):
            channels = self._sessions.get(identity)
            if channels is None:
                return
            channels.discard(channel)
            count = len(channels)
            if not channels:
                del self._sessions[identity]
        logger.info(f"channel close {identity} (sessions={count})")

    def broadcast(self, identity: str, text: str) -> int:
        """
        Push a message to every open channel of an identity.

        Each push runs as its own task, so a slow or broken channel never
        delays the others. Must be called from the server's event loop.

        Returns:
            Number of channels the message was handed to
        """
        channels = self._channels(identity)
        for channel in channels:
            self._spawn(self._push(identity, channel, text))
        return len(channels)

    def send_message_to(self, identity: str, text: str) -> bool:
        """
        Deliver a message, pushing it when possible and queueing it otherwise.

        Returns:
            True if the message was pushed to open channels, False if queued
        """
        with self._lock_for(identity):
            channels = self._channels(identity)
            if not channels:
                self.outbox.enqueue(identity, text)
                return False
        for channel in channels:
            self._spawn(self._push(identity, channel, text))
        logger.debug(f"pushed to {identity} on {len(channels)} channel(s): {text}")
        return True

    def send_message_threadsafe(self, identity: str, text: str) -> None:
        """Like send_message_to, but callable from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            self.outbox.enqueue(identity, text)
            return
        loop.call_soon_threadsafe(self.send_message_to, identity, text)

    def receive(self, identity: str, text: str) -> None:
        """Forward a message received on a channel to the observer."""
        logger.debug(f"ws recv from {identity}: {text}")
        notify_client_message(self.observer, identity, text)

    def session_count(self, identity: str) -> int:
        return len(self._sessions.get(identity, ()))

    def has_open_channel(self, identity: str) -> bool:
        return self.session_count(identity) > 0

    @property
    def pending_pushes(self) -> Tuple[asyncio.Task, ...]:
        return tuple(self._tasks)

    async def shutdown(self, grace: float = 1.0) -> None:
        """Let in-flight pushes finish within ``grace`` seconds, then close every channel."""
        tasks = list(self._tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace)
            for task in pending:
                task.cancel()

        channels = []
        for identity in list(self._sessions):
            with self._lock_for(identity):
                channels.extend(self._sessions.pop(identity, ()))
        for channel in channels:
            try:
                await asyncio.wait_for(channel.close(), timeout=grace)
            except Exception as e:
                logger.warning(f"Failed to close {channel!r}: {e}")
        self._loop = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _push(self, identity: str, channel: Channel, text: str) -> bool:
        try:
            await asyncio.wait_for(channel.send_text(text), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"ws send to {identity} timed out after {self.send_timeout}s")
        except Exception as e:
            logger.warning(f"ws send fail to {identity}: {e}")
        return False
