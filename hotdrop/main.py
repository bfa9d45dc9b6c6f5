"""Main FastAPI application with HTTP, WebSocket and SSE endpoints."""

import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Form, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse, Response
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import run_in_threadpool
from starlette.requests import HTTPConnection

from hotdrop import __version__
from hotdrop.config import ServerConfig
from hotdrop.core.exceptions import ClientError, NotFoundError, PayloadTooLargeError
from hotdrop.core.file_store import FileStore
from hotdrop.core.observer import TransferObserver, notify_client_message
from hotdrop.core.outbox import Outbox
from hotdrop.core.registry import ClientRegistry, identify
from hotdrop.core.sessions import SessionMultiplexer, StreamChannel, WebSocketChannel
from hotdrop.page import build_index_html

logger = logging.getLogger(__name__)


def client_identity(conn: HTTPConnection) -> Optional[str]:
    """Resolve the identity of the peer behind a request or WebSocket."""
    client = conn.client
    return identify(client.host if client else None)


def check_upload_size(request: Request, limit: int) -> None:
    """
    Reject a request whose declared body exceeds ``limit`` bytes.

    Covers url-encoded forms, which have no per-part limit. Chunked bodies
    without a Content-Length are only bounded by the multipart part limit.
    """
    declared = request.headers.get("content-length")
    if declared is None:
        return
    try:
        size = int(declared)
    except ValueError as e:
        raise ClientError(f"Invalid Content-Length: {declared!r}") from e
    if size > limit:
        raise PayloadTooLargeError(f"Upload of {size} bytes exceeds the {limit} byte limit")


def create_app(config: ServerConfig, observer: Optional[TransferObserver] = None) -> FastAPI:
    """
    Build the transfer server application.

    Args:
        config: Server settings
        observer: Receives new-client and inbound-message events

    Returns:
        FastAPI app; its components are available on ``app.state``
    """
    observer = observer or TransferObserver()
    registry = ClientRegistry(observer)
    outbox = Outbox()
    sessions = SessionMultiplexer(outbox, observer, send_timeout=config.send_timeout)
    files = FileStore(config.storage_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sessions.attach(asyncio.get_running_loop())
        yield
        await sessions.shutdown(config.stop_grace)

    app = FastAPI(title="HotDrop", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.observer = observer
    app.state.registry = registry
    app.state.outbox = outbox
    app.state.sessions = sessions
    app.state.files = files

    def record_client(conn: HTTPConnection) -> Optional[str]:
        identity = client_identity(conn)
        if identity is not None:
            registry.record_if_new(identity, conn.headers.get("user-agent"))
        return identity

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        client = request.client
        logger.debug(
            f"method={request.method} uri={request.url.path} "
            f"ip={client.host if client else None} port={client.port if client else None} "
            f"ua={request.headers.get('user-agent')}"
        )
        return await call_next(request)

    @app.exception_handler(PayloadTooLargeError)
    async def too_large_handler(request: Request, exc: PayloadTooLargeError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=413)

    @app.exception_handler(ClientError)
    async def client_error_handler(request: Request, exc: ClientError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=400)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=404)

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        """Page served to peers that open the server URL."""
        record_client(request)
        return HTMLResponse(build_index_html(config.index_html))

    @app.get("/list")
    async def list_files(request: Request):
        record_client(request)
        return await run_in_threadpool(files.list)

    @app.get("/whoami")
    async def whoami(request: Request):
        """The caller's own identity as the server sees it."""
        identity = record_client(request)
        return {"ip": identity or ""}

    @app.get("/files/{name}")
    async def get_file(name: str, request: Request):
        record_client(request)
        data = await run_in_threadpool(files.read, name)
        return Response(content=data, media_type="application/octet-stream")

    @app.get("/state")
    async def state():
        """Known clients and queue sizes. Does not record the caller."""
        return {"clients": registry.list(), "queues": outbox.sizes()}

    @app.get("/poll")
    async def poll(request: Request):
        """Pull fallback: hand over every message queued for the caller."""
        identity = record_client(request)
        if identity is None:
            return []
        return outbox.drain(identity)

    @app.get("/events")
    async def events(request: Request):
        """Push-only channel for peers that cannot use WebSockets."""
        identity = record_client(request)
        if identity is None:
            raise ClientError("Missing ip")
        channel = StreamChannel()

        async def event_generator():
            try:
                await sessions.open(identity, channel)
                async for event in channel.events():
                    yield event
            finally:
                sessions.close(identity, channel)
                await channel.close()

        return EventSourceResponse(event_generator())

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        Full-duplex channel. Queued messages are flushed on open, then every
        text frame from the peer is forwarded to the observer.
        """
        identity = record_client(websocket)
        await websocket.accept()
        if identity is None:
            await websocket.close(code=1008)
            return

        channel = WebSocketChannel(websocket)
        try:
            await sessions.open(identity, channel)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is not None:
                    sessions.receive(identity, text)
        except WebSocketDisconnect:
            logger.info(f"Client {identity} disconnected")
        except Exception as e:
            logger.error(f"WebSocket error for client {identity}: {str(e)}")
        finally:
            sessions.close(identity, channel)

    @app.post("/")
    async def upload(request: Request):
        """Store a file sent as base64 in the ``base64`` form field."""
        record_client(request)
        check_upload_size(request, config.max_upload_bytes)
        form = await request.form(max_part_size=config.max_upload_bytes)
        filename = form.get("filename")
        payload = form.get("base64")
        if not isinstance(payload, str):
            raise ClientError("Missing file")
        try:
            data = base64.b64decode("".join(payload.split()), validate=True)
        except binascii.Error as e:
            raise ClientError(f"Invalid base64 payload: {e}") from e

        name = filename if isinstance(filename, str) else None
        stored = await run_in_threadpool(files.write, name, data)
        return {"ok": True, "name": stored}

    @app.post("/message")
    async def post_message(request: Request, text: Optional[str] = Form(None)):
        identity = client_identity(request)
        if identity is None:
            raise ClientError("Missing ip")
        text = (text or "").strip()
        if not text:
            raise ClientError("Missing text")

        record_client(request)
        logger.info(f"message from {identity}: {text}")
        sessions.send_message_to(identity, text)
        notify_client_message(observer, identity, text)
        return {"ok": True}

    return app


if __name__ == "__main__":
    import uvicorn

    config = ServerConfig.from_env()
    logging.basicConfig(level=config.log_level.upper())
    config.storage_dir.mkdir(parents=True, exist_ok=True)
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level
    )
