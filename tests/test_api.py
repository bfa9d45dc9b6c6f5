"""Tests for the HTTP and WebSocket endpoints."""

import base64
import threading
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from hotdrop.config import ServerConfig
from hotdrop.core.observer import TransferObserver
from hotdrop.main import create_app

PEER = "testclient"  # address TestClient reports for every request


class RecordingObserver(TransferObserver):
    """Observer that keeps every event for inspection."""

    def __init__(self):
        self.clients = []
        self.messages = []
        self.message_seen = threading.Event()

    def on_new_client(self, info):
        self.clients.append(info)

    def on_client_message(self, identity, text):
        self.messages.append((identity, text))
        self.message_seen.set()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def app(tmp_path, observer):
    return create_app(ServerConfig(storage_dir=tmp_path), observer)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


def test_index_page(client, observer):
    """Test the default page and first-contact discovery."""
    response = client.get("/", headers={"User-Agent": "PhoneBrowser/1.0"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "<title>HotDrop</title>" in response.text

    assert [info.ip for info in observer.clients] == [PEER]
    assert observer.clients[0].user_agent == "PhoneBrowser/1.0"


def test_index_override(tmp_path):
    """Test that a host-supplied page replaces the default one."""
    app = create_app(ServerConfig(storage_dir=tmp_path, index_html="<p>custom</p>"))
    with TestClient(app) as client:
        assert client.get("/").text == "<p>custom</p>"


def test_whoami(client):
    """Test that the caller learns its own identity."""
    assert client.get("/whoami").json() == {"ip": PEER}


def test_discovery_fires_once(client, observer):
    """Test that repeated requests from one peer notify only once."""
    client.get("/")
    client.get("/list")
    client.get("/whoami")
    assert len(observer.clients) == 1


def test_upload_and_download(client):
    """Test uploading a base64 payload and fetching it back."""
    data = b"\x00\x01binary\xff"
    response = client.post("/", data={"filename": "a b/c.png", "base64": base64.b64encode(data).decode()})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "name": "a_b_c.png"}

    assert client.get("/list").json() == ["a_b_c.png"]

    download = client.get("/files/a_b_c.png")
    assert download.status_code == 200
    assert download.content == data
    assert download.headers["content-type"] == "application/octet-stream"


def test_upload_without_filename(client):
    """Test that an unnamed upload gets a timestamped name."""
    response = client.post("/", data={"base64": base64.b64encode(b"x").decode()})
    assert response.status_code == 200
    assert response.json()["name"].endswith(".bin")


def test_upload_missing_payload(client):
    """Test that an upload without a payload is a client error."""
    response = client.post("/", data={"filename": "x.txt"})
    assert response.status_code == 400
    assert response.json()["ok"] is False
    assert client.get("/list").json() == []


def test_upload_invalid_base64(client):
    """Test that an undecodable payload is a client error."""
    response = client.post("/", data={"filename": "x.txt", "base64": "abc"})
    assert response.status_code == 400

    response = client.post("/", data={"filename": "x.txt", "base64": "!!!!"})
    assert response.status_code == 400
    assert client.get("/list").json() == []


def test_upload_base64_with_line_breaks(client):
    """Test that wrapped base64 decodes once whitespace is removed."""
    encoded = base64.encodebytes(b"x" * 100).decode()
    assert "\n" in encoded

    response = client.post("/", data={"filename": "wrapped.bin", "base64": encoded})
    assert response.status_code == 200
    assert client.get("/files/wrapped.bin").content == b"x" * 100


def test_upload_too_large(tmp_path):
    """Test that a url-encoded upload over the size limit is refused."""
    app = create_app(ServerConfig(storage_dir=tmp_path, max_upload_bytes=64))
    payload = base64.b64encode(b"y" * 200).decode()
    with TestClient(app) as client:
        response = client.post("/", data={"filename": "big.bin", "base64": payload})
        assert response.status_code == 413
        assert response.json()["ok"] is False
        assert client.get("/list").json() == []


def test_missing_file(client):
    """Test downloading an unknown file."""
    assert client.get("/files/nothing.png").status_code == 404


def test_download_file_placed_by_host(client, tmp_path):
    """Test that files added to the directory outside uploads are listed and served."""
    (tmp_path / "My Photo.jpg").write_bytes(b"jpeg bytes")

    assert client.get("/list").json() == ["My Photo.jpg"]
    response = client.get("/files/My Photo.jpg")
    assert response.status_code == 200
    assert response.content == b"jpeg bytes"


def test_download_rejects_traversal(client, tmp_path):
    """Test that encoded separators cannot reach outside the directory."""
    (tmp_path.parent / "outside.txt").write_bytes(b"secret")

    assert client.get("/files/..%2Foutside.txt").status_code == 404


def test_state_does_not_record(client, observer):
    """Test that the diagnostics endpoint has no side effects."""
    assert client.get("/state").json() == {"clients": [], "queues": {}}
    assert observer.clients == []

    client.get("/whoami")
    assert client.get("/state").json() == {"clients": [PEER], "queues": {}}


def test_message_blank_text(client, observer):
    """Test that blank messages are rejected without side effects."""
    for data in ({"text": "   "}, {"text": ""}, {}):
        response = client.post("/message", data=data)
        assert response.status_code == 400

    assert client.get("/state").json() == {"clients": [], "queues": {}}
    assert observer.clients == []
    assert observer.messages == []


def test_message_is_queued(client, app, observer):
    """Test that a message from a peer without a channel waits in its outbox."""
    response = client.post("/message", data={"text": "  hello  "})
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    assert observer.messages == [(PEER, "hello")]
    assert client.get("/state").json() == {"clients": [PEER], "queues": {PEER: 1}}
    assert app.state.outbox.drain(PEER) == ["hello"]


def test_poll_drains_outbox(client, app):
    """Test the polling fallback."""
    app.state.outbox.enqueue(PEER, "first")
    app.state.outbox.enqueue(PEER, "second")

    assert client.get("/poll").json() == ["first", "second"]
    assert client.get("/poll").json() == []


def test_websocket_flushes_queue_on_open(client, app):
    """Test that messages queued while offline arrive when the socket opens."""
    app.state.outbox.enqueue(PEER, "while you were away")
    client.post("/message", data={"text": "hello"})

    with client.websocket_connect("/ws") as websocket:
        assert websocket.receive_text() == "while you were away"
        assert websocket.receive_text() == "hello"
        assert app.state.outbox.size_of(PEER) == 0


def test_websocket_push(client, app):
    """Test that a connected peer gets messages pushed instead of queued."""
    with client.websocket_connect("/ws") as websocket:
        assert wait_for(lambda: app.state.sessions.has_open_channel(PEER))
        client.post("/message", data={"text": "pushed"})
        assert websocket.receive_text() == "pushed"
        assert app.state.outbox.size_of(PEER) == 0


def test_websocket_inbound_messages(client, app, observer):
    """Test that text frames reach the observer and close cleans up."""
    with client.websocket_connect("/ws") as websocket:
        websocket.send_text("from the browser")
        assert observer.message_seen.wait(2.0)
        websocket.send_bytes(b"ignored")
        websocket.send_text("second")
        assert wait_for(lambda: len(observer.messages) == 2)

    assert observer.messages == [(PEER, "from the browser"), (PEER, "second")]
    assert wait_for(lambda: not app.state.sessions.has_open_channel(PEER))


def test_two_websockets_same_peer(client, app):
    """Test that every open socket of a peer gets the push."""
    with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
        assert wait_for(lambda: app.state.sessions.session_count(PEER) == 2)
        client.post("/message", data={"text": "both"})
        assert first.receive_text() == "both"
        assert second.receive_text() == "both"


@pytest.mark.asyncio
async def test_message_from_unresolvable_peer(app, observer):
    """Test that a message without a peer address is a client error."""
    transport = httpx.ASGITransport(app=app, client=("  ", 0))
    async with httpx.AsyncClient(transport=transport, base_url="http://hotdrop") as client:
        response = await client.post("/message", data={"text": "hello"})
        assert response.status_code == 400

        whoami = await client.get("/whoami")
        assert whoami.json() == {"ip": ""}

        events = await client.get("/events")
        assert events.status_code == 400

    assert observer.messages == []
    assert app.state.outbox.sizes() == {}
    assert len(app.state.registry) == 0
