"""/proxy/* against a real HTTP backend on the loopback interface.

No MockTransport here: the default per-exchange client dials the socket and
the response body is streamed off a real connection.
"""

import json
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from fastapi.testclient import TestClient

from urlassist.app.main import create_app
from urlassist.core import headers as header_codec
from urlassist.core.routes import RouteTable


class EchoHandler(BaseHTTPRequestHandler):
    """Echoes method, path and body back as JSON."""

    def _echo(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length)
        payload = json.dumps(
            {"method": self.command, "path": self.path, "body": body.decode("utf-8")}
        ).encode("utf-8")
        self.send_response(201)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("X-Backend", "live")
        self.end_headers()
        self.wfile.write(payload)

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = do_PROPFIND = _echo

    def log_message(self, format: str, *args: object) -> None:
        pass


@pytest.fixture
def live_backend() -> Iterator[str]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), EchoHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}/base"
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


@pytest.fixture
def live_client(settings, live_backend, terminate) -> Iterator[TestClient]:
    routes = RouteTable.load(
        {"hosts": [{"key1": "alice", "key2": "live", "baseUrl": live_backend}]}
    )
    with TestClient(create_app(settings, routes, terminate=terminate)) as client:
        yield client


class TestLiveBackend:
    """Round trips through a real socket."""

    def test_get_relays_status_headers_and_body(self, live_client):
        response = live_client.get("/proxy/alice/live/items?page=2")

        assert response.status_code == 200
        assert response.headers["x-proxy-status"] == "201 Created"
        side_channel = header_codec.decode(response.headers["x-proxy-headers"])
        assert side_channel["X-Backend"] == ["live"]
        assert response.json() == {"method": "GET", "path": "/base/items?page=2", "body": ""}

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE", "PROPFIND"])
    def test_methods_with_body(self, live_client, method):
        response = live_client.request(method, "/proxy/alice/live/res", content=b"abc")

        assert response.status_code == 200
        assert response.headers["x-proxy-status"] == "201 Created"
        assert response.json() == {"method": method, "path": "/base/res", "body": "abc"}

    def test_unknown_pair_never_dials(self, live_client):
        response = live_client.get("/proxy/alice/other/items")

        assert response.status_code == 400
