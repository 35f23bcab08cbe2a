"""
Shared fixtures: an in-process fake object store and duck-typed aiohttp fakes.

The fake store speaks the subset of S3 behaviour the transport relies on:
quoted ETags, Content-Length, Last-Modified and ``If-Match`` → 412.
"""
import asyncio
import hashlib
from collections import Counter

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from password_vault.storage import ObjectStoreClient

LAST_MODIFIED = "Wed, 21 Oct 2026 07:28:00 GMT"


class FakeObjectStore:
    """Minimal pre-signed-URL object store with per-path hit counters."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.hits: Counter = Counter()
        self.server: TestServer | None = None

    def put_object(self, name: str, data: bytes) -> str:
        etag = hashlib.md5(data).hexdigest()
        self.objects[name] = (data, etag)
        return etag

    def url(self, path: str) -> str:
        base = str(self.server.make_url(path))
        return f"{base}?X-Amz-Expires=300&X-Amz-Signature=deadbeef"

    async def handle_object(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        self.hits[name] += 1
        if request.method == "GET":
            if name not in self.objects:
                return web.Response(status=404, reason="Not Found")
            data, etag = self.objects[name]
            return web.Response(
                body=data,
                headers={"ETag": f'"{etag}"', "Last-Modified": LAST_MODIFIED},
            )
        body = await request.read()
        if_match = request.headers.get("If-Match")
        if if_match is not None:
            current = self.objects.get(name)
            if current is None or if_match.strip('"') != current[1]:
                return web.Response(status=412, reason="Precondition Failed")
        etag = self.put_object(name, body)
        return web.Response(headers={"ETag": f'"{etag}"'})

    async def handle_lost_response(self, request: web.Request) -> web.Response:
        """Apply the write, then answer as if the gateway dropped the response."""
        response = await self.handle_object(request)
        if response.status != 200:
            return response
        return web.Response(status=502, reason="Bad Gateway")

    async def handle_status(self, request: web.Request) -> web.Response:
        status = int(request.match_info["status"])
        self.hits[f"status/{status}"] += 1
        return web.Response(status=status)

    async def handle_flaky(self, request: web.Request) -> web.Response:
        self.hits["flaky"] += 1
        if self.hits["flaky"] == 1:
            return web.Response(status=500, reason="Internal Server Error")
        await request.read()
        return web.Response(body=b"recovered", headers={"ETag": '"flaky-tag"'})

    async def handle_slow(self, request: web.Request) -> web.Response:
        self.hits["slow"] += 1
        await asyncio.sleep(1)
        return web.Response(body=b"late", headers={"ETag": '"slow-tag"'})

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/status/{status}", self.handle_status)
        app.router.add_route("*", "/flaky", self.handle_flaky)
        app.router.add_route("*", "/slow", self.handle_slow)
        app.router.add_route("*", "/lost/{name}", self.handle_lost_response)
        app.router.add_route("*", "/objects/{name}", self.handle_object)
        return app


@pytest_asyncio.fixture
async def store():
    """Running fake object store."""
    fake = FakeObjectStore()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.server = server
    yield fake
    await server.close()


@pytest.fixture
def client():
    """Transport with fast retries for tests."""
    return ObjectStoreClient(max_retries=2, retry_delay=0, timeout=2.0)


# --- duck-typed aiohttp fakes for responses a real server cannot produce ---

class FakeContent:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    def iter_chunked(self, size):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    def __init__(self, status=200, headers=None, chunks=(), reason="OK"):
        self.status = status
        self.reason = reason
        self.headers = headers or {}
        self.content = FakeContent(chunks)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Stands in for a caller-owned aiohttp.ClientSession."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = 0

    def _request(self, url, **kwargs):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.response

    get = _request
    put = _request
