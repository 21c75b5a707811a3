import json
import re
import uuid
from hashlib import sha256

import httpx
import pytest

from ocidist import Client

REGISTRY_URL = "http://registry.test"

UPLOAD_RE = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/(?P<id>[^/]*)$")
BLOB_RE = re.compile(r"^/v2/(?P<name>.+)/blobs/(?P<digest>[^/]+)$")
MANIFEST_RE = re.compile(r"^/v2/(?P<name>.+)/manifests/(?P<reference>[^/]+)$")
TAGS_RE = re.compile(r"^/v2/(?P<name>.+)/tags/list$")


def _digest(data: bytes) -> str:
    return f"sha256:{sha256(data).hexdigest()}"


def _error(status_code: int, code: str, message: str = "") -> httpx.Response:
    return httpx.Response(
        status_code, json={"errors": [{"code": code, "message": message}]}
    )


class FakeRegistry:
    """In-memory OCI registry, used as `httpx.MockTransport` handler.

    Implements just enough of the distribution API to push and pull.
    Every request is recorded in `requests`.
    """

    def __init__(self, min_chunk_size: int | None = None, absolute_locations=False):
        self.min_chunk_size = min_chunk_size
        self.absolute_locations = absolute_locations
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.manifests: dict[tuple[str, str], tuple[str, bytes]] = {}
        self.uploads: dict[str, bytearray] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v2/":
            return httpx.Response(200)
        if match := UPLOAD_RE.match(path):
            return self._upload(request, match["name"], match["id"])
        if match := BLOB_RE.match(path):
            return self._blob(request, match["name"], match["digest"])
        if match := MANIFEST_RE.match(path):
            return self._manifest(request, match["name"], match["reference"])
        if match := TAGS_RE.match(path):
            tags = sorted(
                ref
                for name, ref in self.manifests
                if name == match["name"] and not ref.startswith("sha256:")
            )
            return httpx.Response(200, json={"name": match["name"], "tags": tags})
        return _error(404, "NAME_UNKNOWN")

    def calls(self, method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method]

    def add_manifest(self, name: str, reference: str, document: dict) -> str:
        data = json.dumps(document).encode("utf-8")
        digest = _digest(data)
        self.manifests[(name, reference)] = (document["mediaType"], data)
        self.manifests[(name, digest)] = (document["mediaType"], data)
        return digest

    def _location(self, path: str) -> str:
        if self.absolute_locations:
            return f"{REGISTRY_URL}{path}"
        return path

    def _upload(self, request, name, upload_id):
        if request.method == "POST":
            upload_id = uuid.uuid4().hex
            self.uploads[upload_id] = bytearray()
            headers = {"Location": self._location(f"/v2/{name}/blobs/uploads/{upload_id}")}
            if self.min_chunk_size is not None:
                headers["OCI-Chunk-Min-Length"] = str(self.min_chunk_size)
            return httpx.Response(202, headers=headers)

        if upload_id not in self.uploads:
            return _error(404, "BLOB_UPLOAD_UNKNOWN")
        buffer = self.uploads[upload_id]
        body = request.read()

        if request.method == "PATCH":
            if "Content-Range" in request.headers:
                start, end = map(int, request.headers["Content-Range"].split("-"))
                if start != len(buffer) or end != start + len(body) - 1:
                    return httpx.Response(416)
            buffer.extend(body)
            return httpx.Response(
                202,
                headers={
                    "Location": self._location(
                        f"/v2/{name}/blobs/uploads/{upload_id}?_state={len(buffer)}"
                    ),
                    "Range": f"0-{len(buffer) - 1}",
                },
            )

        if request.method == "PUT":
            # The query of the last Location must come back unchanged
            if request.url.params.get("_state", "0") != str(len(buffer)):
                return _error(400, "BLOB_UPLOAD_INVALID", "upload state lost")
            buffer.extend(body)
            digest = request.url.params.get("digest")
            if digest != _digest(bytes(buffer)):
                return _error(400, "DIGEST_INVALID", "provided digest did not match")
            del self.uploads[upload_id]
            self.blobs[(name, digest)] = bytes(buffer)
            return httpx.Response(
                201, headers={"Location": f"/v2/{name}/blobs/{digest}"}
            )
        return httpx.Response(405)

    def _blob(self, request, name, digest):
        data = self.blobs.get((name, digest))
        if data is None:
            return _error(404, "BLOB_UNKNOWN")
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(200, content=data)

    def _manifest(self, request, name, reference):
        if request.method == "PUT":
            data = request.read()
            digest = _digest(data)
            media_type = request.headers["Content-Type"]
            self.manifests[(name, reference)] = (media_type, data)
            self.manifests[(name, digest)] = (media_type, data)
            return httpx.Response(
                201,
                headers={
                    "Location": f"/v2/{name}/manifests/{digest}",
                    "Docker-Content-Digest": digest,
                },
            )
        if (name, reference) not in self.manifests:
            return _error(404, "MANIFEST_UNKNOWN")
        media_type, data = self.manifests[(name, reference)]
        headers = {"Content-Type": media_type, "Docker-Content-Digest": _digest(data)}
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        return httpx.Response(200, content=data, headers=headers)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def client(registry):
    with Client(REGISTRY_URL, transport=httpx.MockTransport(registry)) as client:
        yield client


@pytest.fixture
def client_for():
    """Return a factory for clients that send their requests to `handler`"""
    clients = []

    def factory(handler, **kwargs) -> Client:
        client = Client(REGISTRY_URL, transport=httpx.MockTransport(handler), **kwargs)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()
