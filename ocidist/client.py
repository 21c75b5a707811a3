from __future__ import annotations

import base64
import json
import logging
import re
import threading
from typing import Any
from urllib.parse import urlparse, urlunparse

import httpx
import pydantic

from ocidist import media_types
from ocidist.blob import BlobStream
from ocidist.digest import DIGEST_RE, digest_of, parse_digest
from ocidist.errors import (
    AuthenticationError,
    IntegrityError,
    ProtocolError,
    ValidationError,
)
from ocidist.index import ImageIndex
from ocidist.manifest import ImageManifest
from ocidist.upload import upload_blob

logger = logging.getLogger(__name__)

DOCKER_HUB = "registry-1.docker.io"
USER_AGENT = "ocidist"
DEFAULT_CHUNK_SIZE = 1024

_SEPARATOR = r"(?:\.|_|__|-+)"
_COMPONENT = rf"[a-z0-9]+(?:{_SEPARATOR}[a-z0-9]+)*"
NAME_RE = re.compile(rf"{_COMPONENT}(?:/{_COMPONENT})*")
TAG_RE = re.compile(r"[a-zA-Z0-9_][a-zA-Z0-9._-]{0,127}")

# Decoded by the `mediaType` of the response body
MANIFEST_TYPES: dict[str, type[ImageManifest] | type[ImageIndex]] = {
    media_types.IMAGE_MANIFEST: ImageManifest,
    media_types.IMAGE_INDEX: ImageIndex,
}

HeaderTypes = httpx.Headers | dict[str, str] | list[tuple[str, str]]


def validate_name(name: str) -> str:
    if not NAME_RE.fullmatch(name):
        raise ValidationError(f"{name!r} is not a valid repository name")
    return name


def validate_tag(tag: str) -> str:
    if not TAG_RE.fullmatch(tag):
        raise ValidationError(f"{tag!r} is not a valid tag")
    return tag


def validate_reference(reference: str) -> str:
    """A reference is either a tag or a digest"""
    if TAG_RE.fullmatch(reference):
        return reference
    if DIGEST_RE.fullmatch(reference):
        parse_digest(reference)
        return reference
    raise ValidationError(f"{reference!r} is not a valid tag or digest")


def _clean_url(registry_url: str) -> str:
    if "://" not in registry_url:
        registry_url = f"https://{registry_url}"
    parts = urlparse(registry_url)
    if parts.netloc == "docker.io":
        parts = parts._replace(netloc=DOCKER_HUB)
    return urlunparse(parts).rstrip("/")


def _parse_www_auth(www_authenticate: str) -> tuple[str, dict[str, str]]:
    """Parse the WWW-Authenticate header into its scheme and parameters"""
    scheme, _, params = www_authenticate.strip().partition(" ")
    return scheme.lower(), dict(re.findall(r'(\w+)="([^"]*)"', params))


def _merge_headers(defaults: httpx.Headers, headers: HeaderTypes | None) -> httpx.Headers:
    """Merge call headers over the defaults, call headers replace all default values"""
    overrides = httpx.Headers(headers or {})
    replaced = set(overrides.keys())
    items = [(k, v) for k, v in defaults.multi_items() if k not in replaced]
    return httpx.Headers(items + overrides.multi_items())


def _registry_errors(response: httpx.Response) -> list[dict]:
    """Return the `errors` list of an OCI error response body, if any"""
    if "json" not in response.headers.get("Content-Type", ""):
        return []
    try:
        body = json.loads(response.read())
    except ValueError:
        return []
    if not isinstance(body, dict) or not isinstance(body.get("errors"), list):
        return []
    return [error for error in body["errors"] if isinstance(error, dict)]


class _Session:
    """Lazily created `httpx.Client`, shared by a client and the clients derived from it"""

    def __init__(
        self,
        timeout: float | httpx.Timeout,
        transport: httpx.BaseTransport | None,
    ):
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    def get(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    follow_redirects=True,
                    timeout=self.timeout,
                    transport=self.transport,
                )
            return self._client

    def close(self):
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None


class Client:
    """Client for the OCI registry API.

    Default headers are fixed at construction, `with_headers`, `with_token`
    and `with_basic_auth` return a new client instead of changing this one.
    Derived clients share the connection pool, closing one closes it for all.

    A client may be used from several threads, as long as each upload
    session stays on the thread that started it.
    """

    def __init__(
        self,
        registry_url: str,
        headers: HeaderTypes | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float | httpx.Timeout = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.registry_url = _clean_url(registry_url)
        self.chunk_size = chunk_size
        self.timeout = timeout
        self._headers = tuple(
            _merge_headers(httpx.Headers({"User-Agent": USER_AGENT}), headers).multi_items()
        )
        self._transport = transport
        self._session = _Session(timeout, transport)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"{self.__class__.__name__}({self.registry_url!r})"

    @property
    def headers(self) -> httpx.Headers:
        return httpx.Headers(list(self._headers))

    @property
    def session(self) -> httpx.Client:
        return self._session.get()

    def close(self):
        """Close the connection pool, shared with every derived client"""
        self._session.close()

    def with_headers(self, headers: HeaderTypes) -> "Client":
        """Return a new client with `headers` added to the default headers

        The new client uses the connection pool of this one.
        """
        client = Client(
            registry_url=self.registry_url,
            headers=_merge_headers(self.headers, headers),
            chunk_size=self.chunk_size,
            timeout=self.timeout,
            transport=self._transport,
        )
        client._session = self._session
        return client

    def with_token(self, token: str) -> "Client":
        return self.with_headers({"Authorization": f"Bearer {token}"})

    def with_basic_auth(self, username: str, password: str) -> "Client":
        """Return a new client sending the credentials as a bearer token

        Registries like ghcr.io accept base64 encoded `username:password`
        as bearer token.
        """
        token = base64.b64encode(f"{username}:{password}".encode("utf-8"))
        return self.with_token(token.decode("ascii"))

    def login(
        self,
        username: str | None = None,
        password: str | None = None,
        scope: str | None = None,
    ) -> "Client":
        """Use the token api with basic authentication to get a token

        Returns this client when the registry does not require authentication.

        ref: https://distribution.github.io/distribution/spec/auth/token/
        """
        result = self.get("/v2/")
        if result.status_code != 401:
            self.check(result, "login")
            return self
        scheme, www_authenticate = _parse_www_auth(
            result.headers.get("WWW-Authenticate", "")
        )
        logger.debug(www_authenticate)
        if not password:
            raise AuthenticationError(
                f"{self.registry_url} requires authentication, "
                f"provide a username and/or password."
            )
        if scheme == "basic":
            credentials = base64.b64encode(f"{username or ''}:{password}".encode())
            return self.with_headers(
                {"Authorization": f"Basic {credentials.decode('ascii')}"}
            )
        if "realm" not in www_authenticate:
            raise AuthenticationError(
                f"{self.registry_url} did not provide a token realm"
            )
        params = {"grant_type": "password", "client_id": username or ""}
        if "service" in www_authenticate:
            params["service"] = www_authenticate["service"]
        if scope or "scope" in www_authenticate:
            params["scope"] = scope or www_authenticate["scope"]
        response = self.session.get(
            www_authenticate["realm"],
            params=params,
            auth=(username or "", password),
        )
        if not response.is_success:
            raise AuthenticationError(
                f"Token request to {www_authenticate['realm']} failed "
                f"with status {response.status_code}"
            )
        body = response.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise AuthenticationError("Token response did not contain a token")
        return self.with_token(token)

    def url(self, path: str) -> str:
        """Return the absolute URL for a registry path or an absolute URL"""
        if httpx.URL(path).is_absolute_url:
            return path
        return f"{self.registry_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        headers: HeaderTypes | None = None,
        stream: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request with the default headers merged with `headers`"""
        request = self.session.build_request(
            method,
            self.url(path),
            headers=_merge_headers(self.headers, headers),
            **kwargs,
        )
        logger.debug("%s %s", method, request.url)
        return self.session.send(request, stream=stream)

    def head(self, path, **kwargs):
        return self.request("HEAD", path, **kwargs)

    def get(self, path, **kwargs):
        return self.request("GET", path, **kwargs)

    def post(self, path, **kwargs):
        return self.request("POST", path, **kwargs)

    def patch(self, path, **kwargs):
        return self.request("PATCH", path, **kwargs)

    def put(self, path, **kwargs):
        return self.request("PUT", path, **kwargs)

    def check(
        self,
        response: httpx.Response,
        operation: str,
        *,
        name: str | None = None,
        reference: str | None = None,
        expected: int | None = None,
    ) -> httpx.Response:
        """Raise a ProtocolError unless the response has the expected status

        Without `expected` any 2xx status is accepted.
        """
        if expected is None:
            if response.is_success:
                return response
        elif response.status_code == expected:
            return response
        errors = _registry_errors(response)
        if errors:
            logger.error(errors)
        raise ProtocolError(
            f"Unexpected response from registry: {response.status_code}",
            operation=operation,
            status_code=response.status_code,
            name=name,
            reference=reference,
            errors=errors,
        )

    def resolve_location(
        self, response: httpx.Response, operation: str, *, name: str | None = None
    ) -> str:
        """Return the Location header as an absolute URL

        The location MAY be absolute or relative to the registry.

        ref: https://www.rfc-editor.org/rfc/rfc7231#section-7.1.2
        """
        location = response.headers.get("Location")
        if not location:
            raise ProtocolError(
                "Unexpected response from registry, missing Location header",
                operation=operation,
                status_code=response.status_code,
                name=name,
            )
        return str(httpx.URL(self.registry_url).join(location))

    def list_tags(self, name: str) -> list[str]:
        validate_name(name)
        result = self.get(f"/v2/{name}/tags/list")
        self.check(result, "list_tags", name=name, expected=200)
        return result.json().get("tags") or []

    def pull_manifest(self, name: str, reference: str) -> ImageManifest | ImageIndex:
        """Fetch the manifest or index `reference` from repository `name`

        The body is decoded by its `mediaType`, anything but an image
        manifest or image index is refused.

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pulling-manifests
        """
        validate_name(name)
        validate_reference(reference)
        operation = "pull_manifest"
        result = self.get(
            f"/v2/{name}/manifests/{reference}",
            headers=[
                ("Accept", media_types.IMAGE_INDEX),
                ("Accept", media_types.IMAGE_MANIFEST),
            ],
        )
        if result.status_code == 403:
            logger.debug(result.headers)
        self.check(result, operation, name=name, reference=reference, expected=200)

        try:
            body = result.json()
        except ValueError:
            raise ProtocolError(
                "Manifest response is not valid JSON",
                operation=operation,
                status_code=result.status_code,
                name=name,
                reference=reference,
            ) from None
        media_type = body.get("mediaType") if isinstance(body, dict) else None
        if not isinstance(media_type, str):
            raise ProtocolError(
                f"Response missing media type: {result.text[:200]}",
                operation=operation,
                status_code=result.status_code,
                name=name,
                reference=reference,
            )
        model = MANIFEST_TYPES.get(media_type)
        if model is None:
            raise ProtocolError(
                f"Unexpected media type: {media_type}",
                operation=operation,
                status_code=result.status_code,
                name=name,
                reference=reference,
            )
        try:
            manifest = model.model_validate(body)
        except pydantic.ValidationError as e:
            raise ProtocolError(
                f"Invalid {media_type} document: {e}",
                operation=operation,
                status_code=result.status_code,
                name=name,
                reference=reference,
            ) from e

        if DIGEST_RE.fullmatch(reference):
            actual = digest_of(result.content)
            if actual != reference:
                raise IntegrityError(
                    f"Manifest content does not match {reference}",
                    expected=reference,
                    actual=actual,
                    actual_size=len(result.content),
                )
        return manifest

    def push_manifest(
        self,
        name: str,
        manifest: ImageManifest | ImageIndex,
        reference: str | None = None,
    ) -> str | None:
        """Push a manifest for repository `name` and tag `reference`

        Without a reference the manifest is pushed by digest, unless the
        registry already has it. Returns the Location of the manifest.

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-manifests
        """
        validate_name(name)
        if reference is not None:
            validate_reference(reference)
        data = manifest.encode()
        if reference is None:
            reference = digest_of(data)
            response = self.head(f"/v2/{name}/manifests/{reference}")
            if response.status_code == 200:
                logger.info("Manifest already exists: %s:%s", name, reference)
                return None

        logger.debug("Pushing manifest: %s", data)
        response = self.put(
            f"/v2/{name}/manifests/{reference}",
            content=data,
            headers={"Content-Type": manifest.mediaType},
        )
        self.check(
            response, "push_manifest", name=name, reference=reference, expected=201
        )
        return response.headers.get("Location")

    def blob_exists(self, name: str, digest: str) -> bool:
        validate_name(name)
        parse_digest(digest)
        response = self.head(f"/v2/{name}/blobs/{digest}")
        if response.status_code == 404:
            return False
        self.check(response, "blob_exists", name=name, reference=digest, expected=200)
        return True

    def pull_blob(self, name: str, digest: str, size: int | None = None) -> BlobStream:
        """Stream the blob `digest` from repository `name`

        The returned stream should be closed (or used as context manager)
        when it is not read to the end.

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pulling-blobs
        """
        validate_name(name)
        parse_digest(digest)
        response = self.get(f"/v2/{name}/blobs/{digest}", stream=True)
        if response.status_code != 200:
            try:
                self.check(
                    response, "pull_blob", name=name, reference=digest, expected=200
                )
            finally:
                response.close()
        return BlobStream(response, digest=digest, size=size, name=name)

    def push_blob(self, name: str, blob: bytes) -> str:
        """Push a blob for repository `name` in chunks, return its digest

        Every call starts a new upload session.

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-blobs
        """
        validate_name(name)
        return upload_blob(self, name, blob)
