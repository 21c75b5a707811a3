"""Chunked blob uploads

A blob is pushed in one upload session:

    POST  /v2/<name>/blobs/uploads/        -> Location, OCI-Chunk-Min-Length
    PATCH <location>  (once per chunk)      -> Location of the next request
    PUT   <location>?digest=<digest>       -> the blob is committed

Every request targets the Location returned by the one before it, so the
chunks of a single session are always sent one after the other.

ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-a-blob-in-chunks
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

import httpx

from ocidist import media_types
from ocidist.digest import digest_of
from ocidist.errors import ProtocolError

if TYPE_CHECKING:
    from ocidist.client import Client

logger = logging.getLogger(__name__)

CHUNK_MIN_LENGTH = "OCI-Chunk-Min-Length"


class UploadState(enum.Enum):
    STARTED = "started"
    UPLOADING = "uploading"
    FINALIZED = "finalized"


def iter_chunks(data: bytes, chunk_size: int) -> Iterator[tuple[int, bytes]]:
    """Yield `(start, chunk)` windows of `data`

    The same `chunk_size` is used to cut the window and to advance it,
    the last chunk is shorter when `len(data)` is not a multiple of it.
    An empty blob yields a single empty chunk.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not data:
        yield 0, b""
        return
    for start in range(0, len(data), chunk_size):
        yield start, data[start : start + chunk_size]


@dataclass
class UploadSession:
    """State of one blob upload, threaded through the chunk loop."""

    name: str
    location: str
    min_chunk_size: int = 0
    offset: int = 0
    state: UploadState = UploadState.STARTED

    @classmethod
    def start(cls, client: Client, name: str) -> "UploadSession":
        operation = "start_upload"
        response = client.post(
            f"/v2/{name}/blobs/uploads/", headers={"Content-Length": "0"}
        )
        client.check(response, operation, name=name)
        location = client.resolve_location(response, operation, name=name)
        raw_min = response.headers.get(CHUNK_MIN_LENGTH, "0")
        try:
            min_chunk_size = int(raw_min)
        except ValueError:
            raise ProtocolError(
                f"Invalid {CHUNK_MIN_LENGTH} header: {raw_min!r}",
                operation=operation,
                status_code=response.status_code,
                name=name,
            ) from None
        logger.debug(
            "Started upload session for %s at %s (min chunk %d)",
            name,
            location,
            min_chunk_size,
        )
        return cls(name=name, location=location, min_chunk_size=min_chunk_size)

    def chunk_size(self, default: int) -> int:
        """Never send chunks smaller than the registry asks for"""
        return max(self.min_chunk_size, default)

    def upload_chunk(self, client: Client, start: int, chunk: bytes):
        """PATCH `chunk` to the current location and move to the next one"""
        if self.state is UploadState.FINALIZED:
            raise RuntimeError(f"Upload session for {self.name} is already finalized")
        if start != self.offset:
            raise ValueError(
                f"Chunk starts at {start}, expected offset {self.offset}"
            )
        operation = "upload_chunk"
        headers = {
            "Content-Type": media_types.OCTET_STREAM,
            "Content-Length": str(len(chunk)),
        }
        if chunk:
            # Both ends are inclusive
            headers["Content-Range"] = f"{start}-{start + len(chunk) - 1}"
        response = client.patch(self.location, content=chunk, headers=headers)
        client.check(response, operation, name=self.name)
        self.location = client.resolve_location(response, operation, name=self.name)
        self.offset += len(chunk)
        self.state = UploadState.UPLOADING
        logger.debug("Uploaded %d bytes of %s", self.offset, self.name)

    def finalize(self, client: Client, digest: str) -> str | None:
        """Close the session, the registry verifies the digest of what it received"""
        if self.state is UploadState.FINALIZED:
            raise RuntimeError(f"Upload session for {self.name} is already finalized")
        # Keep the query of the Location, registries store upload state there
        url = httpx.URL(self.location).copy_merge_params({"digest": digest})
        response = client.put(str(url), headers={"Content-Length": "0"})
        client.check(response, "finalize_upload", name=self.name, reference=digest)
        self.state = UploadState.FINALIZED
        return response.headers.get("Location")


def upload_blob(client: Client, name: str, data: bytes) -> str:
    """Push `data` to repository `name` in chunks, return its digest"""
    digest = digest_of(data)
    session = UploadSession.start(client, name)
    chunk_size = session.chunk_size(client.chunk_size)
    for start, chunk in iter_chunks(data, chunk_size):
        session.upload_chunk(client, start, chunk)
    session.finalize(client, digest)
    logger.info("Pushed blob %s:%s (%d bytes)", name, digest, len(data))
    return digest
