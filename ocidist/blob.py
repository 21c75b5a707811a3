from __future__ import annotations

import logging
from typing import Iterator

import httpx

from ocidist.digest import Digester
from ocidist.errors import IntegrityError, ProtocolError

logger = logging.getLogger(__name__)


class BlobStream:
    """Lazy, single pass stream over the body of a blob response.

    The content is digested while it is consumed, reaching the end of a
    stream that does not match `digest` (or `size`, when known) raises
    IntegrityError. Re-reading the blob means issuing a new request.
    """

    def __init__(
        self,
        response: httpx.Response,
        digest: str,
        size: int | None = None,
        chunk_size: int | None = None,
        name: str | None = None,
    ):
        self.response = response
        self.name = name
        self.digest = digest
        self.size = size
        self._digester = Digester()
        self._chunks = response.iter_bytes(chunk_size)
        self._head = next(self._chunks, b"")
        self._consumed = False
        if not self._head:
            self.close()
            raise ProtocolError(
                "Empty body when fetching blob",
                operation="pull_blob",
                status_code=response.status_code,
                name=name,
                reference=digest,
            )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self) -> Iterator[bytes]:
        if self._consumed:
            raise RuntimeError(f"Blob {self.digest} has already been read")
        self._consumed = True
        try:
            self._digester.update(self._head)
            yield self._head
            for chunk in self._chunks:
                self._digester.update(chunk)
                yield chunk
        finally:
            self.close()
        self._check()

    def read(self) -> bytes:
        """Read the remainder of the blob into memory"""
        return b"".join(self)

    def close(self):
        self.response.close()

    def _check(self):
        actual_size = self._digester.size
        actual = self._digester.digest
        if actual != self.digest or (self.size is not None and actual_size != self.size):
            raise IntegrityError(
                f"Blob content does not match {self.digest}",
                expected=self.digest,
                actual=actual,
                expected_size=self.size,
                actual_size=actual_size,
            )
        logger.debug("Verified blob %s (%d bytes)", self.digest, actual_size)
