"""Content addressing

ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md#digests
"""
from __future__ import annotations

import logging
import re
from hashlib import sha256
from typing import TYPE_CHECKING

from ocidist.errors import IntegrityError, ValidationError

if TYPE_CHECKING:
    from ocidist.descriptor import Descriptor

logger = logging.getLogger(__name__)

ALGORITHM = "sha256"

DIGEST_PATTERN = r"[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+"
DIGEST_RE = re.compile(DIGEST_PATTERN)
SHA256_RE = re.compile(r"[a-f0-9]{64}")


def digest_of(data: bytes) -> str:
    """Return the canonical digest of `data`"""
    return f"{ALGORITHM}:{sha256(data).hexdigest()}"


def parse_digest(value: str) -> tuple[str, str]:
    """Split a digest into its algorithm and encoded parts"""
    if not DIGEST_RE.fullmatch(value):
        raise ValidationError(f"{value!r} is not a valid digest")
    algorithm, encoded = value.split(":", 1)
    if algorithm == ALGORITHM and not SHA256_RE.fullmatch(encoded):
        raise ValidationError(f"{value!r} is not a valid {ALGORITHM} digest")
    return algorithm, encoded


def verify(descriptor: Descriptor, data: bytes) -> bool:
    """Check `data` against the digest and size of `descriptor`

    Returns False on any mismatch, including digests using an algorithm
    other than sha256, so the caller can decide what to trust.
    """
    if len(data) != descriptor.size:
        logger.debug(
            "Size mismatch for %s: expected %d, got %d",
            descriptor.digest,
            descriptor.size,
            len(data),
        )
        return False
    try:
        algorithm, _ = parse_digest(descriptor.digest)
    except ValidationError:
        return False
    if algorithm != ALGORITHM:
        logger.debug("Unsupported digest algorithm: %s", algorithm)
        return False
    return digest_of(data) == descriptor.digest


def ensure_verified(descriptor: Descriptor, data: bytes) -> bytes:
    """Return `data` if it matches `descriptor`, raise IntegrityError otherwise"""
    if not verify(descriptor, data):
        actual = digest_of(data)
        raise IntegrityError(
            f"Content does not match {descriptor.digest}",
            expected=descriptor.digest,
            actual=actual,
            expected_size=descriptor.size,
            actual_size=len(data),
        )
    return data


class Digester:
    """Incrementally digest content that arrives in chunks."""

    def __init__(self):
        self._hash = sha256()
        self.size = 0

    def update(self, chunk: bytes):
        self._hash.update(chunk)
        self.size += len(chunk)

    @property
    def digest(self) -> str:
        return f"{ALGORITHM}:{self._hash.hexdigest()}"
