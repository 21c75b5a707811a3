"""OCI distribution client for Python

This module provides a Python API for pulling and pushing manifests, indexes
and blobs from and to an OCI registry.
"""
import logging
from typing import Callable

from ocidist import media_types
from ocidist.blob import BlobStream
from ocidist.client import Client, validate_name, validate_reference, validate_tag
from ocidist.descriptor import (
    EMPTY_BLOB,
    EMPTY_DESCRIPTOR,
    Descriptor,
    Platform,
    PlatformDescriptor,
    descriptor_of,
)
from ocidist.digest import digest_of, ensure_verified, verify
from ocidist.errors import (
    AuthenticationError,
    IntegrityError,
    OCIError,
    ProtocolError,
    ValidationError,
)
from ocidist.index import ImageIndex
from ocidist.layer import Layer
from ocidist.manifest import ImageManifest, Manifest, build_manifest
from ocidist.upload import UploadSession, UploadState

logger = logging.getLogger(__name__)

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "BlobStream",
    "Client",
    "Descriptor",
    "EMPTY_BLOB",
    "EMPTY_DESCRIPTOR",
    "ImageIndex",
    "ImageManifest",
    "IntegrityError",
    "Layer",
    "Manifest",
    "OCIError",
    "Platform",
    "PlatformDescriptor",
    "ProtocolError",
    "UploadSession",
    "UploadState",
    "ValidationError",
    "build_manifest",
    "descriptor_of",
    "digest_of",
    "ensure_verified",
    "media_types",
    "pull",
    "push",
    "resolve",
    "validate_name",
    "validate_reference",
    "validate_tag",
    "verify",
]


def _is_empty(descriptor: Descriptor) -> bool:
    return (
        descriptor.digest == EMPTY_DESCRIPTOR.digest
        and descriptor.mediaType == media_types.EMPTY
    )


def push(client: Client, name: str, tag: str, manifest: Manifest) -> Descriptor:
    """Push an artifact to an OCI registry

    Uploads the config (when its content is embedded) and every layer the
    registry does not have yet, then the manifest itself.

    :param client: The OCI client to use.
    :param name: The repository name.
    :param tag: The tag (or digest) to push the manifest as.
    :param manifest: The artifact to push.
    :return: The descriptor of the pushed manifest.
    """
    validate_name(name)
    validate_reference(tag)
    wire = manifest.serialize()

    blobs: dict[str, bytes] = {}
    config_data = manifest.config.embedded()
    if config_data is not None:
        blobs[manifest.config.digest] = ensure_verified(manifest.config, config_data)
    else:
        logger.debug(
            "Config %s has no embedded data, expecting it in the registry",
            manifest.config.digest,
        )
    for layer in manifest.layers:
        blobs.setdefault(layer.digest, layer.blob)
    if not manifest.layers:
        blobs.setdefault(EMPTY_DESCRIPTOR.digest, EMPTY_BLOB)

    for digest, data in blobs.items():
        if client.blob_exists(name, digest):
            logger.info("Blob already exists: %s:%s", name, digest)
            continue
        client.push_blob(name, data)

    client.push_manifest(name, wire, reference=tag)
    descriptor = wire.descriptor
    logger.info("Pushed %s:%s (%s)", name, tag, descriptor.digest)
    return descriptor


def resolve(
    client: Client,
    name: str,
    reference: str,
    select: Callable[[ImageIndex], Descriptor],
) -> ImageManifest:
    """Resolve `reference` to an image manifest

    Whenever an index is returned, `select` picks the entry to follow,
    choosing a platform is up to the caller.
    """
    result = client.pull_manifest(name, reference)
    while isinstance(result, ImageIndex):
        descriptor = select(result)
        logger.debug("Resolved %s:%s to %s", name, reference, descriptor.digest)
        reference = descriptor.digest
        result = client.pull_manifest(name, reference)
    return result


def pull(client: Client, name: str, reference: str) -> Manifest:
    """Pull an artifact from an OCI registry

    Every layer is downloaded and verified against its descriptor.
    `reference` must point at an image manifest, use `resolve` for indexes.
    """
    result = client.pull_manifest(name, reference)
    if isinstance(result, ImageIndex):
        raise ProtocolError(
            "Reference points to an index, resolve it to a manifest first",
            operation="pull",
            name=name,
            reference=reference,
        )

    descriptors = result.layers
    if len(descriptors) == 1 and _is_empty(descriptors[0]):
        descriptors = []

    layers = []
    for descriptor in descriptors:
        data = descriptor.embedded()
        if data is not None:
            data = ensure_verified(descriptor, data)
        else:
            with client.pull_blob(name, descriptor.digest, size=descriptor.size) as blob:
                data = blob.read()
        layers.append(
            Layer(
                media_type=descriptor.mediaType,
                blob=data,
                annotations=descriptor.annotations,
            )
        )
    return Manifest(
        artifactType=result.artifactType,
        config=result.config or EMPTY_DESCRIPTOR,
        layers=layers,
        subject=result.subject,
        annotations=result.annotations,
    )
