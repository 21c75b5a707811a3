from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel

from ocidist import media_types
from ocidist.descriptor import EMPTY_DESCRIPTOR, Descriptor
from ocidist.layer import Layer


class ImageManifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md
    """

    schemaVersion: int = 2
    mediaType: str = media_types.IMAGE_MANIFEST
    artifactType: str | None = None
    config: Descriptor | None = None
    layers: list[Descriptor] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    def encode(self) -> bytes:
        return self.model_dump_json(exclude_none=True, by_alias=True).encode("utf-8")

    @property
    def descriptor(self) -> Descriptor:
        return Descriptor.from_bytes(
            self.encode(), media_type=self.mediaType, artifactType=self.artifactType
        )


@dataclass
class Manifest:
    """An artifact that can be pushed: a config, ordered layers and metadata.

    Layers hold their content, `serialize` turns them into descriptors.
    """

    artifactType: str | None = None
    config: Descriptor = EMPTY_DESCRIPTOR
    layers: list[Layer] = field(default_factory=list)
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    def serialize(self) -> ImageManifest:
        """Return the wire form of this manifest

        Registries reject `"layers": []`, an artifact without layers
        gets the empty descriptor as its only layer.
        """
        layers = [layer.descriptor for layer in self.layers]
        return ImageManifest(
            artifactType=self.artifactType,
            config=self.config,
            layers=layers or [EMPTY_DESCRIPTOR],
            subject=self.subject,
            annotations=self.annotations,
        )


def build_manifest(
    layers: list[Layer] | None = None,
    config: Descriptor | None = None,
    artifact_type: str | None = None,
    subject: Descriptor | None = None,
    annotations: dict[str, str] | None = None,
) -> Manifest:
    return Manifest(
        artifactType=artifact_type,
        config=config if config is not None else EMPTY_DESCRIPTOR,
        layers=list(layers or []),
        subject=subject,
        annotations=annotations,
    )
