import logging

from pydantic import BaseModel

from ocidist import media_types
from ocidist.descriptor import Descriptor, Platform, PlatformDescriptor
from ocidist.manifest import ImageManifest

logger = logging.getLogger(__name__)


class ImageIndex(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    schemaVersion: int = 2
    mediaType: str = media_types.IMAGE_INDEX
    artifactType: str | None = None
    manifests: list[PlatformDescriptor] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    def add_manifest(
        self,
        manifest: ImageManifest | Descriptor,
        platform: Platform | None = None,
    ) -> PlatformDescriptor:
        """Add a manifest to the index, replacing the one for the same platform"""
        descriptor = (
            manifest.descriptor if isinstance(manifest, ImageManifest) else manifest
        )
        entry = PlatformDescriptor(
            mediaType=descriptor.mediaType,
            digest=descriptor.digest,
            size=descriptor.size,
            artifactType=descriptor.artifactType,
            annotations=descriptor.annotations,
            platform=platform,
        )
        for idx, existing in enumerate(self.manifests):
            if existing.platform != platform:
                continue
            if existing.digest != entry.digest:
                logger.warning(
                    "Manifest for platform %s already exists with different content, "
                    "overwriting.",
                    platform,
                )
            else:
                logger.info("Manifest for platform %s already exists.", platform)
            self.manifests[idx] = entry
            return entry
        self.manifests.append(entry)
        return entry

    def encode(self) -> bytes:
        return self.model_dump_json(exclude_none=True, by_alias=True).encode("utf-8")

    @property
    def descriptor(self) -> Descriptor:
        return Descriptor.from_bytes(
            self.encode(), media_type=self.mediaType, artifactType=self.artifactType
        )
