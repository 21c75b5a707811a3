import base64
import binascii
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ocidist import media_types
from ocidist.digest import DIGEST_PATTERN, digest_of


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    model_config = ConfigDict(frozen=True)

    mediaType: str
    digest: str = Field(pattern=rf"^{DIGEST_PATTERN}$")
    size: int = Field(ge=0)
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    data: str | None = None
    artifactType: str | None = None

    @field_validator("data")
    @classmethod
    def _check_base64(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError(f"data is not valid base64: {e}") from e
        return value

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str, **kwargs) -> "Descriptor":
        """Describe `data`, the digest and size are derived from the content"""
        return cls(
            mediaType=media_type,
            digest=digest_of(data),
            size=len(data),
            **kwargs,
        )

    def embedded(self) -> bytes | None:
        """Return the decoded embedded content, if any"""
        if self.data is None:
            return None
        return base64.b64decode(self.data)


class Platform(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    architecture: str
    os: str
    osVersion: str | None = Field(default=None, alias="os.version")
    osFeatures: list[str] | None = Field(default=None, alias="os.features")
    variant: str | None = None


class PlatformDescriptor(Descriptor):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    mediaType: str = media_types.IMAGE_MANIFEST
    platform: Platform | None = None


EMPTY_BLOB: Final[bytes] = b"{}"

EMPTY_DESCRIPTOR: Final[Descriptor] = Descriptor(
    mediaType=media_types.EMPTY,
    digest="sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a",
    size=2,
    data="e30=",
)


def descriptor_of(data: bytes, media_type: str, **kwargs) -> Descriptor:
    return Descriptor.from_bytes(data, media_type=media_type, **kwargs)
