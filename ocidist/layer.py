from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from ocidist import media_types
from ocidist.descriptor import Descriptor


@dataclass(frozen=True)
class Layer:
    """A blob held in memory, together with its media type.

    The descriptor is derived from the content and computed once,
    a Layer, its bytes and its annotations never change after construction.
    """

    media_type: str
    blob: bytes = field(repr=False)
    annotations: Mapping[str, str] | None = field(default=None, compare=False)

    def __post_init__(self):
        if self.annotations is not None:
            # Read-only copy, the cached descriptor includes them
            object.__setattr__(
                self, "annotations", MappingProxyType(dict(self.annotations))
            )

    @cached_property
    def descriptor(self) -> Descriptor:
        annotations = dict(self.annotations) if self.annotations is not None else None
        return Descriptor.from_bytes(
            self.blob, media_type=self.media_type, annotations=annotations
        )

    @property
    def digest(self) -> str:
        return self.descriptor.digest

    @classmethod
    def from_path(
        cls, path: Path, media_type: str = media_types.IMAGE_LAYER_TAR
    ) -> "Layer":
        """Create a new layer from the content of a single file"""
        if not path.is_file():
            raise ValueError(f"{path} is not a file")
        return cls(media_type=media_type, blob=path.read_bytes())
