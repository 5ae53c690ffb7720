"""Optional image post-processing applied to whole-file GET responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping

TRANSFORM_PARAMS = ("width", "height", "dpr", "q", "format")
FORMAT_ALIASES = {"jpg": "jpeg", "jfif": "jpeg"}


@dataclass(frozen=True)
class TransformParams:
    width: int | None = None
    height: int | None = None
    dpr: float = 2.0
    quality: int = 85
    format: str = "jpeg"

    @property
    def target_width(self) -> int | None:
        return round(self.width * self.dpr) if self.width else None

    @property
    def target_height(self) -> int | None:
        return round(self.height * self.dpr) if self.height else None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> TransformParams | None:
        """Read resize parameters, ``None`` when the query asks for none."""
        if not any(name in query for name in TRANSFORM_PARAMS):
            return None
        try:
            width = int(query["width"]) if query.get("width") else None
            height = int(query["height"]) if query.get("height") else None
            dpr = float(query["dpr"]) if query.get("dpr") else 2.0
            quality = int(query["q"]) if query.get("q") else 85
        except ValueError:
            return None
        image_format = (query.get("format") or "jpeg").lower()
        return cls(
            width=width,
            height=height,
            dpr=dpr,
            quality=quality,
            format=FORMAT_ALIASES.get(image_format, image_format),
        )


def is_compressible(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";")[0].strip().lower()
    return media_type.startswith("image/") and media_type not in {
        "image/svg+xml",
        "image/gif",
    }


class ImageTransformer(Protocol):
    async def transform(
        self, body: bytes, content_type: str, params: TransformParams
    ) -> tuple[bytes, str] | None:
        """Return the transformed body and its content type, or ``None``."""
        ...
