"""Edit value objects: requested transformations, target formats and end cards."""
from dataclasses import dataclass, asdict
from math import gcd
from typing import Optional

from videocut.config import settings


# Well-known sizes whose marketing label differs from the reduced ratio
KNOWN_ASPECT_RATIOS = {
    (1920, 1080): "16:9",
    (1080, 1920): "9:16",
    (864, 1080): "4:5",
    (1080, 1350): "4:5",
    (1280, 720): "16:9",
    (854, 480): "16:9",
    (640, 480): "4:3",
}


@dataclass(frozen=True)
class TextOverlay:
    """Text drawn over the video at a fixed position."""
    content: str
    x: int
    y: int
    font_size: int = settings.default_font_size
    color: str = settings.default_font_color


@dataclass(frozen=True)
class ImageOverlay:
    """Image composited over the video.

    ``path`` may be a local file or an http(s) URL. The overlay is scaled to
    ``width``x``height`` only when both are given.
    """
    path: str
    x: int
    y: int
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def has_size(self) -> bool:
        return bool(self.width) and bool(self.height)


@dataclass(frozen=True)
class EditSpec:
    """One set of requested transformations. Every field is optional."""
    trim_start: Optional[float] = None
    trim_end: Optional[float] = None
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    saturation: Optional[float] = None
    speed: Optional[float] = None
    text_overlay: Optional[TextOverlay] = None
    image_overlay: Optional[ImageOverlay] = None

    @classmethod
    def from_dict(cls, data: dict) -> "EditSpec":
        """Build an EditSpec from a plain (API) dictionary."""
        text = data.get("text_overlay")
        image = data.get("image_overlay")
        return cls(
            trim_start=data.get("trim_start"),
            trim_end=data.get("trim_end"),
            brightness=data.get("brightness"),
            contrast=data.get("contrast"),
            saturation=data.get("saturation"),
            speed=data.get("speed"),
            text_overlay=TextOverlay(**text) if text else None,
            image_overlay=ImageOverlay(**image) if image else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OutputFormat:
    """A named target geometry."""
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Output format dimensions must be positive, got {self.width}x{self.height}"
            )

    @classmethod
    def parse(cls, value: str) -> "OutputFormat":
        """Parse a ``"1080x1920"`` style string."""
        try:
            width, height = value.lower().split("x")
            return cls(int(width), int(height))
        except ValueError as e:
            raise ValueError(f"Invalid output format: {value!r}") from e

    @property
    def is_square(self) -> bool:
        return self.width == self.height

    @property
    def aspect_ratio_label(self) -> str:
        """Aspect ratio label, e.g. 1080x1080 -> '1:1'."""
        if self.is_square:
            return "1:1"
        known = KNOWN_ASPECT_RATIOS.get((self.width, self.height))
        if known:
            return known
        divisor = gcd(self.width, self.height)
        return f"{self.width // divisor}:{self.height // divisor}"

    @property
    def resolution_label(self) -> str:
        if self.height >= 2160:
            return "4K"
        if self.height >= 1080:
            return "1080p"
        if self.height >= 720:
            return "720p"
        if self.height >= 480:
            return "480p"
        return f"{self.height}p"

    def __str__(self):
        return f"{self.width}x{self.height}"


SQUARE = OutputFormat(1080, 1080)
VERTICAL = OutputFormat(1080, 1920)


@dataclass(frozen=True)
class EndCard:
    """A trailing call-to-action card appended after a clip."""
    text: str
    background_color: str = "#000000"
    text_color: str = "#FFFFFF"
    duration: float = 2.0

    def __post_init__(self):
        if self.duration <= 0:
            raise ValueError(f"End card duration must be positive, got {self.duration}")
