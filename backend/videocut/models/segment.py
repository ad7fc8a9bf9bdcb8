"""Segment model: a time window within a source video."""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Segment:
    """A video segment with start and end times."""
    start: float
    end: float
    confidence: Optional[float] = None
    thumbnail_url: Optional[str] = None

    def __post_init__(self):
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"Invalid segment window: {self.start}-{self.end}")

    @property
    def duration(self) -> float:
        return self.end - self.start

    def clipped(self, source_duration: float) -> Optional["Segment"]:
        """Return this segment cut back to ``source_duration``.

        Returns None when nothing of the segment lies inside the source.
        """
        if self.end <= source_duration:
            return self
        if self.start >= source_duration:
            return None
        return Segment(self.start, source_duration, self.confidence, self.thumbnail_url)

    def to_dict(self) -> dict:
        return {
            "start_time": self.start,
            "end_time": self.end,
            "duration": self.duration,
            "confidence": self.confidence,
            "thumbnail_url": self.thumbnail_url,
        }

    def __repr__(self):
        return f"Segment({self.start:.2f}-{self.end:.2f}, dur={self.duration:.2f}s)"
