"""Segmentation: decide which time ranges of a source become clips.

Strategies are interchangeable. The engine validates constraints, runs the
chosen strategy and clips any segment running past the end of the source.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from videocut.config import settings
from videocut.models.segment import Segment
from videocut.pipeline.detection import DetectionClient, DetectionRequest

logger = logging.getLogger(__name__)

# Stand-in for a content-aware detector: fixed, ascending anchor times (seconds)
HEURISTIC_ANCHORS = (5.0, 15.0, 30.0, 45.0, 60.0, 75.0, 90.0, 105.0, 120.0, 135.0)


class SegmentationError(ValueError):
    """Segmentation input error."""
    pass


class InsufficientSourceDuration(SegmentationError):
    """Requested clips cannot fit in the source even back to back."""
    pass


class InvalidSegmentConstraints(SegmentationError):
    pass


class Strategy(str, enum.Enum):
    """Built-in strategy names."""
    EVEN = "even"
    HEURISTIC = "ai"
    OBJECT_PRESENCE = "object"
    SCENES = "scenes"


@dataclass(frozen=True)
class SegmentConstraints:
    """Inputs shared by all strategies; each strategy reads what it needs."""
    count: int = settings.default_clip_count
    target_duration: float = settings.default_clip_duration

    # Object-presence strategy
    video_url: Optional[str] = None
    object_queries: Sequence[str] = ()
    split_strategy: str = "object-presence"
    min_duration: float = settings.min_segment_seconds
    max_duration: float = settings.max_segment_seconds
    confidence_threshold: float = settings.default_confidence_threshold

    # Scene strategy
    scene_timestamps: Optional[Sequence[float]] = None


class SegmentationStrategy:
    """Base class for pluggable strategies."""

    # Strategies placing fixed-length clips need count * target_duration to fit
    uses_target_duration = True

    def validate(self, constraints: SegmentConstraints):
        pass

    async def propose(self, source_duration: float, constraints: SegmentConstraints) -> List[Segment]:
        raise NotImplementedError


class EvenStrategy(SegmentationStrategy):
    """Spread ``count`` clips evenly, first at 0 and last ending at the source end."""

    async def propose(self, source_duration: float, constraints: SegmentConstraints) -> List[Segment]:
        count = constraints.count
        target = constraints.target_duration
        if count == 1:
            return [Segment(0.0, target)]

        interval = (source_duration - target) / (count - 1)
        return [Segment(i * interval, i * interval + target) for i in range(count)]


class HeuristicAnchorStrategy(SegmentationStrategy):
    """
    Start clips at fixed anchor times.

    This is a placeholder for a content-aware detector; replacing it does not
    change the engine contract.
    """

    def __init__(self, anchors: Sequence[float] = HEURISTIC_ANCHORS):
        self.anchors = tuple(sorted(anchors))

    async def propose(self, source_duration: float, constraints: SegmentConstraints) -> List[Segment]:
        selected = self.anchors[:min(constraints.count, len(self.anchors))]
        return [Segment(anchor, anchor + constraints.target_duration) for anchor in selected]


class ObjectPresenceStrategy(SegmentationStrategy):
    """Delegate to the detection service and keep the first ``count`` segments.

    Confidence filtering and min/max lengths are the service's job.
    """

    uses_target_duration = False

    def __init__(self, client: Optional[DetectionClient] = None):
        self.client = client or DetectionClient()

    def validate(self, constraints: SegmentConstraints):
        if not constraints.video_url:
            raise InvalidSegmentConstraints("Object strategy requires a video URL")
        if not constraints.object_queries:
            raise InvalidSegmentConstraints("Object strategy requires at least one object query")

    def build_request(self, constraints: SegmentConstraints) -> DetectionRequest:
        return DetectionRequest(
            video_url=constraints.video_url,
            object_queries=tuple(constraints.object_queries),
            split_strategy=constraints.split_strategy,
            min_segment_duration=constraints.min_duration,
            max_segment_duration=constraints.max_duration,
            confidence_threshold=constraints.confidence_threshold,
        )

    async def propose(self, source_duration: float, constraints: SegmentConstraints) -> List[Segment]:
        segments = await self.client.detect(self.build_request(constraints))
        return segments[:constraints.count]


class SceneCutStrategy(SegmentationStrategy):
    """Clips between engine-detected scene changes, within min/max duration."""

    uses_target_duration = False

    def validate(self, constraints: SegmentConstraints):
        if constraints.scene_timestamps is None:
            raise InvalidSegmentConstraints("Scene strategy requires scene timestamps")

    async def propose(self, source_duration: float, constraints: SegmentConstraints) -> List[Segment]:
        segments = create_segments_from_scenes(list(constraints.scene_timestamps), source_duration)
        segments = split_long_segments(segments, constraints.max_duration)
        segments = merge_short_segments(segments, constraints.min_duration)
        segments = split_long_segments(segments, constraints.max_duration)
        return segments[:constraints.count]


class SegmentationEngine:
    """Runs a named strategy under shared validation and clipping rules."""

    def __init__(
        self,
        detection_client: Optional[DetectionClient] = None,
        strategies: Optional[Dict[str, SegmentationStrategy]] = None,
    ):
        self.strategies: Dict[str, SegmentationStrategy] = {
            Strategy.EVEN.value: EvenStrategy(),
            Strategy.HEURISTIC.value: HeuristicAnchorStrategy(),
            Strategy.OBJECT_PRESENCE.value: ObjectPresenceStrategy(detection_client),
            Strategy.SCENES.value: SceneCutStrategy(),
        }
        if strategies:
            self.strategies.update(strategies)

    def register(self, name: str, strategy: SegmentationStrategy):
        """Register or replace a strategy."""
        self.strategies[name] = strategy

    async def segment(
        self,
        source_duration: float,
        strategy: str | Strategy,
        constraints: Optional[SegmentConstraints] = None,
    ) -> List[Segment]:
        """
        Produce ordered segments for a source.

        Args:
            source_duration: Source length in seconds
            strategy: Strategy name
            constraints: Count, durations and strategy-specific inputs

        Returns:
            Segments, each inside [0, source_duration]

        Raises:
            InvalidSegmentConstraints: For unknown strategies or bad constraints
            InsufficientSourceDuration: If the clips cannot fit
        """
        constraints = constraints or SegmentConstraints()
        name = strategy.value if isinstance(strategy, Strategy) else str(strategy)
        impl = self.strategies.get(name)
        if impl is None:
            raise InvalidSegmentConstraints(f"Unknown segmentation strategy: {name}")

        self._validate(source_duration, constraints)
        impl.validate(constraints)

        if impl.uses_target_duration:
            needed = constraints.count * constraints.target_duration
            if needed > source_duration:
                raise InsufficientSourceDuration(
                    f"{constraints.count} clips of {constraints.target_duration}s need {needed}s, "
                    f"source is {source_duration}s"
                )

        proposed = await impl.propose(source_duration, constraints)

        segments = []
        for seg in proposed:
            clipped = seg.clipped(source_duration)
            if clipped is None:
                logger.debug(f"Dropping {seg}: starts after source end {source_duration}")
                continue
            if clipped is not seg:
                logger.debug(f"Clipped {seg} to source end {source_duration}")
            segments.append(clipped)

        segments = segments[:constraints.count]
        logger.info(f"Strategy '{name}' produced {len(segments)} segments")
        return segments

    def _validate(self, source_duration: float, constraints: SegmentConstraints):
        if source_duration <= 0:
            raise InvalidSegmentConstraints(f"Source duration must be positive, got {source_duration}")
        if constraints.count < 1:
            raise InvalidSegmentConstraints(f"Clip count must be at least 1, got {constraints.count}")
        if constraints.target_duration <= 0:
            raise InvalidSegmentConstraints(
                f"Target duration must be positive, got {constraints.target_duration}"
            )
        if constraints.min_duration <= 0 or constraints.max_duration < constraints.min_duration:
            raise InvalidSegmentConstraints(
                f"Invalid duration bounds: min={constraints.min_duration}, max={constraints.max_duration}"
            )
        if not 0 <= constraints.confidence_threshold <= 1:
            raise InvalidSegmentConstraints(
                f"Confidence threshold must be within [0, 1], got {constraints.confidence_threshold}"
            )


def create_segments_from_scenes(
    scene_timestamps: List[float],
    video_duration: float
) -> List[Segment]:
    """
    Create raw segments from scene detection timestamps.

    Args:
        scene_timestamps: List of timestamps where scenes change
        video_duration: Total video duration

    Returns:
        List of Segment objects
    """
    timestamps = sorted(t for t in set(scene_timestamps) if 0 <= t < video_duration)

    if not timestamps or timestamps[0] > 0:
        timestamps.insert(0, 0.0)
    timestamps.append(video_duration)

    segments = []
    for i in range(len(timestamps) - 1):
        if timestamps[i + 1] - timestamps[i] > 0.1:  # Filter out tiny segments
            segments.append(Segment(timestamps[i], timestamps[i + 1]))

    return segments


def merge_short_segments(segments: List[Segment], min_duration: float) -> List[Segment]:
    """
    Merge segments shorter than min_duration with neighbors.

    A short segment joins whichever neighbor gives the smaller combined
    duration; the first merges forward and the last merges backward.
    """
    result = list(segments)

    changed = True
    while changed and len(result) > 1:
        changed = False
        merged = []
        i = 0

        while i < len(result):
            current = result[i]

            if current.duration >= min_duration or len(result) == 1:
                merged.append(current)
                i += 1
                continue

            has_next = i + 1 < len(result)
            prev_combined = current.end - merged[-1].start if merged else float("inf")
            next_combined = result[i + 1].end - current.start if has_next else float("inf")

            if merged and prev_combined <= next_combined:
                prev = merged.pop()
                merged.append(Segment(prev.start, current.end))
                i += 1
            elif has_next:
                merged.append(Segment(current.start, result[i + 1].end))
                i += 2
            else:
                merged.append(current)
                i += 1
                continue
            changed = True

        result = merged

    return result


def split_long_segments(segments: List[Segment], max_duration: float) -> List[Segment]:
    """
    Split segments longer than max_duration into roughly equal parts.
    """
    result = []

    for seg in segments:
        if seg.duration <= max_duration:
            result.append(seg)
            continue

        num_parts = int((seg.duration + max_duration - 0.01) // max_duration)
        part_duration = seg.duration / num_parts

        for i in range(num_parts):
            start = seg.start + (i * part_duration)
            # Last part ends exactly at the segment end
            end = seg.end if i == num_parts - 1 else seg.start + ((i + 1) * part_duration)
            result.append(Segment(start, end))

    return result
