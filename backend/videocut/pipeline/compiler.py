"""Edit spec compiler.

Maps an EditSpec (plus optional target format and end card) to an ordered
FilterProgram. The order of stages is significant to the codec engine:

1. Trim restricts the primary input's time range (not a filter).
2. Color adjustments collapse into one eq stage.
3. Speed changes the video timeline (1/speed) and the audio tempo (speed)
   together. A source without an audio stream only gets the timeline stage.
4. Text is drawn after color and speed.
5. An image overlay composites a second input over the filtered stream.
6. Reformatting crops/scales (square) or scales/pads (other) to the target.
7. An end card, if any, is concatenated last.

Compilation is pure: no probing, no filesystem access.
"""
import logging
import math
from dataclasses import replace
from typing import Optional

from videocut.config import settings
from videocut.models.edit import EditSpec, EndCard, OutputFormat
from videocut.models.job import Clip
from videocut.pipeline.filters import (
    AudioTempoStage,
    CropStage,
    DrawTextStage,
    EndCardStage,
    EqualizerStage,
    FilterProgram,
    ImageOverlayStage,
    PadStage,
    ScaleStage,
    TrimWindow,
    VideoTimelineStage,
)
from videocut.utils.ffmpeg import VideoInfo

logger = logging.getLogger(__name__)


class CompileError(ValueError):
    """Edit spec is malformed or contradictory."""
    pass


def _is_finite(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def validate_edit_spec(spec: EditSpec):
    """Raise CompileError for values the engine cannot honor."""
    if spec.speed is not None and (not _is_finite(spec.speed) or spec.speed <= 0):
        raise CompileError(f"Speed must be a positive number, got {spec.speed}")

    for name in ("trim_start", "trim_end"):
        value = getattr(spec, name)
        if value is not None and (not _is_finite(value) or value < 0):
            raise CompileError(f"{name} must be a non-negative number, got {value}")

    if spec.trim_start is not None and spec.trim_end is not None:
        if spec.trim_end <= spec.trim_start:
            raise CompileError(
                f"trim_end ({spec.trim_end}) must be greater than trim_start ({spec.trim_start})"
            )

    for name in ("brightness", "contrast", "saturation"):
        value = getattr(spec, name)
        if value is not None and not _is_finite(value):
            raise CompileError(f"{name} must be a finite number, got {value}")

    text = spec.text_overlay
    if text is not None:
        if not text.content:
            raise CompileError("Text overlay content is empty")
        if text.font_size <= 0:
            raise CompileError(f"Text overlay font size must be positive, got {text.font_size}")

    image = spec.image_overlay
    if image is not None:
        if not image.path:
            raise CompileError("Image overlay path is empty")
        for name in ("width", "height"):
            value = getattr(image, name)
            if value is not None and value < 0:
                raise CompileError(f"Image overlay {name} must not be negative, got {value}")


class EditSpecCompiler:
    """Compiles edit specs into filter programs."""

    def __init__(
        self,
        end_card_font_size: Optional[int] = None,
        frame_rate: Optional[int] = None,
        sample_rate: Optional[int] = None,
    ):
        self.end_card_font_size = end_card_font_size or settings.end_card_font_size
        self.frame_rate = frame_rate or settings.export_frame_rate
        self.sample_rate = sample_rate or settings.export_audio_sample_rate

    def compile(
        self,
        spec: EditSpec,
        target_format: Optional[OutputFormat] = None,
        source: Optional[VideoInfo] = None,
        end_card: Optional[EndCard] = None,
    ) -> FilterProgram:
        """
        Compile an edit spec.

        Args:
            spec: Requested transformations
            target_format: Optional output geometry
            source: Probed source info; enables numeric crop sizes
            end_card: Optional trailing card

        Returns:
            FilterProgram with stages in engine order

        Raises:
            CompileError: If the edit settings are invalid
        """
        validate_edit_spec(spec)
        stages = []

        trim = None
        if spec.trim_start is not None and spec.trim_end is not None:
            trim = TrimWindow(start=spec.trim_start, duration=spec.trim_end - spec.trim_start)
        elif spec.trim_start is not None or spec.trim_end is not None:
            # Both bounds are required; a single bound leaves the source untrimmed
            logger.debug("Only one trim bound given, trimming skipped")

        if any(v is not None for v in (spec.brightness, spec.contrast, spec.saturation)):
            stages.append(EqualizerStage(
                brightness=spec.brightness,
                contrast=spec.contrast,
                saturation=spec.saturation,
            ))

        has_audio = source is None or source.audio_codec is not None

        if spec.speed is not None and spec.speed != 1:
            # Never emit one without the other while there is audio to retime
            stages.append(VideoTimelineStage(factor=1 / spec.speed))
            if has_audio:
                stages.append(AudioTempoStage(factor=spec.speed))
            else:
                logger.debug("Source has no audio stream, tempo stage skipped")

        if spec.text_overlay:
            text = spec.text_overlay
            stages.append(DrawTextStage(
                text=text.content,
                x=text.x,
                y=text.y,
                font_size=text.font_size,
                color=text.color,
            ))

        if spec.image_overlay:
            image = spec.image_overlay
            if image.has_size:
                stages.append(ImageOverlayStage(x=image.x, y=image.y, width=image.width, height=image.height))
            else:
                stages.append(ImageOverlayStage(x=image.x, y=image.y))

        if target_format:
            stages.extend(self._reformat_stages(target_format, source))

        if end_card:
            width, height = self._canvas_size(target_format, source)
            stages.append(EndCardStage(
                text=end_card.text,
                background_color=end_card.background_color,
                text_color=end_card.text_color,
                duration=end_card.duration,
                width=width,
                height=height,
                font_size=self.end_card_font_size,
                frame_rate=self.frame_rate,
                sample_rate=self.sample_rate,
            ))

        main_duration = None
        if not has_audio:
            main_duration = self._main_duration(source, trim, spec.speed)
        return FilterProgram(
            stages=tuple(stages),
            trim=trim,
            has_audio=has_audio,
            main_duration=main_duration,
        )

    @staticmethod
    def _main_duration(source: VideoInfo, trim: Optional[TrimWindow], speed: Optional[float]) -> float:
        """Output length of the edited clip, end card excluded."""
        duration = source.duration
        if trim:
            duration = max(0.0, min(trim.duration, source.duration - trim.start))
        if speed:
            duration /= speed
        return duration

    def compile_clip(self, clip: Clip, source: Optional[VideoInfo] = None) -> FilterProgram:
        """Compile a batch clip: its segment becomes the trim window."""
        spec = replace(
            clip.edits or EditSpec(),
            trim_start=clip.segment.start,
            trim_end=clip.segment.end,
        )
        return self.compile(spec, clip.target_format, source, clip.end_card)

    def _reformat_stages(self, target: OutputFormat, source: Optional[VideoInfo]) -> list:
        if target.is_square:
            if source and source.width and source.height:
                side = min(source.width, source.height)
                crop = CropStage(width=side, height=side)
            else:
                crop = CropStage(width="'min(iw,ih)'", height="'min(iw,ih)'")
            return [crop, ScaleStage(width=target.width, height=target.height)]

        return [
            ScaleStage(width=target.width, height=target.height, fit=True),
            PadStage(width=target.width, height=target.height),
        ]

    def _canvas_size(self, target: Optional[OutputFormat], source: Optional[VideoInfo]) -> tuple:
        if target:
            return target.width, target.height
        if source and source.width and source.height:
            return source.width, source.height
        raise CompileError("End card needs a target format or known source dimensions")
