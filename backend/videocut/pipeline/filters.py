"""Typed filter program for the codec engine.

A FilterProgram is an ordered list of stage descriptors compiled from an
EditSpec. Stages know how to render themselves as FFmpeg filter expressions;
the program knows how to wire them into a single filtergraph. Nothing here
touches the filesystem or spawns processes.
"""
from dataclasses import dataclass
from typing import Optional, Tuple, Union

# FFmpeg's atempo accepts factors in [0.5, 100]
ATEMPO_MIN = 0.5
ATEMPO_MAX = 100.0

Dimension = Union[int, str]  # Pixel count or an FFmpeg expression


def _num(value: float) -> str:
    """Render a number without a trailing '.0' for integral values."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def escape_drawtext(text: str) -> str:
    """
    Escape text as a drawtext option value.

    Two levels apply: drawtext's own expansion (``\\`` and ``%``), then the
    filter option parser (``\\``, ``'`` and ``:``). The result still has to be
    quoted for the filtergraph with ``quote_filter_value``.
    """
    text = text.replace("\\", "\\\\").replace("%", "\\%")
    return text.replace("\\", "\\\\").replace("'", "\\'").replace(":", "\\:")


def quote_filter_value(value: str) -> str:
    """Single-quote a value for the filtergraph parser.

    Quoted text is copied literally, so each apostrophe is written escaped
    between two quoted runs.
    """
    return "'" + value.replace("'", "'\\''") + "'"


def drawtext_value(text: str) -> str:
    return quote_filter_value(escape_drawtext(text))


def atempo_chain(factor: float) -> list[float]:
    """Split a tempo factor into atempo steps the engine accepts.

    The product of the returned steps equals ``factor``.
    """
    steps = []
    while factor < ATEMPO_MIN:
        steps.append(ATEMPO_MIN)
        factor /= ATEMPO_MIN
    while factor > ATEMPO_MAX:
        steps.append(ATEMPO_MAX)
        factor /= ATEMPO_MAX
    steps.append(factor)
    return steps


@dataclass(frozen=True)
class TrimWindow:
    """Time range restriction on the primary input (not a filter)."""
    start: float
    duration: float


@dataclass(frozen=True)
class EqualizerStage:
    """Brightness/contrast/saturation merged into one eq filter."""
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    saturation: Optional[float] = None

    name = "eq"
    stream = "video"

    def render(self) -> str:
        params = []
        for key in ("brightness", "contrast", "saturation"):
            value = getattr(self, key)
            if value is not None:
                params.append(f"{key}={_num(value)}")
        return "eq=" + ":".join(params)


@dataclass(frozen=True)
class VideoTimelineStage:
    """Rescales presentation timestamps; factor is 1/speed."""
    factor: float

    name = "setpts"
    stream = "video"

    def render(self) -> str:
        return f"setpts={_num(self.factor)}*PTS"


@dataclass(frozen=True)
class AudioTempoStage:
    """Changes audio tempo; factor is the speed itself."""
    factor: float

    name = "atempo"
    stream = "audio"

    def render(self) -> str:
        return ",".join(f"atempo={_num(step)}" for step in atempo_chain(self.factor))


@dataclass(frozen=True)
class DrawTextStage:
    text: str
    x: int
    y: int
    font_size: int
    color: str

    name = "drawtext"
    stream = "video"

    def render(self) -> str:
        return (
            f"drawtext=text={drawtext_value(self.text)}"
            f":fontsize={self.font_size}:fontcolor={self.color}"
            f":x={self.x}:y={self.y}"
        )


@dataclass(frozen=True)
class ImageOverlayStage:
    """Composites the second input over the primary stream."""
    x: int
    y: int
    width: Optional[int] = None
    height: Optional[int] = None
    input_index: int = 1

    name = "overlay"
    stream = "video"

    @property
    def scaled(self) -> bool:
        return bool(self.width) and bool(self.height)

    def render_source(self) -> Optional[str]:
        """Scale filter applied to the overlay input, if sized."""
        if not self.scaled:
            return None
        return f"scale={self.width}:{self.height}"

    def render(self) -> str:
        return f"overlay={self.x}:{self.y}"


@dataclass(frozen=True)
class CropStage:
    """Center crop. Dimensions may be numbers or FFmpeg expressions."""
    width: Dimension
    height: Dimension

    name = "crop"
    stream = "video"

    def render(self) -> str:
        return f"crop={self.width}:{self.height}"


@dataclass(frozen=True)
class ScaleStage:
    width: int
    height: int
    fit: bool = False  # Preserve aspect ratio inside the box

    name = "scale"
    stream = "video"

    def render(self) -> str:
        if self.fit:
            return f"scale={self.width}:{self.height}:force_original_aspect_ratio=decrease"
        return f"scale={self.width}:{self.height}"


@dataclass(frozen=True)
class PadStage:
    """Letterbox to an exact canvas, centered."""
    width: int
    height: int
    color: str = "black"

    name = "pad"
    stream = "video"

    def render(self) -> str:
        return f"pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2:color={self.color},setsar=1"


@dataclass(frozen=True)
class EndCardStage:
    """Generated color card with centered text, concatenated after the clip."""
    text: str
    background_color: str
    text_color: str
    duration: float
    width: int
    height: int
    font_size: int
    frame_rate: int
    sample_rate: int

    name = "endcard"
    stream = "video"

    def render_video(self) -> str:
        return (
            f"color=c={self.background_color}:s={self.width}x{self.height}"
            f":d={_num(self.duration)}:r={self.frame_rate},"
            f"drawtext=text={drawtext_value(self.text)}"
            f":fontsize={self.font_size}:fontcolor={self.text_color}"
            f":x=(w-text_w)/2:y=(h-text_h)/2,setsar=1"
        )

    def render_audio(self) -> str:
        return (
            f"anullsrc=channel_layout=stereo:sample_rate={self.sample_rate},"
            f"atrim=duration={_num(self.duration)}"
        )

    def render(self) -> str:
        return self.render_video()


Stage = Union[
    EqualizerStage,
    VideoTimelineStage,
    AudioTempoStage,
    DrawTextStage,
    ImageOverlayStage,
    CropStage,
    ScaleStage,
    PadStage,
    EndCardStage,
]


@dataclass(frozen=True)
class FilterGraph:
    """Serialized filtergraph plus the output labels to map."""
    filter_complex: str
    video_label: str
    audio_label: Optional[str]


@dataclass(frozen=True)
class FilterProgram:
    """Ordered stages compiled from one EditSpec."""
    stages: Tuple[Stage, ...] = ()
    trim: Optional[TrimWindow] = None
    has_audio: bool = True
    # Length of the edited clip before any end card; needed to pad a silent source
    main_duration: Optional[float] = None

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    @property
    def video_stages(self) -> list[Stage]:
        return [s for s in self.stages if s.stream == "video"]

    @property
    def audio_stages(self) -> list[Stage]:
        return [s for s in self.stages if s.stream == "audio"]

    @property
    def input_count(self) -> int:
        """Number of engine inputs the program reads (primary + overlays)."""
        overlays = [s for s in self.stages if isinstance(s, ImageOverlayStage)]
        return 1 + len(overlays)

    @property
    def end_card(self) -> Optional[EndCardStage]:
        for stage in self.stages:
            if isinstance(stage, EndCardStage):
                return stage
        return None

    def find(self, stage_type) -> Optional[Stage]:
        for stage in self.stages:
            if isinstance(stage, stage_type):
                return stage
        return None

    def expected_duration(self, source_duration: float) -> float:
        """Duration of the rendered output for a source of the given length."""
        duration = self.trim.duration if self.trim else source_duration
        timeline = self.find(VideoTimelineStage)
        if timeline:
            duration *= timeline.factor
        if self.end_card:
            duration += self.end_card.duration
        return duration

    def to_filtergraph(self) -> Optional[FilterGraph]:
        """Wire the stages into one filtergraph.

        Returns None when the program has no stages (plain transcode).
        """
        if not self.stages:
            return None

        parts = []
        counter = 0

        def next_label(prefix: str) -> str:
            nonlocal counter
            counter += 1
            return f"{prefix}{counter}"

        # Video chain: single-input filters are appended to the running chain,
        # overlays close it and start a new one.
        current = "0:v"
        chain: list[str] = []
        for stage in self.video_stages:
            if isinstance(stage, EndCardStage):
                continue
            if isinstance(stage, ImageOverlayStage):
                base = current
                if chain:
                    base = next_label("v")
                    parts.append(f"[{current}]{','.join(chain)}[{base}]")
                    chain = []
                overlay_src = f"{stage.input_index}:v"
                scale = stage.render_source()
                if scale:
                    scaled = next_label("ovl")
                    parts.append(f"[{overlay_src}]{scale}[{scaled}]")
                    overlay_src = scaled
                current = next_label("v")
                parts.append(f"[{base}][{overlay_src}]{stage.render()}[{current}]")
                continue
            chain.append(stage.render())

        video_out = "vout"
        audio_out: Optional[str] = None
        end_card = self.end_card

        if end_card:
            # Both concat inputs need matching frame rate and SAR
            chain.append(f"fps={end_card.frame_rate}")
            chain.append("setsar=1")
        parts.append(f"[{current}]{','.join(chain) if chain else 'null'}[{'vmain' if end_card else video_out}]")

        audio_chain = [stage.render() for stage in self.audio_stages]
        if end_card:
            audio_chain.append(
                f"aformat=sample_rates={end_card.sample_rate}:channel_layouts=stereo"
            )
        if end_card and not self.has_audio:
            if self.main_duration is None:
                raise ValueError("Silent source with an end card needs the clip duration")
            audio_out = "aout"
            parts.append(
                f"anullsrc=channel_layout=stereo:sample_rate={end_card.sample_rate},"
                f"atrim=duration={_num(self.main_duration)}[amain]"
            )
        elif audio_chain and self.has_audio:
            audio_out = "aout"
            parts.append(f"[0:a]{','.join(audio_chain)}[{'amain' if end_card else audio_out}]")

        if end_card:
            parts.append(f"{end_card.render_video()}[vcard]")
            parts.append(f"{end_card.render_audio()}[acard]")
            parts.append(f"[vmain][amain][vcard][acard]concat=n=2:v=1:a=1[{video_out}][{audio_out}]")

        return FilterGraph(
            filter_complex=";".join(parts),
            video_label=video_out,
            audio_label=audio_out,
        )
