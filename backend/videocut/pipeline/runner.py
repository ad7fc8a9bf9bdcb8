"""Pipeline runner.

A Pipeline binds a probed engine capability to the adapter, compiler and
resource manager. Each render acquires its temp files in one scope, so they
are released on success and on every failure path (fetch, probe, compile,
engine).
"""
import base64
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from videocut.models.edit import EditSpec, EndCard, ImageOverlay, OutputFormat
from videocut.models.job import Clip
from videocut.pipeline.compiler import EditSpecCompiler
from videocut.pipeline.filters import FilterProgram
from videocut.utils.fetch import resolve_input
from videocut.utils.ffmpeg import EngineCapability, FFmpegAdapter, ProgressCallback, VideoInfo
from videocut.utils.resources import ResourceLifecycleManager, ResourcePurpose

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Result from one pipeline run."""
    program: FilterProgram
    duration: float  # Expected output duration in seconds
    output_path: Optional[Path] = None
    data_url: Optional[str] = None

    @property
    def output_url(self) -> str:
        if self.output_path is not None:
            return self.output_path.resolve().as_uri()
        return self.data_url or ""


@dataclass
class SourceProbe:
    """Source metadata gathered before segmentation."""
    info: VideoInfo
    scene_timestamps: Optional[list[float]] = None


def safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", value) or "job"


class Pipeline:
    """Compiles and executes edit specs against the codec engine."""

    def __init__(
        self,
        capability: EngineCapability,
        adapter: Optional[FFmpegAdapter] = None,
        resources: Optional[ResourceLifecycleManager] = None,
        compiler: Optional[EditSpecCompiler] = None,
    ):
        self.capability = capability
        self.adapter = adapter or FFmpegAdapter()
        self.resources = resources or ResourceLifecycleManager()
        self.compiler = compiler or EditSpecCompiler()

    @classmethod
    async def create(
        cls,
        adapter: Optional[FFmpegAdapter] = None,
        resources: Optional[ResourceLifecycleManager] = None,
        compiler: Optional[EditSpecCompiler] = None,
    ) -> "Pipeline":
        """Probe the engine once and build a pipeline around the snapshot."""
        adapter = adapter or FFmpegAdapter()
        capability = await adapter.probe()
        return cls(capability, adapter, resources, compiler)

    @property
    def available(self) -> bool:
        return self.capability.available

    async def probe_source(self, source: str | Path, with_scenes: bool = False) -> SourceProbe:
        """
        Read a source's metadata, and optionally its scene-change times.

        Remote sources are downloaded into a temp resource released before
        returning.
        """
        self.capability.require()

        with self.resources.scope() as scope:
            path = await resolve_input(source, scope, ResourcePurpose.INPUT, "mp4")
            info = await self.adapter.get_video_info(path)
            scenes = await self.adapter.detect_scenes(path) if with_scenes else None

        logger.info(f"Probed {source}: {info.duration:.2f}s {info.width}x{info.height}")
        return SourceProbe(info=info, scene_timestamps=scenes)

    async def render(
        self,
        source: str | Path,
        spec: EditSpec,
        target_format: Optional[OutputFormat] = None,
        end_card: Optional[EndCard] = None,
        output_path: Optional[Path] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RenderResult:
        """
        Apply one edit spec to a source video.

        Args:
            source: Local path or http(s) URL of the source video
            spec: Requested transformations
            target_format: Optional output geometry
            end_card: Optional trailing card
            output_path: Where to write the result; if omitted the result is
                returned as a base64 data URL
            progress_callback: Optional async callback(progress: float)

        Returns:
            RenderResult with the output location
        """
        return await self._execute(
            source,
            lambda info: self.compiler.compile(spec, target_format, info, end_card),
            spec.image_overlay,
            output_path,
            progress_callback,
        )

    async def render_clip(
        self,
        source: str | Path,
        clip: Clip,
        output_path: Optional[Path] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RenderResult:
        """Render a batch clip: segment window, target format and end card."""
        overlay = clip.edits.image_overlay if clip.edits else None
        return await self._execute(
            source,
            lambda info: self.compiler.compile_clip(clip, info),
            overlay,
            output_path,
            progress_callback,
            namespace=safe_name(clip.id),
        )

    async def _execute(
        self,
        source: str | Path,
        build_program: Callable[[VideoInfo], FilterProgram],
        overlay: Optional[ImageOverlay],
        output_path: Optional[Path],
        progress_callback: Optional[ProgressCallback],
        namespace: Optional[str] = None,
    ) -> RenderResult:
        self.capability.require()

        with self.resources.scope(namespace) as scope:
            temp_output = scope.allocate(ResourcePurpose.OUTPUT, "mp4")

            input_path = await resolve_input(source, scope, ResourcePurpose.INPUT, "mp4")
            inputs = [input_path]
            if overlay:
                inputs.append(await resolve_input(overlay.path, scope, ResourcePurpose.OVERLAY, "png"))

            info = await self.adapter.get_video_info(input_path)
            program = build_program(info)
            duration = program.expected_duration(info.duration)

            logger.info(f"Rendering {source} with stages: {', '.join(program.stage_names) or 'none'}")
            await self.adapter.run(
                inputs,
                program,
                temp_output.path,
                progress_callback=progress_callback,
                expected_duration=duration,
            )

            if output_path is not None:
                output_path = Path(output_path)
                output_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(temp_output.path), str(output_path))
                return RenderResult(program=program, duration=duration, output_path=output_path)

            encoded = base64.b64encode(temp_output.path.read_bytes()).decode("ascii")
            return RenderResult(
                program=program,
                duration=duration,
                data_url=f"data:video/mp4;base64,{encoded}",
            )
