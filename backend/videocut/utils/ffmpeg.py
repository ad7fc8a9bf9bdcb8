"""FFmpeg and ffprobe execution adapter."""
import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence

from videocut.config import settings

if TYPE_CHECKING:
    from videocut.pipeline.filters import FilterProgram

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]

# Filters the compiler can emit
REQUIRED_FILTERS = frozenset({
    "eq", "setpts", "atempo", "drawtext", "overlay", "scale",
    "crop", "pad", "concat", "color", "anullsrc",
})


@dataclass
class VideoInfo:
    """Video metadata container."""
    duration: float
    width: int
    height: int
    fps: float
    video_codec: str
    audio_codec: Optional[str]
    format_name: str
    bit_rate: Optional[int]


class FFmpegError(Exception):
    """FFmpeg related error."""
    pass


class EngineUnavailable(FFmpegError):
    """The codec engine is missing or misconfigured."""
    pass


class EngineError(FFmpegError):
    """The codec engine failed while running a program."""

    def __init__(self, message: str, diagnostics: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.diagnostics = diagnostics
        self.returncode = returncode


@dataclass(frozen=True)
class EngineCapability:
    """Snapshot of what the codec engine can do, taken once at startup."""
    available: bool
    path: Optional[str] = None
    version: Optional[str] = None
    filters: frozenset = field(default_factory=frozenset)
    reason: Optional[str] = None

    @classmethod
    def unavailable(cls, reason: str) -> "EngineCapability":
        return cls(available=False, reason=reason)

    @property
    def missing_filters(self) -> set:
        if not self.available:
            return set(REQUIRED_FILTERS)
        return set(REQUIRED_FILTERS - self.filters)

    def supports(self, filter_name: str) -> bool:
        return self.available and filter_name in self.filters

    def require(self):
        """Raise EngineUnavailable unless the engine can be used."""
        if not self.available:
            raise EngineUnavailable(
                "Video editing is not available in this environment. "
                f"FFmpeg is required ({self.reason or 'not found'})."
            )


def parse_filter_list(output: str) -> frozenset:
    """Extract filter names from ``ffmpeg -filters`` output."""
    names = set()
    for line in output.splitlines():
        parts = line.split()
        # e.g. " TSC eq    V->V   Adjust brightness, contrast..."
        if len(parts) >= 3 and "->" in parts[2]:
            names.add(parts[1])
    return frozenset(names)


def build_ffmpeg_command(
    ffmpeg_path: str,
    inputs: Sequence[Path],
    program: "FilterProgram",
    output: Path,
) -> list[str]:
    """
    Serialize a filter program into an ffmpeg argument list.

    Args:
        ffmpeg_path: Engine binary
        inputs: Primary input first, then overlay inputs in order
        program: Compiled filter program
        output: Output file path

    Returns:
        Full command line
    """
    if len(inputs) != program.input_count:
        raise ValueError(
            f"Program expects {program.input_count} input(s), got {len(inputs)}"
        )

    cmd = [ffmpeg_path, "-y", "-hide_banner"]

    # Trim is a time restriction on the primary input
    if program.trim:
        cmd += ["-ss", str(program.trim.start), "-t", str(program.trim.duration)]
    cmd += ["-i", str(inputs[0])]
    for extra in inputs[1:]:
        cmd += ["-i", str(extra)]

    graph = program.to_filtergraph()
    if graph:
        cmd += ["-filter_complex", graph.filter_complex, "-map", f"[{graph.video_label}]"]
        if graph.audio_label:
            cmd += ["-map", f"[{graph.audio_label}]"]
        else:
            cmd += ["-map", "0:a?"]
    else:
        cmd += ["-map", "0:v:0", "-map", "0:a?"]

    cmd += [
        "-c:v", settings.export_video_codec,
        "-preset", settings.export_video_preset,
        "-crf", str(settings.export_video_crf),
        "-c:a", settings.export_audio_codec,
        "-b:a", settings.export_audio_bitrate,
        "-movflags", "+faststart",
        "-progress", "pipe:1",
        "-nostats",
        str(output),
    ]
    return cmd


class FFmpegAdapter:
    """Runs filter programs through the ffmpeg command line."""

    def __init__(self, ffmpeg_path: Optional[str] = None, ffprobe_path: Optional[str] = None):
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path

    async def probe(self) -> EngineCapability:
        """
        Query the engine for its filter list.

        Never raises; an unusable engine is reported as unavailable.
        """
        path = shutil.which(self.ffmpeg_path)
        if path is None:
            logger.warning(f"FFmpeg not found: {self.ffmpeg_path}")
            return EngineCapability.unavailable(f"{self.ffmpeg_path} not found on PATH")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.ffmpeg_path, "-hide_banner", "-filters",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            logger.warning(f"FFmpeg probe failed: {e}")
            return EngineCapability.unavailable(str(e))

        if proc.returncode != 0:
            reason = stderr.decode("utf-8", errors="ignore").strip() or f"exit code {proc.returncode}"
            logger.warning(f"FFmpeg probe failed: {reason}")
            return EngineCapability.unavailable(reason)

        filters = parse_filter_list(stdout.decode("utf-8", errors="ignore"))
        capability = EngineCapability(
            available=True,
            path=path,
            version=await self._version(),
            filters=filters,
        )
        if capability.missing_filters:
            logger.warning(f"FFmpeg is missing filters: {', '.join(sorted(capability.missing_filters))}")
        logger.info(f"FFmpeg available: {capability.version or path}")
        return capability

    async def _version(self) -> Optional[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ffmpeg_path, "-version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, _ = await proc.communicate()
        except OSError:
            return None
        lines = stdout.decode("utf-8", errors="ignore").splitlines()
        return lines[0].strip() if lines else None

    async def run(
        self,
        inputs: Sequence[Path],
        program: "FilterProgram",
        output: Path,
        progress_callback: Optional[ProgressCallback] = None,
        expected_duration: Optional[float] = None,
    ) -> Path:
        """
        Run a filter program.

        Args:
            inputs: Primary input first, then overlay inputs
            program: Compiled filter program
            output: Output file path
            progress_callback: Optional async callback(progress: float)
            expected_duration: Output duration used to turn engine time into percent

        Returns:
            Path to the output file

        Raises:
            EngineUnavailable: If the engine binary cannot be started
            EngineError: If the engine exits non-zero
        """
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)

        cmd = build_ffmpeg_command(self.ffmpeg_path, inputs, program, output)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise EngineUnavailable(f"Cannot start {self.ffmpeg_path}: {e}") from e

        # Drain stderr concurrently so a chatty engine cannot block on a full pipe
        stderr_task = asyncio.create_task(proc.stderr.read())

        last_progress = 0
        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break

                line_str = line.decode("utf-8", errors="ignore").strip()

                if progress_callback and expected_duration and line_str.startswith("out_time_ms="):
                    try:
                        out_time_us = int(line_str.split("=")[1])
                        out_time_s = out_time_us / 1_000_000
                        progress = min(100, (out_time_s / expected_duration) * 100)
                        if progress - last_progress >= 1:
                            await progress_callback(progress)
                            last_progress = progress
                    except (ValueError, IndexError):
                        pass

            await proc.wait()
        except asyncio.CancelledError:
            # Do not leave an orphaned encoder behind
            if proc.returncode is None:
                proc.kill()
            stderr_task.cancel()
            raise

        stderr = (await stderr_task).decode("utf-8", errors="ignore")

        if proc.returncode != 0:
            raise EngineError(
                f"FFmpeg exited with code {proc.returncode}",
                diagnostics=stderr,
                returncode=proc.returncode,
            )

        if progress_callback:
            await progress_callback(100)
        return output

    async def get_video_info(self, video_path: str | Path) -> VideoInfo:
        """
        Get video metadata using ffprobe.

        Args:
            video_path: Path to video file

        Returns:
            VideoInfo with video metadata

        Raises:
            EngineError: If ffprobe fails
        """
        video_path = Path(video_path)
        if not video_path.exists():
            raise EngineError(f"Video file not found: {video_path}")

        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path)
        ]

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise EngineUnavailable(f"Cannot start {self.ffprobe_path}: {e}") from e

        stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            diagnostics = stderr.decode("utf-8", errors="ignore")
            raise EngineError(f"ffprobe failed: {diagnostics}", diagnostics=diagnostics, returncode=proc.returncode)

        try:
            data = json.loads(stdout.decode())
        except json.JSONDecodeError as e:
            raise EngineError(f"Failed to parse ffprobe output: {e}")

        return parse_probe_data(data)

    async def detect_scenes(
        self,
        video_path: str | Path,
        threshold: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> list[float]:
        """
        Detect scene changes in a video using FFmpeg.

        Args:
            video_path: Path to video file
            threshold: Scene detection threshold (0-1), lower = more sensitive
            progress_callback: Optional async callback(progress: float)

        Returns:
            List of timestamps (in seconds) where scene changes occur
        """
        video_path = Path(video_path)
        if threshold is None:
            threshold = settings.scene_threshold

        info = await self.get_video_info(video_path)
        total_duration = info.duration

        cmd = [
            self.ffmpeg_path,
            "-i", str(video_path),
            "-vf", f"select='gt(scene,{threshold})',showinfo",
            "-f", "null",
            "-"
        ]

        scenes = [0.0]  # Always start with 0

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise EngineUnavailable(f"Cannot start {self.ffmpeg_path}: {e}") from e

        # FFmpeg reports scene frames on stderr
        last_progress = 0
        while True:
            line = await proc.stderr.readline()
            if not line:
                break

            line_str = line.decode("utf-8", errors="ignore")

            if "pts_time:" in line_str:
                timestamp = _parse_pts_time(line_str)
                if timestamp is not None and timestamp > 0 and timestamp not in scenes:
                    scenes.append(timestamp)

            if progress_callback and total_duration and "time=" in line_str:
                current_time = _parse_clock_time(line_str)
                if current_time is not None:
                    progress = min(100, (current_time / total_duration) * 100)
                    if progress - last_progress >= 1:  # Update every 1%
                        await progress_callback(progress)
                        last_progress = progress

        await proc.wait()

        if proc.returncode != 0:
            raise EngineError(f"Scene detection failed with code {proc.returncode}", returncode=proc.returncode)

        return sorted(set(scenes))


def parse_probe_data(data: dict) -> VideoInfo:
    """Build VideoInfo from ffprobe's JSON output."""
    video_stream = None
    audio_stream = None
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    if not video_stream:
        raise EngineError("No video stream found")

    fps_str = video_stream.get("r_frame_rate", "30/1")
    if "/" in fps_str:
        num, den = fps_str.split("/")
        fps = float(num) / float(den) if float(den) > 0 else 30.0
    else:
        fps = float(fps_str)

    duration = float(data.get("format", {}).get("duration", 0))
    if duration == 0:
        duration = float(video_stream.get("duration", 0))

    return VideoInfo(
        duration=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        fps=fps,
        video_codec=video_stream.get("codec_name", "unknown"),
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        format_name=data.get("format", {}).get("format_name", "unknown"),
        bit_rate=int(data.get("format", {}).get("bit_rate", 0)) or None
    )


def _parse_pts_time(line: str) -> Optional[float]:
    for part in line.split():
        if part.startswith("pts_time:"):
            try:
                return float(part.split(":")[1])
            except (ValueError, IndexError):
                return None
    return None


def _parse_clock_time(line: str) -> Optional[float]:
    """Parse an HH:MM:SS.ms ``time=`` field into seconds."""
    for part in line.split():
        if part.startswith("time="):
            parts = part.split("=")[1].split(":")
            if len(parts) != 3:
                return None
            try:
                hours, mins, secs = parts
                return float(hours) * 3600 + float(mins) * 60 + float(secs)
            except ValueError:
                return None
    return None
