"""Tests for edit spec compilation and filtergraph serialization."""
import math
from pathlib import Path

import pytest

from videocut.models.edit import SQUARE, VERTICAL, EditSpec, EndCard, ImageOverlay, TextOverlay
from videocut.models.job import Clip
from videocut.models.segment import Segment
from videocut.pipeline.compiler import CompileError, EditSpecCompiler
from videocut.pipeline.filters import (
    AudioTempoStage,
    CropStage,
    EndCardStage,
    ImageOverlayStage,
    ScaleStage,
    VideoTimelineStage,
    atempo_chain,
    drawtext_value,
    escape_drawtext,
)
from videocut.utils.ffmpeg import VideoInfo, build_ffmpeg_command


def _info(width=1920, height=1080, duration=60.0, audio_codec="aac"):
    return VideoInfo(
        duration=duration,
        width=width,
        height=height,
        fps=30.0,
        video_codec="h264",
        audio_codec=audio_codec,
        format_name="mp4",
        bit_rate=None,
    )


def _unquote(token):
    """One pass of FFmpeg's token parser: quoted runs are literal, backslash escapes outside."""
    out = []
    i = 0
    while i < len(token):
        c = token[i]
        if c == "\\" and i + 1 < len(token):
            out.append(token[i + 1])
            i += 2
        elif c == "'":
            end = token.index("'", i + 1)
            out.append(token[i + 1:end])
            i = end + 1
        else:
            out.append(c)
            i += 1
    return "".join(out)


def _drawtext_unescape(text):
    out = []
    i = 0
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text):
            out.append(text[i + 1])
            i += 2
        else:
            assert text[i] != "%", "unescaped % would start an expansion"
            out.append(text[i])
            i += 1
    return "".join(out)


@pytest.fixture
def compiler():
    return EditSpecCompiler(end_card_font_size=64, frame_rate=30, sample_rate=44100)


class TestStageOrdering:
    """Stages must come out in the order the engine expects."""

    def test_full_spec_order(self, compiler):
        spec = EditSpec(
            trim_start=1.0,
            trim_end=4.0,
            brightness=0.1,
            contrast=1.2,
            speed=2.0,
            text_overlay=TextOverlay(content="Hello", x=10, y=20),
            image_overlay=ImageOverlay(path="logo.png", x=5, y=5, width=100, height=50),
        )
        program = compiler.compile(spec, VERTICAL)

        assert program.stage_names == ["eq", "setpts", "atempo", "drawtext", "overlay", "scale", "pad"]
        assert program.trim.start == 1.0
        assert program.trim.duration == 3.0

    def test_empty_spec_has_no_stages(self, compiler):
        program = compiler.compile(EditSpec())
        assert program.stages == ()
        assert program.trim is None
        assert program.to_filtergraph() is None

    def test_color_merged_into_one_stage(self, compiler):
        program = compiler.compile(EditSpec(brightness=0.1, saturation=1.5))
        assert program.stage_names == ["eq"]
        assert program.stages[0].render() == "eq=brightness=0.1:saturation=1.5"

    def test_speed_one_is_a_no_op(self, compiler):
        assert compiler.compile(EditSpec(speed=1.0)).stages == ()


class TestSpeed:
    """Video timeline and audio tempo change together."""

    @pytest.mark.parametrize("speed", [0.25, 0.5, 0.75, 1.5, 2.0, 3.0])
    def test_factors_stay_coupled(self, compiler, speed):
        program = compiler.compile(EditSpec(speed=speed))
        timeline = program.find(VideoTimelineStage)
        tempo = program.find(AudioTempoStage)

        assert timeline.factor == pytest.approx(1 / speed)
        assert timeline.factor * tempo.factor == pytest.approx(1.0)
        assert tempo.factor == speed

    def test_render(self, compiler):
        program = compiler.compile(EditSpec(speed=2.0))
        assert program.find(VideoTimelineStage).render() == "setpts=0.5*PTS"
        assert program.find(AudioTempoStage).render() == "atempo=2"

    def test_slow_tempo_is_chained(self):
        assert atempo_chain(0.25) == [0.5, 0.5]
        assert math.prod(atempo_chain(0.1)) == pytest.approx(0.1)
        assert AudioTempoStage(0.25).render() == "atempo=0.5,atempo=0.5"

    @pytest.mark.parametrize("speed", [0, -1.0, float("nan"), float("inf")])
    def test_invalid_speed(self, compiler, speed):
        with pytest.raises(CompileError):
            compiler.compile(EditSpec(speed=speed))


class TestTrim:
    def test_end_must_exceed_start(self, compiler):
        with pytest.raises(CompileError):
            compiler.compile(EditSpec(trim_start=5.0, trim_end=5.0))
        with pytest.raises(CompileError):
            compiler.compile(EditSpec(trim_start=5.0, trim_end=2.0))

    def test_negative_bound(self, compiler):
        with pytest.raises(CompileError):
            compiler.compile(EditSpec(trim_start=-1.0, trim_end=2.0))

    def test_single_bound_skips_trim(self, compiler):
        assert compiler.compile(EditSpec(trim_start=5.0)).trim is None
        assert compiler.compile(EditSpec(trim_end=5.0)).trim is None

    def test_expected_duration_accounts_for_speed(self, compiler):
        program = compiler.compile(EditSpec(trim_start=10.0, trim_end=20.0, speed=2.0))
        assert program.expected_duration(60.0) == pytest.approx(5.0)


class TestReformat:
    """Aspect ratio crop/scale/pad math."""

    def test_square_crops_shorter_side_first(self, compiler):
        program = compiler.compile(EditSpec(), SQUARE, source=_info(1920, 1080))

        crop, scale = program.stages
        assert isinstance(crop, CropStage)
        assert (crop.width, crop.height) == (1080, 1080)
        assert isinstance(scale, ScaleStage)
        assert (scale.width, scale.height) == (1080, 1080)

        graph = program.to_filtergraph()
        assert graph.filter_complex == "[0:v]crop=1080:1080,scale=1080:1080[vout]"

    def test_square_crop_of_portrait_source(self, compiler):
        program = compiler.compile(EditSpec(), SQUARE, source=_info(720, 1280))
        assert program.find(CropStage).render() == "crop=720:720"

    def test_square_without_source_uses_expression(self, compiler):
        program = compiler.compile(EditSpec(), SQUARE)
        assert program.find(CropStage).render() == "crop='min(iw,ih)':'min(iw,ih)'"

    def test_non_square_fits_then_pads(self, compiler):
        program = compiler.compile(EditSpec(), VERTICAL, source=_info())
        assert [s.render() for s in program.stages] == [
            "scale=1080:1920:force_original_aspect_ratio=decrease",
            "pad=1080:1920:(ow-iw)/2:(oh-ih)/2:color=black,setsar=1",
        ]


class TestOverlays:
    def test_text_is_escaped(self, compiler):
        spec = EditSpec(text_overlay=TextOverlay(content="50% off: it's on", x=10, y=20, font_size=32, color="yellow"))
        rendered = compiler.compile(spec).stages[0].render()
        assert rendered == (
            "drawtext=text='50\\\\% off\\: it\\'\\''s on':fontsize=32:fontcolor=yellow:x=10:y=20"
        )

    def test_escape_backslash_first(self):
        assert escape_drawtext("a\\b") == "a\\\\\\\\b"

    def test_apostrophe_reopens_quote(self):
        assert drawtext_value("Don't miss") == "'Don\\'\\''t miss'"

    @pytest.mark.parametrize("text", ["Shop now", "Don't miss", "50% off: it's on", "a\\b", "rock'n'roll", "[sale], now; 2x"])
    def test_text_survives_every_parser_level(self, text):
        # Filtergraph and option parsers each unquote once, then drawtext unescapes
        option_value = _unquote(_unquote(drawtext_value(text)))
        assert _drawtext_unescape(option_value) == text

    def test_sized_image_overlay_is_scaled(self, compiler):
        spec = EditSpec(
            brightness=0.1,
            image_overlay=ImageOverlay(path="logo.png", x=10, y=20, width=100, height=50),
        )
        program = compiler.compile(spec)
        assert program.input_count == 2
        assert program.to_filtergraph().filter_complex == (
            "[0:v]eq=brightness=0.1[v1];"
            "[1:v]scale=100:50[ovl2];"
            "[v1][ovl2]overlay=10:20[v3];"
            "[v3]null[vout]"
        )

    def test_image_overlay_with_one_dimension_uses_native_size(self, compiler):
        spec = EditSpec(image_overlay=ImageOverlay(path="logo.png", x=5, y=5, width=100))
        program = compiler.compile(spec)
        stage = program.find(ImageOverlayStage)
        assert not stage.scaled
        assert program.to_filtergraph().filter_complex == "[0:v][1:v]overlay=5:5[v1];[v1]null[vout]"

    def test_empty_text_rejected(self, compiler):
        with pytest.raises(CompileError):
            compiler.compile(EditSpec(text_overlay=TextOverlay(content="", x=0, y=0)))


class TestEndCard:
    def test_end_card_is_concatenated(self, compiler):
        program = compiler.compile(EditSpec(), SQUARE, source=_info(), end_card=EndCard(text="Shop now"))
        assert program.stage_names == ["crop", "scale", "endcard"]

        graph = program.to_filtergraph()
        assert graph.video_label == "vout"
        assert graph.audio_label == "aout"
        assert "[0:v]crop=1080:1080,scale=1080:1080,fps=30,setsar=1[vmain]" in graph.filter_complex
        assert "[0:a]aformat=sample_rates=44100:channel_layouts=stereo[amain]" in graph.filter_complex
        assert "color=c=#000000:s=1080x1080:d=2:r=30" in graph.filter_complex
        assert "anullsrc=channel_layout=stereo:sample_rate=44100,atrim=duration=2[acard]" in graph.filter_complex
        assert graph.filter_complex.endswith("[vmain][amain][vcard][acard]concat=n=2:v=1:a=1[vout][aout]")

    def test_end_card_extends_duration(self, compiler):
        program = compiler.compile(
            EditSpec(trim_start=0.0, trim_end=7.0), SQUARE, end_card=EndCard(text="Bye", duration=3.0)
        )
        assert program.expected_duration(60.0) == pytest.approx(10.0)

    def test_end_card_canvas_falls_back_to_source(self, compiler):
        program = compiler.compile(EditSpec(), source=_info(1280, 720), end_card=EndCard(text="Bye"))
        card = program.find(EndCardStage)
        assert (card.width, card.height) == (1280, 720)

    def test_end_card_needs_a_canvas(self, compiler):
        with pytest.raises(CompileError):
            compiler.compile(EditSpec(), end_card=EndCard(text="Bye"))

    def test_end_card_text_with_apostrophe(self, compiler):
        program = compiler.compile(EditSpec(), SQUARE, source=_info(), end_card=EndCard(text="Don't miss"))
        assert "drawtext=text='Don\\'\\''t miss':fontsize=64" in program.to_filtergraph().filter_complex


class TestSilentSource:
    """Sources without an audio stream never reference [0:a]."""

    def test_speed_keeps_only_timeline(self, compiler):
        program = compiler.compile(EditSpec(speed=2.0), source=_info(audio_codec=None))

        assert program.stage_names == ["setpts"]
        assert not program.has_audio
        graph = program.to_filtergraph()
        assert graph.filter_complex == "[0:v]setpts=0.5*PTS[vout]"
        assert graph.audio_label is None

        cmd = build_ffmpeg_command("ffmpeg", [Path("in.mp4")], program, Path("out.mp4"))
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[vout]", "0:a?"]

    def test_end_card_pads_with_silence(self, compiler):
        program = compiler.compile(
            EditSpec(trim_start=10.0, trim_end=17.0, speed=2.0),
            SQUARE,
            source=_info(audio_codec=None),
            end_card=EndCard(text="Shop now"),
        )
        graph = program.to_filtergraph()

        assert "[0:a]" not in graph.filter_complex
        assert "anullsrc=channel_layout=stereo:sample_rate=44100,atrim=duration=3.5[amain]" in graph.filter_complex
        assert graph.filter_complex.endswith("[vmain][amain][vcard][acard]concat=n=2:v=1:a=1[vout][aout]")
        assert graph.audio_label == "aout"

    def test_silent_track_stops_at_source_end(self, compiler):
        program = compiler.compile(
            EditSpec(trim_start=55.0, trim_end=70.0),
            SQUARE,
            source=_info(audio_codec=None),
            end_card=EndCard(text="Bye"),
        )
        assert program.main_duration == pytest.approx(5.0)

    def test_source_with_audio_keeps_tempo(self, compiler):
        program = compiler.compile(EditSpec(speed=2.0), source=_info())
        assert program.stage_names == ["setpts", "atempo"]
        assert program.has_audio


class TestCompileClip:
    def test_segment_becomes_trim(self, compiler):
        clip = Clip(
            id="c1",
            segment=Segment(10.0, 17.0),
            target_format=SQUARE,
            edits=EditSpec(trim_start=0.0, trim_end=1.0, brightness=0.2),
        )
        program = compiler.compile_clip(clip, _info())
        assert program.trim.start == 10.0
        assert program.trim.duration == pytest.approx(7.0)
        assert program.stage_names == ["eq", "crop", "scale"]


class TestDeterminism:
    def test_same_spec_same_program(self, compiler):
        spec = EditSpec(
            trim_start=1.0,
            trim_end=9.0,
            saturation=1.3,
            speed=1.5,
            text_overlay=TextOverlay(content="Hi", x=1, y=2),
        )
        first = compiler.compile(spec, VERTICAL, end_card=EndCard(text="End"))
        second = compiler.compile(spec, VERTICAL, end_card=EndCard(text="End"))
        assert first == second
        assert first.to_filtergraph() == second.to_filtergraph()


class TestCommand:
    """Serialization of a program into ffmpeg arguments."""

    def test_trim_is_input_seek(self, compiler):
        program = compiler.compile(EditSpec(trim_start=2.0, trim_end=5.0))
        cmd = build_ffmpeg_command("ffmpeg", [Path("in.mp4")], program, Path("out.mp4"))

        assert cmd[0] == "ffmpeg"
        assert cmd.index("-ss") < cmd.index("-i")
        assert cmd[cmd.index("-ss") + 1] == "2.0"
        assert cmd[cmd.index("-t") + 1] == "3.0"
        assert "-filter_complex" not in cmd
        assert cmd[cmd.index("-map") + 1] == "0:v:0"
        assert cmd[-1] == "out.mp4"

    def test_filtergraph_maps_labels(self, compiler):
        program = compiler.compile(EditSpec(speed=2.0))
        cmd = build_ffmpeg_command("ffmpeg", [Path("in.mp4")], program, Path("out.mp4"))

        graph = cmd[cmd.index("-filter_complex") + 1]
        assert graph == "[0:v]setpts=0.5*PTS[vout];[0:a]atempo=2[aout]"
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[vout]", "[aout]"]
        assert "-progress" in cmd

    def test_video_only_graph_keeps_source_audio(self, compiler):
        program = compiler.compile(EditSpec(brightness=0.1))
        cmd = build_ffmpeg_command("ffmpeg", [Path("in.mp4")], program, Path("out.mp4"))
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[vout]", "0:a?"]

    def test_overlay_requires_second_input(self, compiler):
        program = compiler.compile(EditSpec(image_overlay=ImageOverlay(path="logo.png", x=0, y=0)))
        with pytest.raises(ValueError):
            build_ffmpeg_command("ffmpeg", [Path("in.mp4")], program, Path("out.mp4"))

        cmd = build_ffmpeg_command("ffmpeg", [Path("in.mp4"), Path("logo.png")], program, Path("out.mp4"))
        inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
        assert inputs == ["in.mp4", "logo.png"]
