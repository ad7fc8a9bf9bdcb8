"""Tests for the detection service client."""
import httpx
import pytest

from videocut.models.segment import Segment
from videocut.pipeline import detection
from videocut.pipeline.detection import (
    DetectionClient,
    DetectionRequest,
    DetectionServiceError,
    parse_segments,
)


class _FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload


class _FakeClient:
    def __init__(self, post_response=None, error=None, calls=None, **kwargs):
        self._post_response = post_response
        self._error = error
        self._calls = calls if calls is not None else []
        self._calls.append({"init": kwargs})

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, *args, **kwargs):
        self._calls.append({"post": (args, kwargs)})
        if self._error:
            raise self._error
        return self._post_response


@pytest.fixture
def request_():
    return DetectionRequest(video_url="https://cdn.example.com/v.mp4", object_queries=["dog"])


def _patch_client(monkeypatch, **client_kwargs):
    calls = []
    monkeypatch.setattr(
        detection.httpx,
        "AsyncClient",
        lambda **kwargs: _FakeClient(calls=calls, **client_kwargs, **kwargs),
    )
    return calls


class TestDetectionRequest:
    def test_defaults(self, request_):
        payload = request_.to_payload()
        assert payload["splitStrategy"] == "object-presence"
        assert payload["minSegmentDuration"] == 3.0
        assert payload["maxSegmentDuration"] == 30.0
        assert payload["confidenceThreshold"] == 0.5


class TestParseSegments:
    def test_plain_form(self):
        segments = parse_segments({"segments": [
            {"startTime": 1, "endTime": 4, "duration": 3, "thumbnailUrl": "https://t/1.jpg", "confidence": 0.8},
        ]})
        assert segments == [Segment(1.0, 4.0, confidence=0.8, thumbnail_url="https://t/1.jpg")]

    def test_wrapped_form(self):
        segments = parse_segments({"success": True, "data": {"segments": [{"startTime": 0, "endTime": 2}]}})
        assert segments == [Segment(0.0, 2.0)]

    def test_empty_windows_skipped(self):
        segments = parse_segments({"segments": [{"startTime": 5, "endTime": 5}, {"startTime": 6, "endTime": 9}]})
        assert segments == [Segment(6.0, 9.0)]

    def test_malformed(self):
        with pytest.raises(DetectionServiceError):
            parse_segments({"segments": [{"startTime": "soon"}]})
        with pytest.raises(DetectionServiceError):
            parse_segments({"items": []})

    def test_non_numeric_confidence(self):
        with pytest.raises(DetectionServiceError, match="Malformed segment"):
            parse_segments({"segments": [{"startTime": 1, "endTime": 4, "confidence": "high"}]})


class TestDetectionClient:
    @pytest.mark.asyncio
    async def test_success(self, monkeypatch, request_):
        calls = _patch_client(
            monkeypatch,
            post_response=_FakeResponse(200, {"segments": [{"startTime": 3, "endTime": 9}]}),
        )
        client = DetectionClient(url="http://detector/api", api_key="secret", timeout=5.0)

        segments = await client.detect(request_)

        assert segments == [Segment(3.0, 9.0)]
        assert calls[0]["init"]["timeout"] == 5.0
        args, kwargs = calls[1]["post"]
        assert args == ("http://detector/api",)
        assert kwargs["json"]["objectQueries"] == ["dog"]
        assert kwargs["headers"] == {"Authorization": "Bearer secret"}

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, monkeypatch, request_):
        calls = _patch_client(monkeypatch, post_response=_FakeResponse(200, {"segments": []}))
        await DetectionClient(url="http://detector/api", api_key="").detect(request_)
        assert calls[1]["post"][1]["headers"] == {}

    @pytest.mark.asyncio
    async def test_error_response(self, monkeypatch, request_):
        _patch_client(monkeypatch, post_response=_FakeResponse(500, {"error": "model crashed"}))
        with pytest.raises(DetectionServiceError, match="model crashed"):
            await DetectionClient(url="http://detector/api").detect(request_)

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch, request_):
        _patch_client(monkeypatch, error=httpx.ReadTimeout("timed out"))
        with pytest.raises(DetectionServiceError, match="timed out"):
            await DetectionClient(url="http://detector/api").detect(request_)

    @pytest.mark.asyncio
    async def test_network_error(self, monkeypatch, request_):
        _patch_client(monkeypatch, error=httpx.ConnectError("refused"))
        with pytest.raises(DetectionServiceError, match="Unable to reach"):
            await DetectionClient(url="http://detector/api").detect(request_)

    @pytest.mark.asyncio
    async def test_invalid_json(self, monkeypatch, request_):
        _patch_client(monkeypatch, post_response=_FakeResponse(200, None, text="<html>"))
        with pytest.raises(DetectionServiceError, match="invalid JSON"):
            await DetectionClient(url="http://detector/api").detect(request_)
