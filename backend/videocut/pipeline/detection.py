"""Client for the external object-presence detection service."""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from videocut.config import settings
from videocut.models.segment import Segment

logger = logging.getLogger(__name__)


class DetectionServiceError(Exception):
    """Detection service failed, timed out or returned an unusable payload."""
    pass


@dataclass(frozen=True)
class DetectionRequest:
    """Parameters sent to the detection service."""
    video_url: str
    object_queries: Sequence[str]
    split_strategy: str = "object-presence"
    min_segment_duration: float = settings.min_segment_seconds
    max_segment_duration: float = settings.max_segment_seconds
    confidence_threshold: float = settings.default_confidence_threshold

    def to_payload(self) -> dict:
        return {
            "videoUrl": self.video_url,
            "objectQueries": list(self.object_queries),
            "splitStrategy": self.split_strategy,
            "minSegmentDuration": self.min_segment_duration,
            "maxSegmentDuration": self.max_segment_duration,
            "confidenceThreshold": self.confidence_threshold,
        }


def _extract_error_detail(response: httpx.Response) -> str:
    """Extract concise error detail from a service response."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"HTTP {response.status_code}"


def parse_segments(payload: dict) -> list[Segment]:
    """
    Convert a detection response into segments.

    Accepts ``{"segments": [...]}`` or the wrapped
    ``{"success": true, "data": {"segments": [...]}}`` form.
    """
    if not isinstance(payload, dict):
        raise DetectionServiceError("Detection response is not an object")

    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    items = body.get("segments")
    if not isinstance(items, list):
        raise DetectionServiceError("Detection response has no segment list")

    segments = []
    for item in items:
        try:
            start = float(item["startTime"])
            end = float(item["endTime"])
            confidence = item.get("confidence")
            if confidence is not None:
                confidence = float(confidence)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DetectionServiceError(f"Malformed segment in detection response: {item!r}") from e

        if end <= start or start < 0:
            logger.warning(f"Skipping empty detection segment {start}-{end}")
            continue

        segments.append(Segment(
            start=start,
            end=end,
            confidence=confidence,
            thumbnail_url=item.get("thumbnailUrl"),
        ))
    return segments


class DetectionClient:
    """Posts detection requests and returns candidate segments."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.url = url or settings.detection_service_url
        self.api_key = api_key if api_key is not None else settings.detection_api_key
        self.timeout = timeout or settings.detection_timeout_seconds

    async def detect(self, request: DetectionRequest) -> list[Segment]:
        """
        Ask the service for segments where the queried objects are present.

        Raises:
            DetectionServiceError: On transport errors, non-200 responses or
                malformed payloads
        """
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=request.to_payload(), headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning(f"Detection request timed out for {request.video_url}")
            raise DetectionServiceError("Detection service timed out. Please try again.") from exc
        except httpx.RequestError as exc:
            logger.warning(
                f"Detection request network error for {request.video_url}: {type(exc).__name__}"
            )
            raise DetectionServiceError("Unable to reach detection service.") from exc

        if response.status_code != 200:
            detail = _extract_error_detail(response)
            raise DetectionServiceError(f"Detection service error: {detail}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise DetectionServiceError("Detection service returned invalid JSON") from exc

        segments = parse_segments(payload)
        logger.info(f"Detection service returned {len(segments)} segments")
        return segments
