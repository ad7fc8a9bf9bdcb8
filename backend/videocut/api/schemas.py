"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from videocut.config import settings
from videocut.models.edit import EditSpec, EndCard, ImageOverlay, TextOverlay


# =============================================================================
# Edit Schemas
# =============================================================================

class TextOverlaySchema(BaseModel):
    """Text drawn over the video."""
    content: str = Field(..., min_length=1)
    x: int = 0
    y: int = 0
    font_size: int = Field(settings.default_font_size, gt=0)
    color: str = settings.default_font_color


class ImageOverlaySchema(BaseModel):
    """Image composited over the video."""
    path: str = Field(..., description="Local path or http(s) URL of the image")
    x: int = 0
    y: int = 0
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)


class EditSpecSchema(BaseModel):
    """Requested transformations. Every field is optional."""
    trim_start: Optional[float] = Field(None, ge=0)
    trim_end: Optional[float] = Field(None, ge=0)
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    saturation: Optional[float] = None
    speed: Optional[float] = Field(None, description="Playback speed factor, must be > 0")
    text_overlay: Optional[TextOverlaySchema] = None
    image_overlay: Optional[ImageOverlaySchema] = None

    def to_edit_spec(self) -> EditSpec:
        return EditSpec(
            trim_start=self.trim_start,
            trim_end=self.trim_end,
            brightness=self.brightness,
            contrast=self.contrast,
            saturation=self.saturation,
            speed=self.speed,
            text_overlay=TextOverlay(**self.text_overlay.model_dump()) if self.text_overlay else None,
            image_overlay=ImageOverlay(**self.image_overlay.model_dump()) if self.image_overlay else None,
        )


class EndCardSchema(BaseModel):
    """Trailing call-to-action card."""
    text: str
    background_color: str = "#000000"
    text_color: str = "#FFFFFF"
    duration: float = Field(2.0, gt=0)

    def to_end_card(self) -> EndCard:
        return EndCard(**self.model_dump())


class EditRequest(BaseModel):
    """Request to render a single edit."""
    source: str = Field(..., description="Local path or http(s) URL of the source video")
    edits: EditSpecSchema = Field(default_factory=EditSpecSchema)
    target_format: Optional[str] = Field(None, description="Target size, e.g. 1080x1920")
    end_card: Optional[EndCardSchema] = None


class EditResponse(BaseModel):
    """Rendered edit."""
    output_url: str
    duration: float
    stages: List[str]


# =============================================================================
# Segmentation Schemas
# =============================================================================

class SegmentRequest(BaseModel):
    """Request to split a source into candidate clips."""
    strategy: str = Field("even", description="even, ai, object or scenes")
    source: Optional[str] = Field(None, description="Source video; probed when no duration is given")
    source_duration: Optional[float] = Field(None, gt=0)
    count: int = Field(settings.default_clip_count, ge=1)
    target_duration: float = Field(settings.default_clip_duration, gt=0)
    object_queries: List[str] = Field(default_factory=list)
    split_strategy: str = "object-presence"
    min_duration: float = Field(settings.min_segment_seconds, gt=0)
    max_duration: float = Field(settings.max_segment_seconds, gt=0)
    confidence_threshold: float = Field(settings.default_confidence_threshold, ge=0, le=1)


class SegmentResponse(BaseModel):
    """A time window within the source."""
    start_time: float
    end_time: float
    duration: float
    confidence: Optional[float] = None
    thumbnail_url: Optional[str] = None


class SegmentData(BaseModel):
    segments: List[SegmentResponse]


class SegmentListResponse(BaseModel):
    """Segmentation result."""
    success: bool = True
    data: SegmentData


# =============================================================================
# Export Schemas
# =============================================================================

class ClipSchema(BaseModel):
    """A segment bound to export parameters."""
    id: str = Field(..., min_length=1)
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., gt=0)
    target_format: str = Field(..., description="Target size, e.g. 1080x1080")
    end_card: Optional[EndCardSchema] = None
    edits: Optional[EditSpecSchema] = None


class ExportBatchRequest(BaseModel):
    """Request to queue a batch of clips for export."""
    source: str = Field(..., description="Local path or http(s) URL of the source video")
    clips: List[ClipSchema] = Field(..., min_length=1)


class ExportJobResponse(BaseModel):
    """Export job status."""
    id: str
    status: str
    progress: float
    output_url: Optional[str] = None
    error: Optional[str] = None
    diagnostics: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ExportProgressResponse(BaseModel):
    """Aggregate batch progress."""
    progress: float
    total: int
    pending: int
    processing: int
    completed: int
    failed: int


class ClearCompletedResponse(BaseModel):
    removed: int


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffmpeg_version: Optional[str] = None
    missing_filters: List[str] = Field(default_factory=list)
    worker_running: bool = False
    message: Optional[str] = None
