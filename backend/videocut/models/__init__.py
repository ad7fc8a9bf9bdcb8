# Models module
from videocut.models.edit import (
    EditSpec,
    TextOverlay,
    ImageOverlay,
    OutputFormat,
    EndCard,
    SQUARE,
    VERTICAL,
)
from videocut.models.segment import Segment
from videocut.models.job import Clip, ExportJob, JobEvent, JobStatus, JobStateError

__all__ = [
    "EditSpec",
    "TextOverlay",
    "ImageOverlay",
    "OutputFormat",
    "EndCard",
    "SQUARE",
    "VERTICAL",
    "Segment",
    "Clip",
    "ExportJob",
    "JobEvent",
    "JobStatus",
    "JobStateError",
]
