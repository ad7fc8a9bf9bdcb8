# Pipeline - edit compilation, execution and segmentation
"""
Pipeline: turn edit specs into engine programs and sources into clips.

The compiler is pure; the Pipeline value binds it to a probed engine and a
resource manager. Segmentation decides which windows become clips.
"""
from .compiler import CompileError, EditSpecCompiler, validate_edit_spec
from .filters import FilterGraph, FilterProgram
from .runner import Pipeline, RenderResult, SourceProbe
from .segmentation import (
    InsufficientSourceDuration,
    InvalidSegmentConstraints,
    SegmentConstraints,
    SegmentationEngine,
    SegmentationError,
    Strategy,
)

__all__ = [
    "CompileError",
    "EditSpecCompiler",
    "validate_edit_spec",
    "FilterGraph",
    "FilterProgram",
    "Pipeline",
    "RenderResult",
    "SourceProbe",
    "InsufficientSourceDuration",
    "InvalidSegmentConstraints",
    "SegmentConstraints",
    "SegmentationEngine",
    "SegmentationError",
    "Strategy",
]
