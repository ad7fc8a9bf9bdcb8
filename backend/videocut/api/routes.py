"""API routes."""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from videocut.api.schemas import (
    ClearCompletedResponse,
    EditRequest,
    EditResponse,
    ExportBatchRequest,
    ExportJobResponse,
    ExportProgressResponse,
    HealthResponse,
    SegmentData,
    SegmentListResponse,
    SegmentRequest,
    SegmentResponse,
)
from videocut.models.edit import OutputFormat
from videocut.models.job import Clip, ExportJob, JobStateError
from videocut.models.segment import Segment
from videocut.pipeline.detection import DetectionServiceError
from videocut.pipeline.runner import Pipeline
from videocut.pipeline.segmentation import SegmentConstraints, SegmentationEngine, Strategy
from videocut.utils.fetch import FetchError
from videocut.utils.ffmpeg import EngineError, EngineUnavailable
from videocut.workers.batch import BatchExportOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_segmentation_engine(request: Request) -> SegmentationEngine:
    return request.app.state.segmentation


def get_orchestrator(request: Request) -> BatchExportOrchestrator:
    return request.app.state.orchestrator


def _job_response(job: ExportJob) -> ExportJobResponse:
    return ExportJobResponse(**job.to_dict())


# =============================================================================
# Health
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(
    pipeline: Pipeline = Depends(get_pipeline),
    orchestrator: BatchExportOrchestrator = Depends(get_orchestrator),
):
    """Report engine availability and worker state."""
    capability = pipeline.capability
    missing = sorted(capability.missing_filters)

    message = None
    if not capability.available:
        message = f"FFmpeg unavailable: {capability.reason}. Install with: brew install ffmpeg"
    elif missing:
        message = f"FFmpeg is missing filters: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if capability.available and not missing else "degraded",
        ffmpeg_available=capability.available,
        ffmpeg_version=capability.version,
        missing_filters=missing,
        worker_running=orchestrator.running,
        message=message,
    )


# =============================================================================
# Segmentation
# =============================================================================

@router.post("/segments", response_model=SegmentListResponse)
async def create_segments(
    request: SegmentRequest,
    pipeline: Pipeline = Depends(get_pipeline),
    engine: SegmentationEngine = Depends(get_segmentation_engine),
):
    """Split a source into candidate clip windows."""
    wants_scenes = request.strategy == Strategy.SCENES.value
    duration = request.source_duration
    scene_timestamps = None

    try:
        if duration is None or wants_scenes:
            if not request.source:
                raise HTTPException(status_code=400, detail="source or source_duration is required")
            probe = await pipeline.probe_source(request.source, with_scenes=wants_scenes)
            duration = duration or probe.info.duration
            scene_timestamps = probe.scene_timestamps

        constraints = SegmentConstraints(
            count=request.count,
            target_duration=request.target_duration,
            video_url=request.source,
            object_queries=tuple(request.object_queries),
            split_strategy=request.split_strategy,
            min_duration=request.min_duration,
            max_duration=request.max_duration,
            confidence_threshold=request.confidence_threshold,
            scene_timestamps=scene_timestamps,
        )
        segments = await engine.segment(duration, request.strategy, constraints)
    except EngineUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except DetectionServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except (ValueError, FetchError, EngineError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SegmentListResponse(
        data=SegmentData(segments=[SegmentResponse(**seg.to_dict()) for seg in segments])
    )


# =============================================================================
# Edits
# =============================================================================

@router.post("/edits", response_model=EditResponse)
async def render_edit(request: EditRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """Apply one edit spec and return the result as a data URL."""
    try:
        spec = request.edits.to_edit_spec()
        target = OutputFormat.parse(request.target_format) if request.target_format else None
        end_card = request.end_card.to_end_card() if request.end_card else None
        result = await pipeline.render(request.source, spec, target, end_card)
    except EngineUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except EngineError as e:
        logger.error(f"Edit failed: {e}\n{e.diagnostics}")
        raise HTTPException(status_code=500, detail=str(e))
    except (ValueError, FetchError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return EditResponse(
        output_url=result.output_url,
        duration=result.duration,
        stages=result.program.stage_names,
    )


# =============================================================================
# Batch Export
# =============================================================================

@router.post("/exports/batch", response_model=List[ExportJobResponse])
async def export_batch(
    request: ExportBatchRequest,
    orchestrator: BatchExportOrchestrator = Depends(get_orchestrator),
):
    """Queue clips for export."""
    try:
        orchestrator.pipeline.capability.require()
        clips = [
            Clip(
                id=item.id,
                segment=Segment(item.start_time, item.end_time),
                target_format=OutputFormat.parse(item.target_format),
                end_card=item.end_card.to_end_card() if item.end_card else None,
                edits=item.edits.to_edit_spec() if item.edits else None,
            )
            for item in request.clips
        ]
        jobs = orchestrator.enqueue(clips, source=request.source)
    except EngineUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return [_job_response(job) for job in jobs]


@router.get("/exports/jobs", response_model=List[ExportJobResponse])
async def list_export_jobs(orchestrator: BatchExportOrchestrator = Depends(get_orchestrator)):
    """List export jobs in queue order."""
    return [_job_response(job) for job in orchestrator.jobs]


@router.get("/exports/jobs/{job_id}", response_model=ExportJobResponse)
async def get_export_job(job_id: str, orchestrator: BatchExportOrchestrator = Depends(get_orchestrator)):
    """Get an export job by ID."""
    job = orchestrator.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.post("/exports/jobs/{job_id}/retry", response_model=ExportJobResponse)
async def retry_export_job(job_id: str, orchestrator: BatchExportOrchestrator = Depends(get_orchestrator)):
    """Put a failed job back in the queue."""
    try:
        job = orchestrator.retry_failed(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _job_response(job)


@router.delete("/exports/jobs/{job_id}")
async def cancel_export_job(job_id: str, orchestrator: BatchExportOrchestrator = Depends(get_orchestrator)):
    """Cancel a pending job."""
    job = orchestrator.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if not orchestrator.cancel(job_id):
        raise HTTPException(status_code=400, detail=f"Only pending jobs can be cancelled, job is {job.status.value}")
    return {"message": "Job cancelled"}


@router.post("/exports/clear-completed", response_model=ClearCompletedResponse)
async def clear_completed(orchestrator: BatchExportOrchestrator = Depends(get_orchestrator)):
    """Remove completed jobs from the queue."""
    return ClearCompletedResponse(removed=orchestrator.remove_completed())


@router.get("/exports/progress", response_model=ExportProgressResponse)
async def export_progress(orchestrator: BatchExportOrchestrator = Depends(get_orchestrator)):
    """Aggregate progress across the queue."""
    counts = orchestrator.status_counts()
    return ExportProgressResponse(
        progress=orchestrator.aggregate_progress,
        total=len(orchestrator.jobs),
        pending=counts["pending"],
        processing=counts["processing"],
        completed=counts["completed"],
        failed=counts["failed"],
    )
