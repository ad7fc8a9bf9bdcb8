"""Batch export orchestrator using asyncio."""
import asyncio
import collections
import logging
import traceback
from pathlib import Path
from typing import Callable, Deque, Dict, Iterable, List, Optional

from videocut.config import settings
from videocut.models.job import Clip, ExportJob, JobEvent, JobStatus
from videocut.pipeline.runner import Pipeline, safe_name
from videocut.utils.ffmpeg import EngineError

logger = logging.getLogger(__name__)

JobListener = Callable[[JobEvent], None]


class BatchExportOrchestrator:
    """
    Renders a queue of clips one at a time.

    Jobs run in enqueue order. A failed job never stops the queue; its error
    is recorded and the next pending job starts on the following tick.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        source: Optional[str | Path] = None,
        output_dir: Optional[Path] = None,
        poll_interval: Optional[float] = None,
        event_limit: Optional[int] = None,
    ):
        self.pipeline = pipeline
        self.source = source
        self.output_dir = Path(output_dir or settings.exports_dir)
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds

        self._jobs: Dict[str, ExportJob] = {}  # Insertion order is queue order
        self._sources: Dict[str, str | Path] = {}
        self._events: Deque[JobEvent] = collections.deque(
            maxlen=event_limit or settings.event_history_limit
        )
        self._listeners: List[JobListener] = []
        self._tick_lock = asyncio.Lock()
        self._worker: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Queue management
    # -------------------------------------------------------------------------

    def enqueue(self, clips: Iterable[Clip], source: Optional[str | Path] = None) -> List[ExportJob]:
        """
        Add clips to the queue as pending jobs.

        Args:
            clips: Clips to export, in order
            source: Source video for these clips; defaults to the
                orchestrator's source

        Raises:
            ValueError: If no source is known, or a clip id is already queued
                or repeated in the batch
        """
        source = source or self.source
        if not source:
            raise ValueError("No source video for export batch")

        clips = list(clips)
        seen = set(self._jobs)
        for clip in clips:
            if clip.id in seen:
                raise ValueError(f"Duplicate clip id: {clip.id}")
            seen.add(clip.id)

        jobs = []
        for clip in clips:
            job = ExportJob(clip=clip)
            self._jobs[clip.id] = job
            self._sources[clip.id] = source
            self._emit(job)
            jobs.append(job)

        logger.info(f"Queued {len(jobs)} export jobs ({self.pending_count} pending)")
        return jobs

    @property
    def jobs(self) -> List[ExportJob]:
        return list(self._jobs.values())

    def get_job(self, job_id: str) -> Optional[ExportJob]:
        return self._jobs.get(job_id)

    @property
    def pending_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JobStatus.PENDING)

    @property
    def aggregate_progress(self) -> float:
        """Mean progress over all jobs; failed jobs count as zero."""
        if not self._jobs:
            return 0.0
        total = sum(job.progress for job in self._jobs.values() if job.status != JobStatus.FAILED)
        return total / len(self._jobs)

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return counts

    def cancel(self, job_id: str) -> bool:
        """Drop a pending job. Jobs already processing run to completion."""
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return False
        self._remove(job)
        logger.info(f"Cancelled pending job {job_id}")
        return True

    def remove_completed(self) -> int:
        """Remove completed jobs. Returns how many were removed."""
        done = [job for job in self._jobs.values() if job.status == JobStatus.COMPLETED]
        for job in done:
            self._remove(job)
        return len(done)

    def _remove(self, job: ExportJob):
        self._emit(job, removed=True)
        del self._jobs[job.id]
        self._sources.pop(job.id, None)

    def retry_failed(self, job_id: str) -> ExportJob:
        """
        Put a failed job back to pending.

        Raises:
            KeyError: If the job does not exist
            JobStateError: If the job has not failed
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        job.reset()
        self._emit(job)
        logger.info(f"Job {job_id} queued for retry")
        return job

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    def add_listener(self, listener: JobListener):
        """Register a callback invoked with every JobEvent."""
        self._listeners.append(listener)

    @property
    def events(self) -> List[JobEvent]:
        return list(self._events)

    def _emit(self, job: ExportJob, removed: bool = False):
        event = JobEvent(
            job_id=job.id,
            status=job.status,
            progress=job.progress,
            error=job.error,
            removed=removed,
        )
        self._events.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Job listener failed for {job.id}")

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _next_pending(self) -> Optional[ExportJob]:
        for job in self._jobs.values():
            if job.status == JobStatus.PENDING:
                return job
        return None

    def output_path_for(self, clip: Clip) -> Path:
        fmt = clip.target_format
        seg = clip.segment
        filename = f"clip-{safe_name(clip.id)}-{fmt.width}-{fmt.height}-{seg.start:g}s-{seg.end:g}s.mp4"
        return self.output_dir / filename

    async def tick(self) -> Optional[ExportJob]:
        """
        Run the oldest pending job to completion.

        Returns:
            The job that ran, or None if nothing was pending
        """
        async with self._tick_lock:
            job = self._next_pending()
            if job is None:
                return None

            job.start()
            self._emit(job)
            logger.info(f"Export job {job.id} started")

            async def update_progress(progress: float):
                if job.advance(progress):
                    self._emit(job)

            try:
                result = await self.pipeline.render_clip(
                    self._sources[job.id],
                    job.clip,
                    output_path=self.output_path_for(job.clip),
                    progress_callback=update_progress,
                )
            except asyncio.CancelledError:
                job.fail("Export interrupted")
                self._emit(job)
                logger.info(f"Export job {job.id} was interrupted")
                raise
            except Exception as e:
                error_msg = str(e)
                error_trace = traceback.format_exc()
                logger.error(f"Export job {job.id} failed: {error_msg}\n{error_trace}")

                diagnostics = e.diagnostics if isinstance(e, EngineError) else None
                job.fail(error_msg, diagnostics=diagnostics)
                self._emit(job)
                return job

            job.complete(result.output_url)
            self._emit(job)
            logger.info(f"Export job {job.id} completed: {result.output_url}")
            return job

    async def drain(self) -> List[ExportJob]:
        """Run ticks until no job is pending."""
        ran = []
        while True:
            job = await self.tick()
            if job is None:
                return ran
            ran.append(job)

    async def run_forever(self):
        """Poll for pending jobs until cancelled."""
        logger.info("Export worker started")
        while True:
            job = await self.tick()
            if job is None:
                await asyncio.sleep(self.poll_interval)

    def start(self) -> asyncio.Task:
        """Start the background worker if it is not already running."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self.run_forever())
        return self._worker

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def shutdown(self):
        """Stop the background worker."""
        if self._worker is None:
            return
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None
        logger.info("Export worker stopped")
