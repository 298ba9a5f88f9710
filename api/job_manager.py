"""
PixelUpia SR API - Job Manager
===============================
In-memory job state tracker with filesystem storage paths.
"""

import uuid
from typing import Dict, Optional
from pathlib import Path
from dataclasses import dataclass, field
from datetime import datetime

from core.tile_engine import CancellationToken

from .schemas import JobState


TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


@dataclass
class Job:
    """Represents an enhancement job."""
    job_id: str
    filename: str
    input_path: Path
    output_path: Optional[Path] = None
    state: JobState = JobState.UPLOADED
    progress: float = 0.0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    mode: Optional[str] = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken)


class JobManager:
    """
    In-memory job state tracker.

    Manages job lifecycle: uploaded → queued → processing → completed | failed | cancelled
    """

    def __init__(self, uploads_dir: Path, outputs_dir: Path):
        self.uploads_dir = uploads_dir
        self.outputs_dir = outputs_dir
        self.jobs: Dict[str, Job] = {}

        # Ensure directories exist
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.outputs_dir.mkdir(parents=True, exist_ok=True)

    def create_job(self, filename: str, input_path: Path, job_id: Optional[str] = None) -> Job:
        """Create a new job after file upload."""
        job_id = job_id or str(uuid.uuid4())
        job = Job(
            job_id=job_id,
            filename=filename,
            input_path=input_path,
            state=JobState.UPLOADED
        )
        self.jobs[job_id] = job
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get job by ID."""
        return self.jobs.get(job_id)

    def update_state(self, job_id: str, state: JobState,
                     progress: float = None, error: str = None) -> Optional[Job]:
        """Update job state and progress."""
        job = self.jobs.get(job_id)
        if job:
            job.state = state
            if progress is not None:
                job.progress = progress
            if error is not None:
                job.error = error
        return job

    def update_progress(self, job_id: str, progress: float) -> Optional[Job]:
        """Advance progress; values lower than the current one are ignored."""
        job = self.jobs.get(job_id)
        if job and progress > job.progress:
            job.progress = min(progress, 1.0)
        return job

    def set_output(self, job_id: str, output_path: Path) -> Optional[Job]:
        """Set the output file path for a completed job."""
        job = self.jobs.get(job_id)
        if job:
            job.output_path = output_path
        return job

    def queue_job(self, job_id: str, mode: str) -> Optional[Job]:
        """Queue a job for processing, resetting any previous attempt."""
        job = self.jobs.get(job_id)
        if job:
            job.state = JobState.QUEUED
            job.mode = mode
            job.progress = 0.0
            job.error = None
            job.cancel_token = CancellationToken()
        return job

    def cancel_job(self, job_id: str) -> Optional[Job]:
        """
        Request cancellation.

        A queued job is cancelled immediately; a processing job stops at the
        next tile boundary.
        """
        job = self.jobs.get(job_id)
        if job and job.state not in TERMINAL_STATES:
            job.cancel_token.cancel()
            if job.state in (JobState.UPLOADED, JobState.QUEUED):
                job.state = JobState.CANCELLED
        return job
