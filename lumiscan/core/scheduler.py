"""Bounded-concurrency job queue."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence, Union

from ..config import DEFAULT_REVIEW_THRESHOLD
from ..exceptions import ConfigurationError, ValidationError, WorkerError
from .batch import select_best_image
from .events import EventPublisher, ProcessingEvent, SimpleEventPublisher
from .features import FeatureExtractor
from .processor import ConsensusEngine
from .records import AnalysisResult, ProcessingJob, TrainingExample

logger = logging.getLogger(__name__)

ExampleSource = Union[Sequence[TrainingExample], Callable[[], Sequence[TrainingExample]]]


class JobStatus(str, Enum):
    """Review routing of a finished job."""
    AUTO_DETECTED = "auto_detected"
    PENDING_REVIEW = "pending_review"


@dataclass
class JobOutcome:
    """Result of one processing job."""
    group_id: str
    selected_index: int
    selected_name: str
    result: AnalysisResult
    status: JobStatus

    def to_dict(self) -> dict:
        data = self.result.to_dict()
        data.update(
            pointId=self.group_id,
            fileName=self.selected_name,
            status=self.status.value,
        )
        return data


class JobScheduler:
    """FIFO queue running at most max_concurrent_jobs analyses at a time.

    Jobs are admitted in batches sized to the free slots. Each admitted job
    runs on its own thread until it finishes; its completion frees the slot,
    bumps the processed counter and admits more queued work. Jobs can be
    enqueued at any time, including while others run.

    Example:
        >>> scheduler = JobScheduler(engine, examples, max_concurrent_jobs=2)
        >>> scheduler.subscribe(lambda e: print(e.message))
        >>> outcomes = scheduler.run(jobs)
    """

    def __init__(
        self,
        engine: ConsensusEngine,
        examples: ExampleSource = (),
        max_concurrent_jobs: int = 2,
        review_threshold: float = DEFAULT_REVIEW_THRESHOLD,
        extractor: Optional[FeatureExtractor] = None,
        event_publisher: Optional[EventPublisher] = None,
    ):
        """Initialize the scheduler.

        Args:
            engine: Pipeline used for each job's chosen photo
            examples: Confirmed examples, or a callable returning the current
                ones (read fresh for every job)
            max_concurrent_jobs: Cap on jobs running at once
            review_threshold: Results below this go to pending review
            extractor: Extractor used for best-of-batch scoring
            event_publisher: Progress event sink

        Raises:
            ConfigurationError: If max_concurrent_jobs is not positive
        """
        if max_concurrent_jobs < 1:
            raise ConfigurationError(
                f"max_concurrent_jobs must be >= 1, got {max_concurrent_jobs}",
                config_key="max_concurrent_jobs"
            )
        self.engine = engine
        self.max_concurrent_jobs = max_concurrent_jobs
        self.review_threshold = review_threshold
        self.extractor = extractor or engine.extractor
        self._examples = examples
        self._events = event_publisher or SimpleEventPublisher()

        self._cond = threading.Condition()
        self._queue: deque[ProcessingJob] = deque()
        self._active = 0
        self._processed = 0
        self._total = 0
        self._max_observed = 0
        self._outcomes: list[JobOutcome] = []

    @property
    def active_count(self) -> int:
        with self._cond:
            return self._active

    @property
    def processed_count(self) -> int:
        with self._cond:
            return self._processed

    @property
    def total_enqueued(self) -> int:
        with self._cond:
            return self._total

    @property
    def queued_count(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def max_observed_concurrency(self) -> int:
        with self._cond:
            return self._max_observed

    @property
    def results(self) -> list[JobOutcome]:
        """Finished jobs in completion order."""
        with self._cond:
            return list(self._outcomes)

    def subscribe(self, callback: Callable[[ProcessingEvent], None]) -> None:
        """Subscribe to progress events."""
        self._events.subscribe(callback)

    def enqueue(self, *jobs: ProcessingJob) -> None:
        """Append jobs to the queue and admit as many as slots allow.

        Raises:
            ValidationError: If a job has no images
        """
        for job in jobs:
            if not job.images:
                raise ValidationError(f"Job '{job.group_id}' has no images", field="images")

        with self._cond:
            self._queue.extend(jobs)
            self._total += len(jobs)
            self._admit_locked()
        logger.debug(f"Enqueued {len(jobs)} jobs")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is drained and nothing runs.

        Returns:
            False if the timeout expired first
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._queue and self._active == 0, timeout)

    def run(self, jobs: Sequence[ProcessingJob], timeout: Optional[float] = None) -> list[JobOutcome]:
        """Enqueue jobs, wait for everything, return all outcomes."""
        self._publish(ProcessingEvent(
            stage="batch_start",
            message=f"Starting batch of {len(jobs)} jobs",
            progress=0.0,
        ))
        self.enqueue(*jobs)
        self.wait(timeout)
        outcomes = self.results
        self._publish(ProcessingEvent(
            stage="batch_complete",
            message=f"Batch complete: {len(outcomes)}/{self.total_enqueued} jobs",
            progress=1.0,
        ))
        return outcomes

    def _admit_locked(self) -> None:
        """Start a batch sized to the free slots. Caller holds the lock."""
        free = self.max_concurrent_jobs - self._active
        batch: list[ProcessingJob] = []
        while free > 0 and self._queue:
            batch.append(self._queue.popleft())
            free -= 1
        if not batch:
            return

        self._active += len(batch)
        self._max_observed = max(self._max_observed, self._active)
        for job in batch:
            thread = threading.Thread(
                target=self._run_job,
                args=(job,),
                name=f"Job-{job.group_id}",
                daemon=True,
            )
            thread.start()

    def _publish(self, event: ProcessingEvent) -> None:
        """Publish without letting a broken publisher stop the queue."""
        try:
            self._events.publish(event)
        except Exception:
            logger.exception(f"Event publisher failed on '{event.stage}'")

    def _run_job(self, job: ProcessingJob) -> None:
        try:
            self._publish(ProcessingEvent(
                stage="job_start",
                message=f"Processing {job.group_id} ({len(job.images)} photos)",
                group_id=job.group_id,
            ))
            try:
                outcome = self.process_job(job)
            except Exception as e:
                error = WorkerError(f"Job failed: {e}", group_id=job.group_id)
                logger.exception(str(error))
                outcome = JobOutcome(
                    group_id=job.group_id,
                    selected_index=0,
                    selected_name=job.name_of(0),
                    result=AnalysisResult.rejected(error.message, tag="job-error"),
                    status=JobStatus.PENDING_REVIEW,
                )

            with self._cond:
                self._outcomes.append(outcome)
                self._processed += 1
                processed, total = self._processed, self._total

            # Published while the slot is still held so wait() sees every event
            self._publish(ProcessingEvent(
                stage="job_complete",
                message=f"{job.group_id}: {outcome.status.value} "
                        f"({outcome.result.model} / {outcome.result.power})",
                progress=processed / total if total else 1.0,
                group_id=job.group_id,
            ))
        finally:
            with self._cond:
                self._active -= 1
                self._admit_locked()
                self._cond.notify_all()

    def process_job(self, job: ProcessingJob) -> JobOutcome:
        """Select the best photo of a job and analyse it."""
        index, image = select_best_image(job.images, self.extractor)
        examples = self._examples() if callable(self._examples) else self._examples
        result = self.engine.analyze(image, examples)
        status = (
            JobStatus.PENDING_REVIEW if result.needs_review(self.review_threshold)
            else JobStatus.AUTO_DETECTED
        )
        return JobOutcome(
            group_id=job.group_id,
            selected_index=index,
            selected_name=job.name_of(index),
            result=result,
            status=status,
        )
