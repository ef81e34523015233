"""Tests for the bounded job scheduler."""

import threading
import time

import pytest

from ..core.events import ProcessingEvent, SimpleEventPublisher
from ..core.features import FeatureExtractor
from ..core.records import AnalysisResult, ProcessingJob, TrainingExample
from ..core.scheduler import JobScheduler, JobStatus
from ..exceptions import ConfigurationError, ValidationError


class FakeEngine:
    """Records how many analyses overlap."""

    def __init__(self, delay: float = 0.05, gate: threading.Event | None = None, fail_on: str | None = None):
        self.extractor = FeatureExtractor()
        self.delay = delay
        self.gate = gate
        self.fail_on = fail_on
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0
        self.seen_examples: list = []

    def analyze(self, image: bytes, examples=()) -> AnalysisResult:
        with self.lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
            self.seen_examples.append(list(examples))
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            time.sleep(self.delay)
            if self.fail_on is not None and image == self.fail_on.encode():
                raise RuntimeError("engine exploded")
            if image == b"unsure":
                return AnalysisResult(model="ORION", confidence=0.7)
            return AnalysisResult(model="ORION", power=100, confidence=0.92)
        finally:
            with self.lock:
                self.running -= 1


def jobs(n: int, image: bytes = b"photo") -> list[ProcessingJob]:
    return [ProcessingJob(group_id=f"P{i}", images=[image]) for i in range(n)]


def test_concurrency_never_exceeds_cap() -> None:
    engine = FakeEngine()
    scheduler = JobScheduler(engine, max_concurrent_jobs=2)

    outcomes = scheduler.run(jobs(5), timeout=10)

    assert len(outcomes) == 5
    assert engine.peak <= 2
    assert scheduler.max_observed_concurrency == 2
    assert scheduler.processed_count == 5
    assert scheduler.active_count == 0
    assert {o.group_id for o in outcomes} == {f"P{i}" for i in range(5)}


def test_processed_counts_only_completions() -> None:
    gate = threading.Event()
    engine = FakeEngine(delay=0.0, gate=gate)
    scheduler = JobScheduler(engine, max_concurrent_jobs=2)

    scheduler.enqueue(*jobs(3))
    time.sleep(0.1)
    assert scheduler.processed_count == 0
    assert scheduler.active_count == 2
    assert scheduler.queued_count == 1
    assert scheduler.total_enqueued == 3

    gate.set()
    assert scheduler.wait(timeout=5)
    assert scheduler.processed_count == 3


def test_enqueue_while_running() -> None:
    engine = FakeEngine(delay=0.05)
    scheduler = JobScheduler(engine, max_concurrent_jobs=1)

    scheduler.enqueue(*jobs(2))
    scheduler.enqueue(ProcessingJob("late", [b"photo"]))
    assert scheduler.wait(timeout=5)

    assert [o.group_id for o in scheduler.results][-1] == "late"
    assert engine.peak == 1


def test_review_routing() -> None:
    scheduler = JobScheduler(FakeEngine(delay=0.0), review_threshold=0.85)
    outcomes = scheduler.run(
        [ProcessingJob("good", [b"photo"]), ProcessingJob("weak", [b"unsure"])], timeout=5
    )
    status = {o.group_id: o.status for o in outcomes}
    assert status == {"good": JobStatus.AUTO_DETECTED, "weak": JobStatus.PENDING_REVIEW}


def test_failing_job_is_recorded_for_review() -> None:
    scheduler = JobScheduler(FakeEngine(delay=0.0, fail_on="bad"))
    outcomes = scheduler.run([ProcessingJob("X", [b"bad"]), ProcessingJob("Y", [b"photo"])], timeout=5)

    by_id = {o.group_id: o for o in outcomes}
    assert by_id["X"].status == JobStatus.PENDING_REVIEW
    assert by_id["X"].result.confidence == 0.0
    assert "job-error" in by_id["X"].result.trail.tags()
    assert by_id["Y"].status == JobStatus.AUTO_DETECTED
    assert scheduler.processed_count == 2


def test_examples_are_read_fresh_per_job() -> None:
    memory: list[TrainingExample] = []
    engine = FakeEngine(delay=0.0)
    scheduler = JobScheduler(engine, examples=lambda: memory, max_concurrent_jobs=1)

    scheduler.run(jobs(1), timeout=5)
    memory.append(TrainingExample("ORION", 100))
    scheduler.run(jobs(1), timeout=5)

    assert engine.seen_examples == [[], [TrainingExample("ORION", 100)]]


def test_events_are_published() -> None:
    events: list[ProcessingEvent] = []
    scheduler = JobScheduler(FakeEngine(delay=0.0))
    scheduler.subscribe(events.append)

    scheduler.run(jobs(3), timeout=5)

    stages = [e.stage for e in events]
    assert stages[0] == "batch_start"
    assert stages[-1] == "batch_complete"
    assert stages.count("job_complete") == 3
    progress = [e.progress for e in events if e.stage == "job_complete"]
    assert max(progress) == pytest.approx(1.0)


def test_outcome_to_dict() -> None:
    scheduler = JobScheduler(FakeEngine(delay=0.0))
    job = ProcessingJob("P7", [b"photo"], names=["IMG_0001.jpg"])
    data = scheduler.run([job], timeout=5)[0].to_dict()

    assert data["pointId"] == "P7"
    assert data["fileName"] == "IMG_0001.jpg"
    assert data["status"] == "auto_detected"
    assert data["model"] == "ORION"


def test_invalid_arguments() -> None:
    with pytest.raises(ConfigurationError):
        JobScheduler(FakeEngine(), max_concurrent_jobs=0)
    with pytest.raises(ValidationError):
        JobScheduler(FakeEngine()).enqueue(ProcessingJob("empty", []))


def test_failing_subscriber_does_not_stop_publishing() -> None:
    publisher = SimpleEventPublisher()
    received: list[str] = []

    def broken(event: ProcessingEvent) -> None:
        raise RuntimeError("listener bug")

    publisher.subscribe(broken)
    publisher.subscribe(lambda e: received.append(e.stage))
    publisher.publish(ProcessingEvent(stage="job_start", message="P1"))

    assert received == ["job_start"]


class RaisingPublisher:
    """Publisher whose publish() itself blows up on one stage."""

    def __init__(self, stage: str):
        self.stage = stage

    def publish(self, event: ProcessingEvent) -> None:
        if event.stage == self.stage:
            raise RuntimeError("publisher down")

    def subscribe(self, callback) -> None:
        pass


@pytest.mark.parametrize("stage", ["job_start", "job_complete", "batch_start"])
def test_broken_publisher_does_not_leak_slots(stage: str) -> None:
    scheduler = JobScheduler(
        FakeEngine(delay=0.0),
        max_concurrent_jobs=1,
        event_publisher=RaisingPublisher(stage),
    )
    outcomes = scheduler.run(jobs(2), timeout=5)

    assert len(outcomes) == 2
    assert scheduler.wait(timeout=1)
    assert scheduler.active_count == 0
    assert scheduler.queued_count == 0
    assert scheduler.processed_count == 2
