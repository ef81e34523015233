"""Command-line interface for LumiScan."""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import DEFAULT_REVIEW_THRESHOLD, SUPPORTED_IMAGE_EXTENSIONS, OCREngineType
from .core import (
    AnalysisConfig,
    ConsensusEngine,
    JobScheduler,
    JobStatus,
    ProcessingEvent,
    ProcessingJob,
    TrainingExample,
)
from .exceptions import ConfigurationError, ValidationError
from .utils.env import load_advisor_settings, setup_logging

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="lumiscan",
        description="Identify street-light fixture model and power from field photos"
    )

    parser.add_argument("input", help="Input image or folder (sub-folders are points)")
    parser.add_argument(
        "-o", "--output",
        type=Path,
        help="Write results as JSON to this file (default: stdout)"
    )
    parser.add_argument(
        "--memory",
        type=Path,
        help="JSON file with confirmed training examples"
    )
    parser.add_argument(
        "--max-jobs",
        type=int,
        default=2,
        metavar="N",
        help="Points processed concurrently (default: 2)"
    )
    parser.add_argument(
        "--review-threshold",
        type=float,
        default=DEFAULT_REVIEW_THRESHOLD,
        help=f"Confidence below which a result goes to review (default: {DEFAULT_REVIEW_THRESHOLD})"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    # OCR settings
    ocr_group = parser.add_argument_group("OCR options")
    ocr_group.add_argument(
        "--ocr-engine",
        choices=[e.value for e in OCREngineType],
        default=OCREngineType.TESSERACT.value,
        help="OCR backend to use (default: tesseract)"
    )
    ocr_group.add_argument(
        "--ocr-workers",
        type=int,
        metavar="N",
        help="Number of OCR engine instances (default: min(cpu count, 4))"
    )

    # Advisor settings
    advisor_group = parser.add_argument_group("Vision advisor options")
    advisor_group.add_argument(
        "--ollama",
        action="store_true",
        help="Consult a local Ollama vision model"
    )
    advisor_group.add_argument(
        "--ollama-host",
        help="Ollama base URL (env LUMISCAN_OLLAMA_HOST)"
    )
    advisor_group.add_argument(
        "--ollama-model",
        help="Ollama model tag (env LUMISCAN_OLLAMA_MODEL)"
    )

    return parser


def _is_image(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in SUPPORTED_IMAGE_EXTENSIONS


def _job_from_files(group_id: str, files: list[Path]) -> ProcessingJob:
    return ProcessingJob(
        group_id=group_id,
        images=[f.read_bytes() for f in files],
        names=[f.name for f in files],
    )


def collect_jobs(input_path: Path) -> list[ProcessingJob]:
    """Group images into jobs.

    A single file is one job. In a folder, each sub-folder is one point
    (group id = folder name) and each loose image is a job of its own.
    """
    if input_path.is_file():
        return [_job_from_files(input_path.stem, [input_path])]

    jobs: list[ProcessingJob] = []
    for entry in sorted(input_path.iterdir()):
        if entry.is_dir():
            files = sorted(f for f in entry.iterdir() if _is_image(f))
            if files:
                jobs.append(_job_from_files(entry.name, files))
            else:
                logger.warning(f"Skipping folder without images: {entry.name}")
        elif _is_image(entry):
            jobs.append(_job_from_files(entry.stem, [entry]))
    return jobs


def load_examples(path: Path) -> list[TrainingExample]:
    """Read confirmed examples from a JSON list (or {"examples": [...]}).

    Raises:
        ValidationError: If the file is not valid JSON of that shape
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ValidationError(f"Cannot read memory file {path}: {e}", field="memory") from e

    if isinstance(data, dict):
        data = data.get("examples", [])
    if not isinstance(data, list):
        raise ValidationError(f"Memory file {path} must hold a list of examples", field="memory")

    examples = []
    for item in data:
        try:
            examples.append(TrainingExample.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed example {item!r}: {e}")
    return examples


def main(args: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    # Setup logging
    setup_logging(logging.DEBUG if parsed.verbose else logging.INFO)

    input_path = Path(parsed.input)
    if not input_path.exists():
        logger.error(f"Input not found: {input_path}")
        return 1

    examples: list[TrainingExample] = []
    if parsed.memory:
        try:
            examples = load_examples(parsed.memory)
        except ValidationError as e:
            logger.error(str(e))
            return 1
        logger.info(f"Loaded {len(examples)} confirmed examples")

    jobs = collect_jobs(input_path)
    if not jobs:
        logger.error("No image files found")
        return 1

    advisor = load_advisor_settings()
    try:
        options = dict(
            ocr_engine=OCREngineType(parsed.ocr_engine),
            advisor_enabled=parsed.ollama,
            ollama_host=parsed.ollama_host or advisor["ollama_host"],
            ollama_model=parsed.ollama_model or advisor["ollama_model"],
            review_threshold=parsed.review_threshold,
            max_concurrent_jobs=parsed.max_jobs,
        )
        if parsed.ocr_workers is not None:
            options["ocr_workers"] = parsed.ocr_workers
        config = AnalysisConfig(**options)
    except ValueError as e:
        logger.error(f"Invalid options: {e}")
        return 1

    logger.info(f"Processing {len(jobs)} point(s)...")

    def progress(event: ProcessingEvent) -> None:
        if event.stage == "job_complete":
            logger.info(f"[{event.progress:.0%}] {event.message}")
        else:
            logger.debug(event.message)

    try:
        with ConsensusEngine(config) as engine:
            scheduler = JobScheduler(
                engine,
                examples,
                max_concurrent_jobs=config.max_concurrent_jobs,
                review_threshold=config.review_threshold,
            )
            scheduler.subscribe(progress)
            outcomes = scheduler.run(jobs)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1

    # Keep input order in the report
    order = {job.group_id: i for i, job in enumerate(jobs)}
    outcomes.sort(key=lambda o: order.get(o.group_id, len(order)))
    payload = json.dumps([o.to_dict() for o in outcomes], indent=2, ensure_ascii=False)

    if parsed.output:
        parsed.output.write_text(payload + "\n", encoding="utf-8")
        logger.info(f"Results written to {parsed.output}")
    else:
        print(payload)

    # Summary
    pending = sum(1 for o in outcomes if o.status == JobStatus.PENDING_REVIEW)
    logger.info("=" * 50)
    logger.info(f"Completed: {len(outcomes) - pending} auto-detected, {pending} pending review")
    return 0


if __name__ == "__main__":
    sys.exit(main())
