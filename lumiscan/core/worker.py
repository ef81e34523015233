"""Thread pool of OCR engine instances."""

import logging
import os
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from ..config import MAX_OCR_WORKERS, OCREngineType
from ..exceptions import ConfigurationError, OCRError
from .image_ops import ImageArray
from .ocr_base import BaseOCR
from .ocr_factory import OCRFactory

logger = logging.getLogger(__name__)


def default_worker_count() -> int:
    """Available parallelism capped at MAX_OCR_WORKERS."""
    return max(1, min(os.cpu_count() or 1, MAX_OCR_WORKERS))


class OCRWorkerPool:
    """Fixed-size pool of OCR engines shared by concurrent analyses.

    Engines are built lazily on first use, exactly once. Callers that arrive
    while the build is in progress block until it finishes instead of
    starting a second build. Each recognize() call borrows one engine for
    its duration; a failure in one call does not affect the pool.

    The pool is an explicitly constructed resource. The composition root
    creates it, hands it to the ConsensusEngine and closes it at the end.

    Example:
        with OCRWorkerPool(num_workers=4) as pool:
            normal = pool.submit(prep.normal)
            inverted = pool.submit(prep.inverted)
            text = normal.result() + " " + inverted.result()
    """

    def __init__(
        self,
        num_workers: Optional[int] = None,
        engine: OCREngineType | str = OCREngineType.TESSERACT,
        engine_factory: Optional[Callable[[], BaseOCR]] = None,
        **engine_kwargs,
    ):
        """Initialize worker pool.

        Args:
            num_workers: Number of engine instances. Defaults to
                min(cpu count, 4).
            engine: OCR backend used when no engine_factory is given
            engine_factory: Callable returning a fresh engine (overrides engine)
            **engine_kwargs: Passed to OCRFactory.create

        Raises:
            ConfigurationError: If num_workers is not positive
        """
        if num_workers is None:
            num_workers = default_worker_count()
        if num_workers <= 0:
            raise ConfigurationError(
                f"OCR pool needs at least one worker, got {num_workers}",
                config_key="ocr_workers"
            )
        self.num_workers = num_workers
        self.engine = engine
        self._engine_factory = engine_factory or (lambda: OCRFactory.create(engine, **engine_kwargs))

        self._cond = threading.Condition()
        self._building = False
        self._engines: Optional[queue.Queue[BaseOCR]] = None
        self._all_engines: list[BaseOCR] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self.build_count = 0

    @property
    def is_ready(self) -> bool:
        with self._cond:
            return self._engines is not None

    def _ensure_built(self) -> "queue.Queue[BaseOCR]":
        """Build the engines once; concurrent callers wait for the builder."""
        with self._cond:
            while self._building:
                self._cond.wait()
            if self._engines is not None:
                return self._engines
            self._building = True
            self.build_count += 1

        built: list[BaseOCR] = []
        try:
            logger.info(f"Building OCR pool with {self.num_workers} engines")
            for _ in range(self.num_workers):
                engine = self._engine_factory()
                engine.load()
                built.append(engine)
        except Exception as e:
            for engine in built:
                engine.unload()
            with self._cond:
                self._building = False
                self._cond.notify_all()
            logger.error(f"OCR pool construction failed: {e}")
            if isinstance(e, OCRError):
                raise
            raise OCRError(f"OCR pool construction failed: {e}") from e

        engines: queue.Queue[BaseOCR] = queue.Queue()
        for engine in built:
            engines.put(engine)

        with self._cond:
            self._engines = engines
            self._all_engines = built
            self._building = False
            self._cond.notify_all()
        logger.info("OCR pool ready")
        return engines

    def recognize(self, image: bytes | ImageArray) -> str:
        """Recognize text on one rendering, blocking until an engine is free.

        Raises:
            OCRError: If the pool cannot be built or recognition fails
        """
        engines = self._ensure_built()
        engine = engines.get()
        try:
            return engine.recognize(image)
        finally:
            engines.put(engine)

    def submit(self, image: bytes | ImageArray) -> "Future[str]":
        """Schedule recognize() on the pool's own threads."""
        with self._cond:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.num_workers,
                    thread_name_prefix="OCRWorker"
                )
            executor = self._executor
        return executor.submit(self.recognize, image)

    def close(self) -> None:
        """Shut down threads and unload every engine."""
        with self._cond:
            executor, self._executor = self._executor, None
            engines, self._all_engines = self._all_engines, []
            self._engines = None

        if executor is not None:
            executor.shutdown(wait=True)
        for engine in engines:
            try:
                engine.unload()
            except Exception as e:
                logger.warning(f"Failed to unload OCR engine: {e}")
        if engines:
            logger.info("OCR pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
