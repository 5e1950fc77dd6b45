from __future__ import annotations

import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import numpy as np

from logiaudit.config import SENTINEL_SCORE, GatekeeperConfig
from logiaudit.quality.preprocess import prepare_grid
from logiaudit.quality.sharpness import classify, edge_samples, sharpness_score
from logiaudit.utils.image import ArrayDecoder, DecodeError, ImageDecoder, PillowDecoder
from logiaudit.utils.logging import setup_logger


logger = setup_logger()

REASON_SHARP = "sharp"
REASON_BLURRY = "blurry"
REASON_INSUFFICIENT_CONTENT = "insufficient_content"
REASON_DECODE_FAILURE = "decode_failure"
REASON_PROCESSING_ERROR = "processing_error"


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


class AnalysisCancelled(Exception):
    pass


@dataclass(frozen=True)
class GatekeeperVerdict:
    is_blurry: bool
    score: int
    reason: str = REASON_SHARP

    @property
    def failed_open(self) -> bool:
        return self.reason in (REASON_DECODE_FAILURE, REASON_PROCESSING_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _fail_open(reason: str) -> GatekeeperVerdict:
    # A broken check must not block the audit; let the image through unverified.
    return GatekeeperVerdict(is_blurry=False, score=SENTINEL_SCORE, reason=reason)


def _read_payload(path: str | Path) -> bytes:
    return Path(path).read_bytes()


def _checkpoint(cancel: Optional[CancelToken]) -> None:
    if cancel is not None and cancel.is_set():
        raise AnalysisCancelled()


class GateJob:
    """Handle on a gatekeeper run dispatched to the worker pool."""

    def __init__(self, future: "Future[Optional[GatekeeperVerdict]]", cancel_event: threading.Event) -> None:
        self._future = future
        self._cancel = cancel_event

    def cancel(self) -> None:
        if self._future.done():
            return  # a finished run keeps its verdict
        self._cancel.set()
        self._future.cancel()

    def cancelled(self) -> bool:
        """True once the run was dropped: never started, or stopped at a checkpoint."""
        if self._future.cancelled():
            return True
        if not self._future.done():
            return False
        return self._future.exception() is None and self._future.result() is None

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Optional[GatekeeperVerdict]:
        """Verdict, or None if the job was cancelled before it finished."""
        try:
            return self._future.result(timeout=timeout)
        except CancelledError:
            return None


class Gatekeeper:
    """
    Document sharpness check run before the expensive audit call.

    decode -> downsample + grayscale -> gated Laplacian edges -> top-edge score -> verdict.
    Every call is independent; the instance only holds read-only config, the
    decoder and a lazily created worker pool.
    """

    def __init__(
        self,
        config: Optional[GatekeeperConfig] = None,
        decoder: Optional[ImageDecoder] = None,
        max_workers: int = 2,
    ) -> None:
        self.config = config or GatekeeperConfig()
        self.decoder: ImageDecoder = decoder or PillowDecoder()
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # --- synchronous API ---------------------------------------------------

    def analyze(
        self,
        data: bytes,
        mime_type: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[GatekeeperVerdict]:
        """
        Score one image payload. Always resolves to a verdict; returns None only
        when `cancel` was set before the run finished.
        """
        return self._run(self.decoder, data, mime_type, cancel)

    def analyze_pixels(self, pixels: np.ndarray, cancel: Optional[CancelToken] = None) -> Optional[GatekeeperVerdict]:
        return self._run(ArrayDecoder(pixels), b"", None, cancel)

    def analyze_path(
        self,
        path: str | Path,
        mime_type: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[GatekeeperVerdict]:
        """Read the file inside the call so only in-flight images are held in memory."""
        try:
            data = _read_payload(path)
        except OSError as e:
            logger.warning(f"Gatekeeper could not read {path} ({e}); letting it through unchecked")
            return _fail_open(REASON_DECODE_FAILURE)
        return self.analyze(data, mime_type, cancel)

    def _run(
        self,
        decoder: ImageDecoder,
        data: bytes,
        mime_type: Optional[str],
        cancel: Optional[CancelToken],
    ) -> Optional[GatekeeperVerdict]:
        try:
            _checkpoint(cancel)
            pixels = decoder.decode(data, mime_type)
            _checkpoint(cancel)
            return self._evaluate(pixels, cancel)
        except AnalysisCancelled:
            logger.debug("Gatekeeper run cancelled; discarding partial work")
            return None
        except DecodeError as e:
            logger.warning(f"Gatekeeper could not decode image ({e}); letting it through unchecked")
            return _fail_open(REASON_DECODE_FAILURE)
        except Exception:
            logger.exception("Gatekeeper failed while scoring; letting image through unchecked")
            return _fail_open(REASON_PROCESSING_ERROR)

    def _evaluate(self, pixels: np.ndarray, cancel: Optional[CancelToken]) -> GatekeeperVerdict:
        cfg = self.config
        gray = prepare_grid(pixels, cfg.target_width)
        _checkpoint(cancel)
        samples = edge_samples(gray, cfg.noise_floor)
        _checkpoint(cancel)

        score = sharpness_score(samples, cfg.min_edges, cfg.top_fraction)
        if score is None:
            logger.warning(
                f"Gatekeeper found only {samples.size} edges (< {cfg.min_edges}); image is blank or badly blurred"
            )
            return GatekeeperVerdict(is_blurry=True, score=0, reason=REASON_INSUFFICIENT_CONTENT)

        blurry = classify(score, cfg.threshold)
        top_k = max(1, int(samples.size * cfg.top_fraction))
        logger.info(
            f"Gatekeeper top-edge score {score} (threshold {cfg.threshold}) | "
            f"grid {gray.shape[1]}x{gray.shape[0]}, edges {samples.size}, analysed {top_k}"
        )
        return GatekeeperVerdict(is_blurry=blurry, score=score, reason=REASON_BLURRY if blurry else REASON_SHARP)

    # --- background API ----------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="gatekeeper")
            return self._executor

    def _submit(self, fn, source: Any, mime_type: Optional[str]) -> GateJob:
        cancel_event = threading.Event()
        future = self._pool().submit(fn, source, mime_type, cancel_event)
        return GateJob(future, cancel_event)

    def submit(self, data: bytes, mime_type: Optional[str] = None) -> GateJob:
        """Run `analyze` off the calling thread."""
        return self._submit(self.analyze, data, mime_type)

    def submit_path(self, path: str | Path, mime_type: Optional[str] = None) -> GateJob:
        return self._submit(self.analyze_path, path, mime_type)

    def evaluate_many(self, items: Iterable[Tuple[bytes, Optional[str]]]) -> List[Optional[GatekeeperVerdict]]:
        jobs = [self.submit(data, mime) for data, mime in items]
        return [job.result() for job in jobs]

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def __enter__(self) -> "Gatekeeper":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
