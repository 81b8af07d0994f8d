"""
Detector interface shared by the model-based and heuristic strategies, plus
the bounded retry helper used to load model weights.
"""

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar

import numpy as np

from config import MODEL_LOAD_RETRIES, MODEL_LOAD_TIMEOUT, MODEL_RETRY_DELAY
from models import Detection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ModelLoadError(RuntimeError):
    """Model weights could not be loaded within the time allowed."""


class Detector(ABC):
    """A strategy that turns one BGR frame into a Detection."""

    mode = "model"

    @abstractmethod
    def detect(self, frame: np.ndarray) -> Detection:
        ...

    def reset(self):
        """Drop per-session state (previous frame, counters). Weights are kept."""

    def close(self):
        """Release model resources."""


def load_with_retry(
    loader: Callable[[], T],
    retries: int = MODEL_LOAD_RETRIES,
    timeout: float = MODEL_LOAD_TIMEOUT,
    retry_delay: float = MODEL_RETRY_DELAY,
    name: str = "model",
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[T]:
    """
    Call ``loader`` up to ``retries + 1`` times, each attempt raced against
    ``timeout`` seconds. Returns the loaded object, or None once all attempts
    failed so the caller can fall back to heuristic mode.
    """
    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            logger.info("[DETECTION] Loading %s (attempt %d/%d)", name, attempt, attempts)
            future = executor.submit(loader)
            try:
                result = future.result(timeout=timeout)
            except FutureTimeout:
                future.cancel()
                raise ModelLoadError(f"{name} loading timed out after {timeout:.0f}s")
            if result is None:
                raise ModelLoadError(f"{name} loader returned nothing")
            logger.info("[DETECTION] %s loaded", name)
            return result
        except Exception as e:
            logger.warning("[DETECTION] Failed to load %s: %s", name, e)
            if attempt < attempts:
                sleep(retry_delay)
        finally:
            # a timed-out loader thread is abandoned, not joined
            executor.shutdown(wait=False)
    logger.error("[DETECTION] Giving up on %s after %d attempts", name, attempts)
    return None
