"""Metric sinks for scalar training diagnostics."""
from __future__ import annotations
from abc import ABC, abstractmethod
import logging
import math
from typing import Dict, Optional, Sequence

from torch.utils.tensorboard import SummaryWriter

logger = logging.getLogger(__name__)


class MetricsSink(ABC):
    """Receives plain-float scalars keyed by name, once per iteration."""

    @abstractmethod
    def write(self, metrics: Dict[str, float], step: int) -> None:
        ...

    def close(self) -> None:
        pass


class LoggingSink(MetricsSink):
    """Writes one log line per iteration."""

    def __init__(self, level: int = logging.INFO, keys: Optional[Sequence[str]] = None):
        self.level = level
        self.keys = keys

    def write(self, metrics: Dict[str, float], step: int) -> None:
        keys = self.keys if self.keys is not None else sorted(metrics)
        parts = [f"{k}={metrics[k]:.4g}" for k in keys if k in metrics]
        logger.log(self.level, "[step %d] %s", step, "  ".join(parts))


class TensorBoardSink(MetricsSink):
    """Writes scalars to a TensorBoard event file under log_dir.

    Non-finite values (e.g. the episode return of an iteration in which no
    episode ended) are skipped.
    """

    def __init__(self, log_dir: str, prefix: str = "train"):
        self.writer = SummaryWriter(log_dir=log_dir)
        self.prefix = prefix

    def write(self, metrics: Dict[str, float], step: int) -> None:
        for name, value in metrics.items():
            if math.isfinite(value):
                self.writer.add_scalar(f"{self.prefix}/{name}", value, step)
        self.writer.flush()

    def close(self) -> None:
        self.writer.close()


class MemorySink(MetricsSink):
    """Keeps every written row in memory."""

    def __init__(self):
        self.rows = []

    def write(self, metrics: Dict[str, float], step: int) -> None:
        self.rows.append((step, dict(metrics)))
