"""Error taxonomy shared by spaces, environments, sampling and training.

Every error can carry the instance id and step index at which it happened,
so a failure inside a parallel sampling cycle can be reproduced.
"""
from __future__ import annotations
from typing import Optional


class RLCoreError(Exception):
    """Base class for all errors raised by this library.

    Attributes:
        instance_id: Environment instance the error relates to, if any.
        step: Step index (within the current cycle) the error relates to.
    """
    def __init__(
        self,
        message: str,
        instance_id: Optional[int] = None,
        step: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.instance_id = instance_id
        self.step = step

    def with_context(self, instance_id: Optional[int], step: Optional[int]) -> "RLCoreError":
        """Fill in missing context in place and return self (for re-raising)."""
        if self.instance_id is None:
            self.instance_id = instance_id
        if self.step is None:
            self.step = step
        return self

    def __str__(self) -> str:
        ctx = []
        if self.instance_id is not None:
            ctx.append(f"instance={self.instance_id}")
        if self.step is not None:
            ctx.append(f"step={self.step}")
        if ctx:
            return f"{self.message} [{', '.join(ctx)}]"
        return self.message


class InvalidEncoding(RLCoreError):
    """A numeric vector does not decode to a value of the space."""


class ProtocolViolation(RLCoreError):
    """The reset/step protocol (or the History push protocol) was misused."""


class DimensionMismatch(RLCoreError):
    """Batch shape is inconsistent with the declared encoding length."""


class EngineError(RLCoreError):
    """The tensor engine failed (e.g. non-finite loss or gradients)."""


class StepTimeout(RLCoreError):
    """An environment instance did not finish its step within the timeout."""


class SamplingError(RLCoreError):
    """An unexpected exception escaped an environment or agent call."""
