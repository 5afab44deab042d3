"""Numeric engine boundary.

Agents never call an optimizer directly; they go through an Engine, which
owns the trainable parameters and knows how to turn a scalar loss into a
parameter update. TorchEngine is the only implementation.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
import logging
import math
from typing import Any, Dict, Optional

import torch
from torch import nn
from torch.optim import Adam

from core.errors import EngineError

logger = logging.getLogger(__name__)


class Engine(ABC):
    """Forward / gradient / apply interface of a differentiable model."""

    @abstractmethod
    def forward(self, *inputs: Any) -> Any:
        """Evaluate the model."""

    @abstractmethod
    def backward(self, loss: Any) -> float:
        """Compute gradients of loss; returns the gradient norm."""

    @abstractmethod
    def apply(self) -> None:
        """Apply the gradients computed by the last backward()."""

    @abstractmethod
    def state_dict(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def load_state_dict(self, state: Dict[str, Any]) -> None:
        ...


class TorchEngine(Engine):
    """Adam on an nn.Module, with gradient-norm clipping.

    Args:
        module: Model whose parameters are trained.
        lr: Learning rate for Adam.
        max_grad_norm: Gradients are clipped to this global norm. None
            disables clipping (the norm is still reported).
        device: Device the module is moved to.
    """

    def __init__(
        self,
        module: nn.Module,
        lr: float = 3e-4,
        max_grad_norm: Optional[float] = 0.5,
        device: str = "cpu",
    ):
        self.device = torch.device(device)
        self.module = module.to(self.device)
        self.lr = lr
        self.max_grad_norm = max_grad_norm
        self.optimizer = Adam(self.module.parameters(), lr=lr)
        self._has_grad = False

    def forward(self, *inputs: Any) -> Any:
        return self.module(*inputs)

    def backward(self, loss: torch.Tensor) -> float:
        """Zero old gradients, backpropagate loss and clip.

        Raises:
            EngineError: If the loss or the resulting gradient norm is not
                finite. Gradients are discarded in that case.
        """
        if not torch.isfinite(loss).all():
            raise EngineError(f"non-finite loss {loss.detach().cpu().item()}")

        self.optimizer.zero_grad()
        loss.backward()
        params = [p for p in self.module.parameters() if p.grad is not None]
        max_norm = self.max_grad_norm if self.max_grad_norm is not None else math.inf
        grad_norm = float(torch.nn.utils.clip_grad_norm_(params, max_norm)) if params else 0.0
        if not math.isfinite(grad_norm):
            self.optimizer.zero_grad()
            self._has_grad = False
            raise EngineError(f"non-finite gradient norm {grad_norm}")
        self._has_grad = True
        return grad_norm

    def apply(self) -> None:
        if not self._has_grad:
            logger.debug("apply() without gradients; skipping optimizer step")
            return
        self.optimizer.step()
        self._has_grad = False

    def state_dict(self) -> Dict[str, Any]:
        return {
            "module": self.module.state_dict(),
            "optimizer": self.optimizer.state_dict(),
        }

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        self.module.load_state_dict(state["module"])
        self.optimizer.load_state_dict(state["optimizer"])
