"""Saving and restoring agents together with their spaces."""
from __future__ import annotations
import logging
import os
from typing import Any, Dict, Optional

import torch

from core.errors import DimensionMismatch
from core.specs import EnvSpec
from policies.agent import Agent

logger = logging.getLogger(__name__)


def save_checkpoint(path: str, agent: Agent, iteration: int = 0, extra: Optional[Dict[str, Any]] = None) -> None:
    """Write the agent's state and the EnvSpec it acts in to path."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    state = {
        "spec": agent.spec.to_dict(),
        "agent": agent.state_dict(),
        "iteration": iteration,
        "extra": extra or {},
    }
    torch.save(state, path)
    logger.info("saved checkpoint to %s (iteration %d)", path, iteration)


def load_checkpoint(path: str, agent: Agent, map_location: str = "cpu") -> Dict[str, Any]:
    """Restore agent from path.

    Returns:
        The checkpoint dict (iteration, extra, spec).

    Raises:
        DimensionMismatch: If the checkpoint was written for other spaces.
    """
    state = torch.load(path, map_location=map_location)
    spec = EnvSpec.from_dict(state["spec"])
    if spec != agent.spec:
        raise DimensionMismatch(f"checkpoint spec {spec} does not match agent spec {agent.spec}")
    agent.load_state_dict(state["agent"])
    logger.info("loaded checkpoint %s (iteration %d)", path, state["iteration"])
    return state
