"""Graceful shutdown sidecar for Envoy."""

from __future__ import annotations

from .completion import CompletionSignal, DrainOutcome
from .coordinator import DrainCoordinator
from .params import ShutdownParameters

__version__ = "0.1.0"

__all__ = [
    "CompletionSignal",
    "DrainCoordinator",
    "DrainOutcome",
    "ShutdownParameters",
]
