"""
Stratus - declarative lifecycle engine for VMs hosted in application containers.

Translates VM declarations into ordered, task-awaited platform operations and
reads back canonical snapshots that later updates are diffed against.
"""

__version__ = "1.0.0"

# Re-export key components for easier access
from stratus.models.config import StratusConfig
from stratus.models.vm import VMSpec
from stratus.models.state import ObservedState
from stratus.engine.lifecycle import VMEngine

__all__ = [
    "StratusConfig",
    "VMSpec",
    "ObservedState",
    "VMEngine",
]
