"""VM reconciliation engine."""

from stratus.engine.lifecycle import VMEngine
from stratus.engine.create import CreationOrchestrator, Phase
from stratus.engine.update import UpdateReconciler, Changeset, compute_changeset, requires_replacement
from stratus.engine.reader import StateReader
from stratus.engine.tasks import TaskWaiter

__all__ = [
    "VMEngine",
    "CreationOrchestrator",
    "Phase",
    "UpdateReconciler",
    "Changeset",
    "compute_changeset",
    "requires_replacement",
    "StateReader",
    "TaskWaiter",
]
