"""
Deployment of validated imports to a persistence sink
"""

from .sinks import BatchReceipt, InMemorySink, PersistenceSink, Snapshot, SupabaseSink
from .coordinator import (
    BatchFailure,
    DeploymentConfirmation,
    DeploymentCoordinator,
    DeploymentOutcome,
    DeploymentSettings,
    coerce_cell,
)

__all__ = [
    "BatchReceipt",
    "InMemorySink",
    "PersistenceSink",
    "Snapshot",
    "SupabaseSink",
    "BatchFailure",
    "DeploymentConfirmation",
    "DeploymentCoordinator",
    "DeploymentOutcome",
    "DeploymentSettings",
    "coerce_cell",
]
