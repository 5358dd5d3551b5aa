"""Full-sync layer: coordination, change detection and stale-state cleanup."""

from hubitat_mqtt.sync.coordinator import SyncCoordinator
from hubitat_mqtt.sync.engine import FullSyncEngine, SyncReport
from hubitat_mqtt.sync.reconciler import BusSnapshot, StaleStateReconciler

__all__ = [
    "BusSnapshot",
    "FullSyncEngine",
    "StaleStateReconciler",
    "SyncCoordinator",
    "SyncReport",
]
