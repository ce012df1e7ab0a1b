from relayer.event_discovery import EventDiscovery
from relayer.liveness import HealthState, LivenessServer
from relayer.reconciler import ReconciliationLoop
from relayer.retry_scheduler import RetryScheduler
from relayer.state_store import StateStore
from relayer.upkeep_checker import UpkeepChecker
from relayer.watch_list import WatchList

__all__ = [
    "EventDiscovery",
    "HealthState",
    "LivenessServer",
    "ReconciliationLoop",
    "RetryScheduler",
    "StateStore",
    "UpkeepChecker",
    "WatchList",
]
