from .device import DeviceIdentity
from .metadata import MetadataStore
from .orchestrator import SyncOrchestrator
from .scheduler import SyncScheduler

__all__ = ["DeviceIdentity", "MetadataStore", "SyncOrchestrator", "SyncScheduler"]
