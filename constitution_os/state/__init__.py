from .derive import derive_band, derive_capabilities, restrictions_from_thresholds, utc_day
from .lock import ExclusiveFileLock
from .manager import StateManager
from .schema import validate_agent, validate_state

__all__ = [
    "ExclusiveFileLock",
    "StateManager",
    "derive_band",
    "derive_capabilities",
    "restrictions_from_thresholds",
    "utc_day",
    "validate_agent",
    "validate_state",
]
