"""
Escalating reminder engine that turns time-sensitive mail into calendar alerts.

The package plans hourly reminder signals around a quiet window, groups them
into calendar events, and walks each chain forward on a recurring tick until a
final warning is placed at the deadline or the user deletes the live event.
"""
from .config import EscalationSettings
from .driver import ChainDriver
from .service import EscalationService

__all__ = [
    "ChainDriver",
    "EscalationService",
    "EscalationSettings",
]
