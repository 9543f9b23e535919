"""
Error Taxonomy

Recoverable I/O failures (feed, stats, malformed records) are retried or
degraded to last-known-good state. ReconcileInvariantError signals a
broken render diff and is treated as fatal.
"""

from typing import Optional


class SosMapError(Exception):
    """Base class for all live map engine errors"""


class FeedUnavailable(SosMapError):
    """Live feed subscription or poll could not be established"""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class StatsFetchFailed(SosMapError):
    """Zone statistics request failed"""

    def __init__(self, zone_id: str, reason: str = ""):
        super().__init__(f"Stats fetch failed for zone {zone_id}: {reason}")
        self.zone_id = zone_id
        self.reason = reason


class MalformedBatch(SosMapError):
    """A record in an entity batch has an unknown kind or invalid coordinate"""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class AnimationInterrupted(SosMapError):
    """
    A camera animation was cancelled by a newer request

    Not an error condition: CameraAnimation.wait() reports it as an
    outcome. Raised only by CameraAnimation.result() for callers that
    prefer exceptions.
    """


class ReconcileInvariantError(SosMapError):
    """Render diff left the handle map inconsistent with the input set"""
