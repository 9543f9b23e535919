"""
Emergency Response Live Map Engine
Backend Application Package

Real-time geospatial synchronization and presentation engine for the
emergency-response operational map: live entity sync, filtering,
clustering, marker/route reconciliation, camera animation and zone
statistics.
"""

__version__ = "1.0.0"
__author__ = "SOS Map Team"
