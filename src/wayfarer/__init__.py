"""Wayfarer quest core.

Quest progression state machine, geofenced arrival detection and the rank/XP
engine for the Wayfarer location-based quest game.
"""

__version__ = "0.1.0"
