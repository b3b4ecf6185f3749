"""Streakflow: animated streak lines for 2D vector fields.

Turns a discretized velocity grid into a ribbon triangle mesh whose
per-vertex attributes encode motion over time, ready for an animated
renderer.
"""

__version__ = "0.1.0"
