"""pixelmap: collaborative pixel-canvas backend.

Users claim and color pixels on a shared grid. Every committed change is
pushed to connected viewers in real time, and a periodic job grants users
accrual points.
"""

__version__ = "0.1.0"
