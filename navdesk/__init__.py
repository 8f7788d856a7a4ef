"""
NavDesk - real-time portfolio valuation.

Positions are valued against streaming prices: every price update runs one
serialized cycle that detects changes, recalculates NAV and publishes
events to in-process listeners.
"""

__version__ = "1.0.0"
