"""
flowpulse: Linear sync engine and workflow-health metrics.
"""

__version__ = "0.1.0"
