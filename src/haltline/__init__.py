"""Haltline: hardware debug sessions for Cortex-M boards over a serial probe."""

__version__ = "0.1.0"
