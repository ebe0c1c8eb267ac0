"""Confidence-routed task orchestration."""

__version__ = "0.1.0"
