"""Runbook chat: real-time channel messaging server."""

__version__ = "0.1.0"
